"""Recipient table parsing and validation."""

from __future__ import annotations

import csv
import io
import logging
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Iterable

logger = logging.getLogger("certgen.batch")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
EMAIL_COLUMN = "email"
INVALID_EMAIL_REASON = "Invalid email format"


class RecordValidationError(ValueError):
    """Raised when the uploaded table cannot be parsed at all."""


class RecordMap(Mapping[str, str]):
    """Read-only string map with case-insensitive key lookup.

    Iteration and ``to_dict`` keep the original column spelling.
    """

    def __init__(self, values: Mapping[str, object] | None = None):
        self._values: dict[str, str] = {}
        self._folded: dict[str, str] = {}
        for key, value in (values or {}).items():
            if key is None:
                continue
            name = str(key).strip()
            if not name:
                continue
            self._values[name] = "" if value is None else str(value)
            self._folded.setdefault(name.lower(), name)

    def __getitem__(self, key: str) -> str:
        actual = self._folded.get(str(key).lower())
        if actual is None:
            raise KeyError(key)
        return self._values[actual]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def lookup(self, name: str) -> str | None:
        """Return the value for ``name`` ignoring case, or None."""
        actual = self._folded.get((name or "").lower())
        return self._values[actual] if actual is not None else None

    def with_defaults(self, names: Iterable[str]) -> "RecordMap":
        merged = dict(self._values)
        for name in names:
            if self.lookup(name) is None:
                merged[name] = ""
        return RecordMap(merged)

    def to_dict(self) -> dict[str, str]:
        return dict(self._values)

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"RecordMap({self._values!r})"


def is_valid_email(value: str | None) -> bool:
    return bool(value) and EMAIL_RE.match(value.strip()) is not None


def find_missing(required: Iterable[str], provided: Iterable[str]) -> list[str]:
    """Names in ``required`` with no case-insensitive match in ``provided``."""
    present = {str(name).lower() for name in provided}
    missing: list[str] = []
    for name in required:
        if name.lower() not in present and name not in missing:
            missing.append(name)
    return missing


@dataclass(frozen=True)
class ValidRecord:
    row_number: int
    values: RecordMap
    email: str | None


@dataclass(frozen=True)
class InvalidRecipient:
    row_number: int
    email: str
    reason: str


@dataclass
class ValidationResult:
    valid_records: list[ValidRecord] = field(default_factory=list)
    invalid_emails: list[InvalidRecipient] = field(default_factory=list)
    total_rows: int = 0
    column_names: list[str] = field(default_factory=list)
    email_column: str | None = None
    missing_columns: list[str] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            "totalRows": self.total_rows,
            "validRecords": len(self.valid_records),
            "invalidEmails": [
                {"email": item.email, "reason": item.reason}
                for item in self.invalid_emails
            ],
            "columnNames": list(self.column_names),
            "missingColumns": list(self.missing_columns),
        }


def _decode(raw: bytes | str) -> str:
    if isinstance(raw, bytes):
        try:
            return raw.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise RecordValidationError("CSV file must be UTF-8 encoded") from exc
    return raw.lstrip("\ufeff")


def validate_records(
    raw: bytes | str, placeholder_names: Iterable[str] = ()
) -> ValidationResult:
    """Parse a recipient CSV and split its rows into valid and invalid.

    Rows whose email cell holds a malformed address are excluded from
    generation; rows without an email column (or with a blank cell) are
    generated but never delivered. Placeholder columns absent from the
    header are reported in ``missing_columns`` and render blank.
    """
    text = _decode(raw)
    result = ValidationResult()
    if not text.strip():
        return result

    try:
        reader = csv.DictReader(io.StringIO(text))
        headers = [h.strip() for h in (reader.fieldnames or []) if h and h.strip()]
    except csv.Error as exc:
        raise RecordValidationError(f"Unable to parse CSV: {exc}") from exc

    result.column_names = headers
    result.email_column = next(
        (h for h in headers if h.lower() == EMAIL_COLUMN), None
    )
    result.missing_columns = find_missing(list(placeholder_names), headers)
    if result.missing_columns:
        logger.info(
            "[CSV-MISSING-COLUMNS] columns=%s", ",".join(result.missing_columns)
        )

    try:
        for row_number, row in enumerate(reader, start=1):
            values = RecordMap({k: (v or "").strip() for k, v in row.items() if k})
            result.total_rows += 1
            email = values.lookup(EMAIL_COLUMN) if result.email_column else None
            if email and not is_valid_email(email):
                result.invalid_emails.append(
                    InvalidRecipient(
                        row_number=row_number,
                        email=email,
                        reason=INVALID_EMAIL_REASON,
                    )
                )
                continue
            result.valid_records.append(
                ValidRecord(row_number=row_number, values=values, email=email or None)
            )
    except csv.Error as exc:
        raise RecordValidationError(f"Unable to parse CSV: {exc}") from exc

    return result
