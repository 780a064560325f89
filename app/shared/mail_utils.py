"""Mail helper utilities."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence

from .records import RecordMap, is_valid_email

logger = logging.getLogger("certgen.mailer")

_SPLIT_RE = re.compile(r"[;,\s]+")
_VARIABLE_RE = re.compile(r"\$\{(\w+)\}")


def _iter_tokens(recipients: Sequence[str] | str | None) -> Iterable[str]:
    if recipients is None:
        return []
    if isinstance(recipients, str):
        return (part for part in _SPLIT_RE.split(recipients))
    return (str(value) for value in recipients)


def normalize_recipients(
    recipients: Sequence[str] | str | None,
    exclude: Iterable[str] = (),
) -> tuple[list[str], str]:
    """Normalize recipient entries for SMTP envelopes and headers.

    Invalid tokens are logged and dropped, duplicates (case-insensitive)
    and anything listed in ``exclude`` are skipped.
    """

    seen: set[str] = {str(value).strip().lower() for value in exclude if value}
    kept: list[str] = []

    for raw in _iter_tokens(recipients):
        candidate = (raw or "").strip()
        if not candidate:
            continue
        normalized = candidate.lower()
        if not is_valid_email(candidate):
            logger.warning("[MAIL-INVALID-RECIPIENT] token=%s", candidate)
            continue
        if normalized in seen:
            continue
        seen.add(normalized)
        kept.append(candidate)

    header = ", ".join(kept)
    return kept, header


def render_variables(template: str | None, values: Mapping[str, str]) -> str:
    """Replace ``${Column}`` markers with record values; unknown keys become ''."""
    if not template:
        return ""
    lookup = values if isinstance(values, RecordMap) else RecordMap(values)
    return _VARIABLE_RE.sub(lambda match: lookup.lookup(match.group(1)) or "", template)
