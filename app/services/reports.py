"""Read-side queries over batches: listings, exports and bounce correlation."""

from __future__ import annotations

import csv
import io
import logging
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..app import db
from ..models import Batch, Bounce, Certificate, FailedCertificate, InvalidEmail, User
from ..shared.records import RecordMap, is_valid_email

logger = logging.getLogger("certgen.batch")

CSV_FIXED_COLUMNS = ["Unique Identifier", "Generated Image URL", "Created At"]
MAX_PER_PAGE = 100


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def batch_to_dict(batch: Batch) -> dict:
    return {
        "id": batch.id,
        "name": batch.name,
        "templateId": batch.template_id,
        "createdAt": _iso(batch.created_at),
        "progress": batch.progress,
    }


def certificate_to_dict(cert: Certificate) -> dict:
    return {
        "id": cert.id,
        "uniqueIdentifier": cert.unique_identifier,
        "templateId": cert.template_id,
        "batchId": cert.batch_id,
        "data": cert.data or {},
        "generatedImageUrl": cert.generated_image_url,
        "recipientEmail": cert.recipient_email,
        "createdAt": _iso(cert.created_at),
    }


def list_batches(user: User, *, page: int = 1, per_page: int = 20) -> dict:
    page = max(1, page)
    per_page = min(max(1, per_page), MAX_PER_PAGE)
    query = Batch.query
    if not user.is_admin:
        query = query.filter(Batch.creator_id == user.id)
    total = query.count()
    rows = (
        query.order_by(Batch.created_at.desc(), Batch.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "batches": [batch_to_dict(b) for b in rows],
        "page": page,
        "perPage": per_page,
        "total": total,
    }


def batch_certificates(batch: Batch) -> list[dict]:
    rows = batch.certificates.order_by(Certificate.id).all()
    return [certificate_to_dict(c) for c in rows]


def failed_certificates(batch: Batch) -> list[dict]:
    rows = batch.failed_certificates.order_by(FailedCertificate.id).all()
    return [
        {
            "id": row.id,
            "rowNumber": row.row_number,
            "data": row.data or {},
            "reason": row.reason,
            "createdAt": _iso(row.created_at),
        }
        for row in rows
    ]


def invalid_emails(batch: Batch) -> list[dict]:
    rows = batch.invalid_emails.order_by(
        InvalidEmail.created_at.desc(), InvalidEmail.id.desc()
    ).all()
    return [
        {
            "id": row.id,
            "email": row.email,
            "reason": row.reason,
            "createdAt": _iso(row.created_at),
        }
        for row in rows
    ]


def batch_csv(batch: Batch) -> str:
    """CSV export: fixed columns followed by every data column seen in the batch."""
    certificates = batch.certificates.order_by(Certificate.id).all()
    data_columns: list[str] = []
    for cert in certificates:
        for key in (cert.data or {}):
            if key not in data_columns:
                data_columns.append(key)

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_FIXED_COLUMNS + data_columns)
    for cert in certificates:
        data = cert.data or {}
        writer.writerow(
            [
                cert.unique_identifier,
                cert.generated_image_url,
                _iso(cert.created_at) or "",
            ]
            + [data.get(col, "") for col in data_columns]
        )
    return output.getvalue()


def _recipient_of(cert: Certificate) -> Optional[str]:
    email = cert.recipient_email or RecordMap(cert.data or {}).lookup("email")
    email = (email or "").strip().lower()
    return email or None


def bounced_emails(batch: Batch) -> list[str]:
    """Recipient addresses of ``batch`` that appear in the bounce set.

    Bounces are stored by address only, so the correlation happens here
    against each certificate's recipient.
    """
    recipients = {
        email for email in (_recipient_of(c) for c in batch.certificates) if email
    }
    if not recipients:
        return []
    rows = (
        db.session.query(Bounce.email)
        .filter(func.lower(Bounce.email).in_(sorted(recipients)))
        .all()
    )
    return sorted({email.lower() for (email,) in rows})


def record_bounce(email: str) -> bool:
    """Store one bounced address. Returns False for duplicates and junk."""
    normalized = (email or "").strip().lower()
    if not is_valid_email(normalized):
        return False
    exists = (
        db.session.query(Bounce.id)
        .filter(func.lower(Bounce.email) == normalized)
        .first()
    )
    if exists:
        return False
    db.session.add(Bounce(email=normalized))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return False
    logger.info("[BOUNCE] email=%s", normalized)
    return True


def record_bounces(emails: Iterable[str]) -> int:
    return sum(1 for email in emails if record_bounce(email))
