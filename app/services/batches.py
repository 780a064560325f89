from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

from flask import current_app

from ..app import db
from ..models import Batch, Certificate, FailedCertificate, InvalidEmail, Template, User
from ..shared.identifiers import allocate_identifiers, release_identifiers
from ..shared.rasterizer import RenderContext, RenderError, render_certificate
from ..shared.records import RecordMap, ValidationResult, ValidRecord
from ..shared.runtime import artifact_store, delivery_queue, render_context
from ..shared.storage import LocalArtifactStore, certificate_key
from ..shared.template_layout import TemplateLayout, layout_from_template
from ..shared.tokens import InsufficientTokens, debit_token, ensure_balance
from .notifications import build_delivery_job

logger = logging.getLogger("certgen.batch")


@dataclass(frozen=True)
class RenderedRecord:
    record: ValidRecord
    snapshot: RecordMap
    unique_identifier: str
    image_key: str
    image_url: str


@dataclass(frozen=True)
class RecordFailure:
    record: ValidRecord
    snapshot: RecordMap
    unique_identifier: str
    reason: str


RecordResult = Union[RenderedRecord, RecordFailure]


@dataclass
class BatchOutcome:
    batch: Batch
    certificates: list[Certificate] = field(default_factory=list)
    failures: list[RecordFailure] = field(default_factory=list)
    enqueued: int = 0

    def summary(self) -> dict:
        return {
            "batchId": self.batch.id,
            "name": self.batch.name,
            **self.batch.progress,
            "emailsQueued": self.enqueued,
            "certificates": [
                {
                    "certificateId": cert.unique_identifier,
                    "certificateUrl": cert.generated_image_url,
                }
                for cert in self.certificates
            ],
        }


def render_record(
    layout: TemplateLayout,
    record: ValidRecord,
    unique_identifier: str,
    ctx: RenderContext,
    store: LocalArtifactStore,
) -> RecordResult:
    """Render and upload one record; runs on a worker thread.

    Rendering failures come back as ``RecordFailure``; storage errors
    propagate and abort the batch.
    """
    snapshot = record.values.with_defaults(layout.placeholder_names)
    try:
        png = render_certificate(layout, snapshot, unique_identifier, ctx)
    except RenderError as exc:
        return RecordFailure(record, snapshot, unique_identifier, str(exc))
    key = certificate_key(unique_identifier)
    url = store.put(key, png)
    return RenderedRecord(record, snapshot, unique_identifier, key, url)


def _record_failure(batch: Batch, failure: RecordFailure) -> None:
    db.session.add(
        FailedCertificate(
            batch_id=batch.id,
            row_number=failure.record.row_number,
            data=failure.snapshot.to_dict(),
            reason=failure.reason,
        )
    )
    batch.processed += 1
    batch.failed += 1
    db.session.commit()
    logger.warning(
        "[BATCH-RECORD-FAILED] batch=%s row=%s identifier=%s reason=%s",
        batch.id,
        failure.record.row_number,
        failure.unique_identifier,
        failure.reason,
    )


def _store_certificate(
    batch: Batch, template: Template, user: User, rendered: RenderedRecord
) -> Certificate:
    transaction = debit_token(user.id)
    certificate = Certificate(
        template_id=template.id,
        batch_id=batch.id,
        unique_identifier=rendered.unique_identifier,
        data=rendered.snapshot.to_dict(),
        generated_image_url=rendered.image_url,
        image_key=rendered.image_key,
        recipient_email=rendered.record.email,
        creator_id=user.id,
    )
    db.session.add(certificate)
    db.session.flush()
    transaction.certificate_id = certificate.id
    batch.processed += 1
    batch.succeeded += 1
    db.session.commit()
    return certificate


def run_batch(
    template: Template,
    validation: ValidationResult,
    *,
    user: User,
    batch_name: str,
    cc: Sequence[str] = (),
    bcc: Sequence[str] = (),
    max_workers: Optional[int] = None,
) -> BatchOutcome:
    """Generate, store and queue delivery for every valid record.

    Raises ``InsufficientTokens`` before writing anything when the user's
    balance cannot cover the valid records. Per-record rendering failures
    become FailedCertificate rows; the batch always runs to completion.
    """
    layout = layout_from_template(template)
    records = list(validation.valid_records)
    ensure_balance(user.id, len(records))

    batch = Batch(
        name=batch_name,
        creator_id=user.id,
        template_id=template.id,
        total_rows=validation.total_rows,
        invalid_email_count=len(validation.invalid_emails),
        processed=0,
        succeeded=0,
        failed=0,
    )
    db.session.add(batch)
    db.session.flush()
    for invalid in validation.invalid_emails:
        db.session.add(
            InvalidEmail(batch_id=batch.id, email=invalid.email, reason=invalid.reason)
        )
    db.session.commit()
    logger.info(
        "[BATCH-START] batch=%s template=%s rows=%s valid=%s invalid=%s",
        batch.id,
        template.id,
        validation.total_rows,
        len(records),
        len(validation.invalid_emails),
    )

    outcome = BatchOutcome(batch=batch)
    if not records:
        return outcome

    ctx = render_context()
    store = artifact_store()
    queue = delivery_queue()
    workers = max(1, max_workers or current_app.config.get("GENERATION_WORKERS", 4))
    identifiers = allocate_identifiers(len(records))

    try:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(render_record, layout, record, uid, ctx, store)
                for record, uid in zip(records, identifiers)
            ]
            try:
                for future in as_completed(futures):
                    result = future.result()
                    if isinstance(result, RecordFailure):
                        _record_failure(batch, result)
                        outcome.failures.append(result)
                        continue
                    try:
                        certificate = _store_certificate(batch, template, user, result)
                    except InsufficientTokens:
                        db.session.rollback()
                        store.delete(result.image_key)
                        failure = RecordFailure(
                            result.record,
                            result.snapshot,
                            result.unique_identifier,
                            "Insufficient tokens",
                        )
                        _record_failure(batch, failure)
                        outcome.failures.append(failure)
                        continue
                    outcome.certificates.append(certificate)
                    if result.record.email:
                        job = build_delivery_job(
                            certificate,
                            result.snapshot,
                            result.record.email,
                            cc=cc,
                            bcc=bcc,
                            attach=True,
                        )
                        queue.enqueue(job)
                        outcome.enqueued += 1
            except Exception:
                for future in futures:
                    future.cancel()
                raise
    finally:
        release_identifiers(identifiers)

    logger.info(
        "[BATCH-DONE] batch=%s succeeded=%s failed=%s invalid=%s queued=%s",
        batch.id,
        batch.succeeded,
        batch.failed,
        batch.invalid_email_count,
        outcome.enqueued,
    )
    return outcome
