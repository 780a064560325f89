"""Certificate email delivery through a Celery worker queue.

The request side only builds a ``DeliveryJob`` and enqueues it; the worker
sends it with at most ``MAX_ATTEMPTS`` attempts and exponential backoff.
Jobs are independent: one recipient failing never holds up another.

Run the worker with::

    celery -A app.services.delivery:celery_app worker -Q email
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from typing import Optional

from celery import Celery
from celery.utils.log import get_task_logger

from .. import emailer
from ..shared.storage import ArtifactNotFound, LocalArtifactStore

logger = get_task_logger(__name__)

MAX_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 1
BACKOFF_MAX_SECONDS = 60
TASK_NAME = "certgen.send_certificate_email"

celery_app = Celery(
    "certgen",
    broker=os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0"),
    backend=os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0"),
)
celery_app.conf.update(
    {
        "task_serializer": "json",
        "result_serializer": "json",
        "accept_content": ["json"],
        "timezone": "UTC",
        "enable_utc": True,
        "task_acks_late": True,
        "task_reject_on_worker_lost": True,
        "worker_prefetch_multiplier": 1,
        "result_expires": 3600,
        "task_routes": {TASK_NAME: {"queue": "email"}},
        "worker_hijack_root_logger": False,
    }
)


class DeliveryError(RuntimeError):
    """Transient send failure; the task is retried."""


@dataclass(frozen=True)
class DeliveryJob:
    recipient_email: str
    from_address: Optional[str]
    subject: str
    text_body: str
    html_body: str
    certificate_url: str
    cc_emails: tuple[str, ...] = field(default_factory=tuple)
    bcc_emails: tuple[str, ...] = field(default_factory=tuple)
    attachment_key: Optional[str] = None
    certificate_id: Optional[str] = None

    def to_payload(self) -> dict:
        payload = asdict(self)
        payload["cc_emails"] = list(self.cc_emails)
        payload["bcc_emails"] = list(self.bcc_emails)
        return payload

    @classmethod
    def from_payload(cls, payload: dict) -> "DeliveryJob":
        data = dict(payload)
        data["cc_emails"] = tuple(data.get("cc_emails") or ())
        data["bcc_emails"] = tuple(data.get("bcc_emails") or ())
        return cls(**data)


def deliver(
    job: DeliveryJob,
    *,
    store: Optional[LocalArtifactStore] = None,
    settings: Optional[emailer.SmtpSettings] = None,
) -> dict:
    attachments = []
    if job.attachment_key and store is not None:
        try:
            attachments.append(
                emailer.Attachment("certificate.png", store.read(job.attachment_key))
            )
        except ArtifactNotFound:
            logger.warning(
                "[MAIL-ATTACHMENT-MISSING] key=%s certificate=%s",
                job.attachment_key,
                job.certificate_id,
            )
    result = emailer.send(
        job.recipient_email,
        job.subject,
        job.text_body,
        job.html_body,
        from_addr=job.from_address,
        cc=list(job.cc_emails),
        bcc=list(job.bcc_emails),
        attachments=attachments,
        settings=settings,
    )
    if not result["ok"] and result.get("retryable"):
        raise DeliveryError(result["detail"])
    return result


def _worker_store() -> LocalArtifactStore:
    return LocalArtifactStore(
        os.getenv("SITE_ROOT", "/srv"), secret_key=os.getenv("SECRET_KEY", "dev")
    )


@celery_app.task(
    bind=True,
    name=TASK_NAME,
    autoretry_for=(DeliveryError,),
    max_retries=MAX_ATTEMPTS - 1,
    retry_backoff=BACKOFF_BASE_SECONDS,
    retry_backoff_max=BACKOFF_MAX_SECONDS,
    retry_jitter=False,
)
def send_certificate_email(self, payload: dict) -> dict:
    job = DeliveryJob.from_payload(payload)
    logger.info(
        "[MAIL-JOB] certificate=%s to=%s attempt=%s/%s",
        job.certificate_id,
        job.recipient_email,
        self.request.retries + 1,
        MAX_ATTEMPTS,
    )
    return deliver(job, store=_worker_store())


class CeleryDeliveryQueue:
    """Fire-and-forget enqueue of delivery jobs."""

    def enqueue(self, job: DeliveryJob) -> Optional[str]:
        result = send_certificate_email.apply_async(args=[job.to_payload()])
        return result.id
