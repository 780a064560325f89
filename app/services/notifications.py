from __future__ import annotations

from typing import Optional, Sequence

from flask import current_app, render_template

from ..models import Certificate, EmailConfig
from ..shared.mail_utils import render_variables
from ..shared.records import RecordMap
from .delivery import DeliveryJob

DEFAULT_SUBJECT = "Your Certificate"
DEFAULT_MESSAGE = "Please find your certificate attached."
DEFAULT_HEADING = "Congratulations on receiving your certificate!"


def get_email_config(user_id: int) -> Optional[EmailConfig]:
    return EmailConfig.query.filter_by(user_id=user_id).one_or_none()


def build_delivery_job(
    certificate: Certificate,
    record: RecordMap,
    recipient_email: str,
    *,
    cc: Sequence[str] = (),
    bcc: Sequence[str] = (),
    attach: bool = False,
) -> DeliveryJob:
    """Assemble the email for one generated certificate.

    Subject, message and heading come from the creator's EmailConfig (or the
    defaults) with ``${Column}`` markers filled from ``record``.
    """
    config = get_email_config(certificate.creator_id)
    subject = render_variables(
        (config.default_subject if config else None) or DEFAULT_SUBJECT, record
    )
    message = render_variables(
        (config.default_message if config else None) or DEFAULT_MESSAGE, record
    )
    heading = render_variables(
        (config.email_heading if config else None) or DEFAULT_HEADING, record
    )
    html = render_template(
        "email/certificate.html",
        heading=heading,
        message=message,
        certificate_url=certificate.generated_image_url,
        logo_url=config.logo_url if config else None,
        support_email=config.support_email if config else None,
    )
    text = f"{message}\n\nDownload your certificate: {certificate.generated_image_url}\n"
    return DeliveryJob(
        recipient_email=recipient_email,
        from_address=current_app.config.get("EMAIL_FROM"),
        subject=subject,
        text_body=text,
        html_body=html,
        certificate_url=certificate.generated_image_url,
        cc_emails=tuple(cc),
        bcc_emails=tuple(bcc),
        attachment_key=certificate.image_key if attach else None,
        certificate_id=certificate.unique_identifier,
    )
