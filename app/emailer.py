import json
import logging
import os
import smtplib
import sys
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional, Sequence

from .shared.mail_utils import normalize_recipients

logger = logging.getLogger("certgen.mailer")
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    logger.addHandler(handler)
logger.setLevel(logging.INFO)


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    maintype: str = "image"
    subtype: str = "png"


@dataclass(frozen=True)
class SmtpSettings:
    host: Optional[str]
    port: Optional[int]
    user: Optional[str]
    password: Optional[str]
    from_name: str = ""

    @classmethod
    def from_env(cls) -> "SmtpSettings":
        port = os.getenv("SMTP_PORT")
        return cls(
            host=os.getenv("SMTP_HOST"),
            port=int(port) if port else None,
            user=os.getenv("SMTP_USER"),
            password=os.getenv("SMTP_PASS"),
            from_name=os.getenv("SMTP_FROM_NAME", ""),
        )


def _stringify_envelope(recipients: Sequence[str]) -> str:
    return json.dumps(list(recipients))


def send(
    recipients: Sequence[str] | str | None,
    subject: str,
    body: str,
    html: str | None = None,
    *,
    from_addr: str | None = None,
    cc: Sequence[str] | str | None = None,
    bcc: Sequence[str] | str | None = None,
    attachments: Sequence[Attachment] = (),
    settings: SmtpSettings | None = None,
):
    """Send one message; returns ``{"ok": bool, "detail": str, "retryable": bool}``."""
    settings = settings or SmtpSettings.from_env()
    host, port = settings.host, settings.port
    from_addr = from_addr or os.getenv("EMAIL_FROM")

    envelope, header = normalize_recipients(recipients)
    cc_list, cc_header = normalize_recipients(cc, exclude=envelope)
    bcc_list, _ = normalize_recipients(bcc, exclude=envelope + cc_list)
    mode = "real"
    if not host or not port or not from_addr:
        mode = "stub"
        logger.info(
            "[MAIL-OUT] mode=%s to_header=%s envelope=%s subject=\"%s\" host=%s result=stub",
            mode,
            header,
            _stringify_envelope(envelope),
            subject,
            host,
        )
        return {"ok": False, "detail": "stub: missing config", "retryable": False}

    if not envelope:
        logger.warning(
            "[MAIL-NO-RECIPIENTS] subject=\"%s\" host=%s", subject, host
        )
        return {"ok": False, "detail": "no valid recipients", "retryable": False}

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["To"] = header
    if cc_header:
        msg["Cc"] = cc_header
    msg["From"] = f"{settings.from_name} <{from_addr}>" if settings.from_name else from_addr
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype="html")
    for item in attachments:
        msg.add_attachment(
            item.content,
            maintype=item.maintype,
            subtype=item.subtype,
            filename=item.filename,
        )

    smtp_cls = smtplib.SMTP_SSL if port == 465 else smtplib.SMTP
    try:
        # the context manager closes the socket when any step raises
        with smtp_cls(host, port) as server:
            if port == 587:
                server.starttls()
            if settings.user and settings.password:
                server.login(settings.user, settings.password)
            server.sendmail(from_addr, envelope + cc_list + bcc_list, msg.as_string())
        logger.info(
            "[MAIL-OUT] mode=%s to_header=%s envelope=%s subject=\"%s\" host=%s result=sent",
            mode,
            header,
            _stringify_envelope(envelope + cc_list + bcc_list),
            subject,
            host,
        )
        return {"ok": True, "detail": "sent", "retryable": False}
    except (smtplib.SMTPException, OSError) as e:
        permanent = isinstance(e, smtplib.SMTPRecipientsRefused)
        logger.info(
            "[MAIL-OUT] mode=%s to_header=%s envelope=%s subject=\"%s\" host=%s result=%s",
            mode,
            header,
            _stringify_envelope(envelope),
            subject,
            host,
            e,
        )
        return {"ok": False, "detail": str(e), "retryable": not permanent}
