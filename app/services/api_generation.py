from __future__ import annotations

import logging
from typing import Mapping, Optional

from sqlalchemy import or_

from ..app import db
from ..models import ApiKey, Certificate, Template, User
from ..shared.identifiers import allocate_identifier, release_identifiers
from ..shared.rasterizer import render_certificate
from ..shared.records import RecordMap, find_missing, is_valid_email
from ..shared.runtime import artifact_store, delivery_queue, render_context
from ..shared.storage import certificate_key
from ..shared.template_layout import layout_from_template
from ..shared.time import utc_naive
from .notifications import build_delivery_job

logger = logging.getLogger("certgen.api")


class ApiKeyError(Exception):
    def __init__(self, message: str = "Invalid API key"):
        super().__init__(message)
        self.message = message


class ApiRequestError(ValueError):
    """Malformed external generation request (HTTP 400/404)."""

    def __init__(self, message: str, status: int = 400, **extra):
        super().__init__(message)
        self.message = message
        self.status = status
        self.extra = extra

    def to_dict(self) -> dict:
        return {"error": self.message, **self.extra}


class MissingPlaceholders(ApiRequestError):
    def __init__(self, missing: list[str]):
        super().__init__("Missing required placeholders", missing=missing)
        self.missing = missing


def extract_api_key(headers: Mapping[str, str]) -> Optional[str]:
    raw = (headers.get("x-api-key") or "").strip()
    if raw:
        return raw
    auth = (headers.get("Authorization") or "").strip()
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return None


def authenticate_api_key(raw_key: Optional[str]) -> ApiKey:
    """Resolve an active, unexpired key whose owner has API access."""
    if not raw_key:
        raise ApiKeyError("API key is required")
    now = utc_naive()
    key = (
        db.session.query(ApiKey)
        .join(User, User.id == ApiKey.user_id)
        .filter(
            ApiKey.key == raw_key,
            ApiKey.is_active.is_(True),
            or_(ApiKey.expires_at.is_(None), ApiKey.expires_at > now),
        )
        .one_or_none()
    )
    if not key or not key.user.is_api_enabled:
        raise ApiKeyError()
    key.last_used = now
    db.session.commit()
    return key


def generate_single(payload: Mapping, *, api_key: ApiKey) -> dict:
    """Render, store and queue one certificate for the external API.

    Unlike the CSV path every template placeholder must be supplied.
    """
    template_id = payload.get("templateId")
    placeholders = payload.get("placeholders")
    email = payload.get("email")
    email = email.strip() if isinstance(email, str) else None
    if not template_id or not isinstance(placeholders, dict) or not email:
        raise ApiRequestError("Missing required fields")
    if not is_valid_email(email):
        raise ApiRequestError("Invalid email format")

    try:
        template = db.session.get(Template, int(template_id))
    except (TypeError, ValueError):
        template = None
    if not template:
        raise ApiRequestError("Template not found", status=404)
    if template.creator_id != api_key.user_id and not api_key.user.is_admin:
        raise ApiRequestError("Forbidden", status=403)

    layout = layout_from_template(template)
    values = RecordMap({k: ("" if v is None else str(v).strip()) for k, v in placeholders.items()})
    missing = find_missing([name.lower() for name in layout.placeholder_names], values.keys())
    if missing:
        raise MissingPlaceholders(missing)

    store = artifact_store()
    unique_identifier = allocate_identifier()
    try:
        png = render_certificate(layout, values, unique_identifier, render_context())
        key = certificate_key(unique_identifier)
        url = store.put(key, png)
        certificate = Certificate(
            template_id=template.id,
            unique_identifier=unique_identifier,
            data=values.to_dict(),
            generated_image_url=url,
            image_key=key,
            recipient_email=email,
            creator_id=template.creator_id,
        )
        db.session.add(certificate)
        db.session.commit()
    finally:
        release_identifiers([unique_identifier])

    delivery_queue().enqueue(build_delivery_job(certificate, values, email))
    logger.info(
        "[API-GENERATE] key=%s template=%s certificate=%s",
        api_key.id,
        template.id,
        unique_identifier,
    )
    return {
        "success": True,
        "certificateUrl": url,
        "certificateId": unique_identifier,
    }
