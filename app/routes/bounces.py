import hmac

from flask import Blueprint, current_app, jsonify, request

from ..services.reports import record_bounces

bp = Blueprint("bounces", __name__, url_prefix="/api")


@bp.post("/bounces")
def ingest():
    """Bounce feed from the sending provider: ``{"email": ...}`` or ``{"emails": [...]}``."""
    secret = current_app.config.get("BOUNCE_WEBHOOK_SECRET")
    if not secret:
        return jsonify({"error": "Bounce ingestion disabled"}), 404
    supplied = request.headers.get("X-Webhook-Secret", "")
    if not hmac.compare_digest(supplied.encode(), secret.encode()):
        return jsonify({"error": "Unauthorized"}), 401

    payload = request.get_json(silent=True) or {}
    emails = payload.get("emails")
    if emails is None:
        emails = [payload.get("email")] if payload.get("email") else []
    if not isinstance(emails, list):
        return jsonify({"error": "emails must be a list"}), 400

    stored = record_bounces(str(e) for e in emails if e)
    return jsonify({"received": len(emails), "stored": stored})
