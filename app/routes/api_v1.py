from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..app import db
from ..services.api_generation import (
    ApiKeyError,
    ApiRequestError,
    authenticate_api_key,
    extract_api_key,
    generate_single,
)
from ..shared.runtime import rate_limiter

bp = Blueprint("api_v1", __name__, url_prefix="/api/v1")


def client_address() -> str:
    # ProxyFix rewrites remote_addr when TRUSTED_PROXY_COUNT is set
    return request.remote_addr or "unknown"


@bp.post("/generate")
def generate():
    decision = rate_limiter().hit(client_address())
    if not decision.allowed:
        resp = jsonify(
            {"error": "Too many requests", "retryAfter": decision.retry_after}
        )
        resp.status_code = 429
        resp.headers["Retry-After"] = str(decision.retry_after)
        return resp

    try:
        api_key = authenticate_api_key(extract_api_key(request.headers))
    except ApiKeyError as exc:
        return jsonify({"error": exc.message}), 401

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    try:
        return jsonify(generate_single(payload, api_key=api_key))
    except ApiRequestError as exc:
        return jsonify(exc.to_dict()), exc.status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("[API-GENERATE-ERROR] key=%s", api_key.id)
        return jsonify({"error": "Failed to generate certificate"}), 500
