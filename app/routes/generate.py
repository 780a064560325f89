from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..app import db
from ..models import Template
from ..services.batches import run_batch
from ..shared.acl import owns_template, user_required
from ..shared.mail_utils import normalize_recipients
from ..shared.records import RecordValidationError, validate_records
from ..shared.template_layout import layout_from_template
from ..shared.tokens import InsufficientTokens

bp = Blueprint("generate", __name__, url_prefix="/api")


@bp.post("/generate-certificates")
@user_required
def generate_certificates(current_user):
    upload = request.files.get("csv")
    template_id = request.form.get("templateId", type=int)
    batch_name = (request.form.get("batchName") or "").strip()
    if not upload or not template_id:
        return jsonify({"error": "Missing required fields"}), 400

    template = db.session.get(Template, template_id)
    if not template:
        return jsonify({"error": "Template not found"}), 404
    if not owns_template(current_user, template):
        return jsonify({"error": "Forbidden"}), 403

    cc, _ = normalize_recipients(request.form.get("cc"))
    bcc, _ = normalize_recipients(request.form.get("bcc"), exclude=cc)

    layout = layout_from_template(template)
    try:
        validation = validate_records(upload.read(), layout.placeholder_names)
    except RecordValidationError as exc:
        return jsonify({"error": str(exc)}), 400

    try:
        outcome = run_batch(
            template,
            validation,
            user=current_user,
            batch_name=batch_name or upload.filename or "Untitled batch",
            cc=cc,
            bcc=bcc,
        )
    except InsufficientTokens as exc:
        return jsonify(exc.to_dict()), 402
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "[BATCH-ERROR] template=%s user=%s", template.id, current_user.id
        )
        return jsonify({"error": "Failed to generate certificates"}), 500

    return jsonify(
        {
            "success": True,
            **outcome.summary(),
            "invalidEmails": validation.summary()["invalidEmails"],
            "missingColumns": validation.missing_columns,
        }
    )
