import base64

from flask import Blueprint, current_app, jsonify

from ..app import db
from ..models import Template
from ..shared.acl import owns_template, user_required
from ..shared.rasterizer import RenderError, render_certificate, sample_record
from ..shared.runtime import render_context
from ..shared.template_layout import layout_from_template

bp = Blueprint("templates", __name__, url_prefix="/api/templates")

PREVIEW_IDENTIFIER = "CERT-PREVIEW"


@bp.post("/<int:template_id>/preview")
@user_required
def preview(template_id: int, current_user):
    template = db.session.get(Template, template_id)
    if not template:
        return jsonify({"error": "Template not found"}), 404
    if not owns_template(current_user, template):
        return jsonify({"error": "Forbidden"}), 403

    layout = layout_from_template(template)
    try:
        png = render_certificate(
            layout, sample_record(layout), PREVIEW_IDENTIFIER, render_context()
        )
    except RenderError as exc:
        current_app.logger.warning(
            "[CERT-PREVIEW] template=%s error=%s", template.id, exc
        )
        return jsonify({"error": str(exc)}), 422

    encoded = base64.b64encode(png).decode("ascii")
    return jsonify({"image": f"data:image/png;base64,{encoded}"})
