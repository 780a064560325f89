from flask import Blueprint, jsonify

from ..models import Certificate
from ..shared.runtime import artifact_store

bp = Blueprint("validate", __name__, url_prefix="/api/validate")


@bp.get("/<unique_identifier>")
def validate(unique_identifier: str):
    cert = Certificate.query.filter_by(
        unique_identifier=(unique_identifier or "").strip()
    ).one_or_none()
    if not cert:
        return jsonify({"error": "Certificate not found"}), 404

    image_url = cert.generated_image_url
    if cert.image_key:
        image_url = artifact_store().url_for(cert.image_key)

    template = cert.template
    return jsonify(
        {
            "uniqueIdentifier": cert.unique_identifier,
            "data": cert.data or {},
            "imageUrl": image_url,
            "createdAt": cert.created_at.isoformat() if cert.created_at else None,
            "template": {"id": template.id, "name": template.name} if template else None,
            "creator": cert.creator.public_info() if cert.creator else None,
        }
    )
