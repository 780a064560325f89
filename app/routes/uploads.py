from flask import Blueprint, current_app, jsonify, request

from ..shared.acl import user_required
from ..shared.runtime import artifact_store
from ..shared.uploads import UploadError, save_asset

bp = Blueprint("uploads", __name__, url_prefix="/api")


def _upload(kind: str, field: str, url_field: str, current_user):
    upload = request.files.get(field)
    if upload is None:
        return jsonify({"error": "No file received"}), 400
    try:
        stored = save_asset(upload, kind, artifact_store())
    except UploadError as exc:
        return jsonify({"error": str(exc)}), 400
    current_app.logger.info(
        "[ASSET-UPLOAD] user=%s kind=%s key=%s", current_user.email, kind, stored.key
    )
    return jsonify({url_field: stored.url, "key": stored.key})


@bp.post("/upload-image")
@user_required
def upload_image(current_user):
    return _upload("image", "image", "imageUrl", current_user)


@bp.post("/upload-signature")
@user_required
def upload_signature(current_user):
    return _upload("signature", "signature", "signatureUrl", current_user)


@bp.post("/upload-font")
@user_required
def upload_font(current_user):
    return _upload("font", "font", "fontUrl", current_user)
