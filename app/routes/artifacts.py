import io
import mimetypes
import posixpath

from flask import Blueprint, abort, send_file

from ..shared.runtime import artifact_store
from ..shared.storage import ArtifactNotFound

bp = Blueprint("artifacts", __name__)


@bp.get("/artifacts/<token>")
def serve(token: str):
    store = artifact_store()
    try:
        key = store.key_from_token(token)
        data = store.read(key)
    except ArtifactNotFound:
        abort(404)
    filename = posixpath.basename(key)
    mimetype = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    return send_file(io.BytesIO(data), mimetype=mimetype, download_name=filename)
