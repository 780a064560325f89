from __future__ import annotations

import io
from dataclasses import dataclass

from PIL import Image, ImageFont, UnidentifiedImageError
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from .storage import (
    FONT_PREFIX,
    SIGNATURE_PREFIX,
    TEMPLATE_PREFIX,
    LocalArtifactStore,
    asset_key,
)

IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "webp"}
FONT_EXTENSIONS = {"ttf", "otf"}
MAX_IMAGE_BYTES = 10 * 1024 * 1024
MAX_FONT_BYTES = 5 * 1024 * 1024


@dataclass(frozen=True)
class AssetKind:
    prefix: str
    extensions: frozenset
    max_bytes: int
    default_name: str


ASSET_KINDS = {
    "image": AssetKind(TEMPLATE_PREFIX, frozenset(IMAGE_EXTENSIONS), MAX_IMAGE_BYTES, "image"),
    "signature": AssetKind(SIGNATURE_PREFIX, frozenset(IMAGE_EXTENSIONS), MAX_IMAGE_BYTES, "signature"),
    "font": AssetKind(FONT_PREFIX, frozenset(FONT_EXTENSIONS), MAX_FONT_BYTES, "font"),
}


@dataclass
class StoredAsset:
    key: str
    url: str


class UploadError(ValueError):
    pass


def _sanitize_filename(filename: str, default: str) -> str:
    cleaned = secure_filename(filename or "")
    return cleaned or default


def _extension(filename: str) -> str:
    return filename.rsplit(".", 1)[-1].lower() if "." in filename else ""


def _validate_image_bytes(raw: bytes) -> None:
    try:
        image = Image.open(io.BytesIO(raw))
        image.verify()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError):
        raise UploadError("Upload must be a valid image.")


def _validate_font_bytes(raw: bytes) -> None:
    try:
        ImageFont.truetype(io.BytesIO(raw), 12)
    except OSError:
        raise UploadError("Upload must be a TrueType or OpenType font.")


def save_asset(upload: FileStorage, kind: str, store: LocalArtifactStore) -> StoredAsset:
    """Validate an uploaded template asset and store it under its namespace."""
    spec = ASSET_KINDS[kind]
    filename = _sanitize_filename(upload.filename, spec.default_name)
    ext = _extension(filename)
    if ext and ext not in spec.extensions:
        raise UploadError("Invalid file type")

    data = upload.read()
    if not data:
        raise UploadError("No file received")
    if len(data) > spec.max_bytes:
        raise UploadError("File too large")
    if kind == "font":
        _validate_font_bytes(data)
    else:
        _validate_image_bytes(data)

    key = asset_key(spec.prefix, filename)
    return StoredAsset(key=key, url=store.put(key, data))
