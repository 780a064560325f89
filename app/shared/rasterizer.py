from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from io import BytesIO
from typing import Mapping, Optional, Sequence

import qrcode
from qrcode.exceptions import DataOverflowError
from PIL import Image, ImageColor, ImageDraw, ImageFont, UnidentifiedImageError

from .records import RecordMap
from .storage import AssetFetchError, LocalArtifactStore, fetch_asset
from .template_layout import ImageSlot, Placeholder, PlaceholderStyle, TemplateLayout

logger = logging.getLogger("certgen.render")

# textAlign -> Pillow anchor, vertical baseline fixed to middle
_ANCHORS = {"left": "lm", "center": "mm", "right": "rm"}

_FALLBACK_COLOR = (0, 0, 0, 255)

# Image data Pillow refuses to decode, including decompression bombs
_IMAGE_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError)

_FAMILY_ALIASES = {
    "arial": ("DejaVuSans.ttf", "DejaVuSans-Bold.ttf"),
    "helvetica": ("DejaVuSans.ttf", "DejaVuSans-Bold.ttf"),
    "sans-serif": ("DejaVuSans.ttf", "DejaVuSans-Bold.ttf"),
    "verdana": ("DejaVuSans.ttf", "DejaVuSans-Bold.ttf"),
    "times new roman": ("DejaVuSerif.ttf", "DejaVuSerif-Bold.ttf"),
    "times": ("DejaVuSerif.ttf", "DejaVuSerif-Bold.ttf"),
    "georgia": ("DejaVuSerif.ttf", "DejaVuSerif-Bold.ttf"),
    "serif": ("DejaVuSerif.ttf", "DejaVuSerif-Bold.ttf"),
    "courier new": ("DejaVuSansMono.ttf", "DejaVuSansMono-Bold.ttf"),
    "courier": ("DejaVuSansMono.ttf", "DejaVuSansMono-Bold.ttf"),
    "monospace": ("DejaVuSansMono.ttf", "DejaVuSansMono-Bold.ttf"),
}
_DEFAULT_FONT_FILES = ("DejaVuSans.ttf", "DejaVuSans-Bold.ttf")

QR_BOX_SIZE = 10
QR_BORDER = 1


class RenderError(RuntimeError):
    """Raised when a certificate cannot be rendered at all."""


@dataclass(frozen=True)
class RenderContext:
    public_base_url: str
    font_dirs: Sequence[str] = ()
    store: Optional[LocalArtifactStore] = None

    def validation_url(self, unique_identifier: str) -> str:
        return validation_url(self.public_base_url, unique_identifier)


def validation_url(public_base_url: str, unique_identifier: str) -> str:
    return f"{(public_base_url or '').rstrip('/')}/validate/{unique_identifier}"


def _font_candidates(family: str, bold: bool) -> list[str]:
    compact = family.replace(" ", "")
    names: list[str] = []
    for stem in dict.fromkeys([family, compact]):
        if bold:
            names.append(f"{stem}-Bold.ttf")
        names.extend([f"{stem}-Regular.ttf", f"{stem}.ttf"])
    regular, bold_file = _FAMILY_ALIASES.get(family.lower(), _DEFAULT_FONT_FILES)
    names.append(bold_file if bold else regular)
    if (regular, bold_file) != _DEFAULT_FONT_FILES:
        names.append(_DEFAULT_FONT_FILES[1] if bold else _DEFAULT_FONT_FILES[0])
    return names


def _find_font_file(family: str, bold: bool, font_dirs: Sequence[str]) -> Optional[str]:
    for name in _font_candidates(family, bold):
        for directory in font_dirs:
            path = os.path.join(directory, name)
            if os.path.isfile(path):
                return path
    return None


def load_font(
    style: PlaceholderStyle, ctx: RenderContext
) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    size = max(int(style.font_size), 1)
    if style.custom_font_url:
        try:
            data = fetch_asset(style.custom_font_url, ctx.store)
            return ImageFont.truetype(BytesIO(data), size)
        except (AssetFetchError, OSError) as exc:
            logger.warning(
                "[CERT-RENDER] element=font url=%s error=%s", style.custom_font_url, exc
            )
    path = _find_font_file(style.font_family, style.is_bold, ctx.font_dirs)
    if path:
        try:
            return ImageFont.truetype(path, size)
        except OSError as exc:
            logger.warning("[CERT-RENDER] element=font path=%s error=%s", path, exc)
    return ImageFont.load_default(size=size)


def _parse_color(value: str):
    try:
        return ImageColor.getcolor(value, "RGBA")
    except ValueError:
        logger.warning("[CERT-RENDER] element=color value=%s error=unparseable", value)
        return _FALLBACK_COLOR


def _open_image(data: bytes) -> Image.Image:
    image = Image.open(BytesIO(data))
    image.load()
    return image


def _load_background(layout: TemplateLayout, ctx: RenderContext) -> Image.Image:
    try:
        data = fetch_asset(layout.image_url, ctx.store)
        return _open_image(data)
    except (AssetFetchError, *_IMAGE_ERRORS) as exc:
        raise RenderError(f"Template image unavailable: {exc}") from exc


def _draw_placeholder(
    draw: ImageDraw.ImageDraw, placeholder: Placeholder, value: str, ctx: RenderContext
) -> None:
    style = placeholder.style
    font = load_font(style, ctx)
    draw.text(
        (placeholder.position.x, placeholder.position.y),
        value,
        font=font,
        fill=_parse_color(style.font_color),
        anchor=_ANCHORS.get(style.text_align, "mm"),
    )


def _paste_centered(canvas: Image.Image, image: Image.Image, slot: ImageSlot) -> None:
    x = int(round(slot.position.x - image.width / 2))
    y = int(round(slot.position.y - image.height / 2))
    layer = image.convert("RGBA")
    canvas.paste(layer, (x, y), layer)


def fit_within(size: tuple[int, int], box: tuple[int, int]) -> tuple[int, int]:
    """Scale ``size`` uniformly so it fits inside ``box``."""
    width, height = size
    scale = min(box[0] / width, box[1] / height)
    return max(1, int(round(width * scale))), max(1, int(round(height * scale)))


def _draw_signature(canvas: Image.Image, slot: ImageSlot, ctx: RenderContext) -> None:
    image = _open_image(fetch_asset(slot.image_url, ctx.store))
    scaled = image.resize(
        fit_within(image.size, (slot.width, slot.height)), Image.LANCZOS
    )
    _paste_centered(canvas, scaled, slot)


def build_qr_image(payload: str) -> Image.Image:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        box_size=QR_BOX_SIZE,
        border=QR_BORDER,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    buffer = BytesIO()
    qr.make_image(fill_color="black", back_color="white").save(buffer)
    buffer.seek(0)
    return _open_image(buffer.getvalue()).convert("RGB")


def _draw_qr(canvas: Image.Image, slot: ImageSlot, payload: str) -> None:
    image = build_qr_image(payload).resize((slot.width, slot.height), Image.NEAREST)
    _paste_centered(canvas, image, slot)


def render_certificate(
    layout: TemplateLayout,
    record: Mapping[str, str],
    unique_identifier: Optional[str],
    ctx: RenderContext,
) -> bytes:
    """Composite one certificate and return it as PNG bytes.

    The canvas always has the background's native pixel size. Text is drawn
    for placeholders with a non-empty value in ``record`` (keys matched
    case-insensitively). Signature and QR failures are logged and skipped;
    an unavailable background raises ``RenderError``.
    """
    if layout.has_qr and not unique_identifier:
        raise ValueError("unique_identifier must be allocated before rendering QR codes")

    values = record if isinstance(record, RecordMap) else RecordMap(record)
    canvas = _load_background(layout, ctx).convert("RGBA")
    draw = ImageDraw.Draw(canvas)

    for placeholder in layout.placeholders:
        value = (values.lookup(placeholder.name) or "").strip()
        if not value:
            continue
        _draw_placeholder(draw, placeholder, value, ctx)

    for slot in layout.signatures:
        if not slot.image_url:
            continue
        try:
            _draw_signature(canvas, slot, ctx)
        except (AssetFetchError, ValueError, *_IMAGE_ERRORS) as exc:
            logger.error(
                "[CERT-RENDER] element=signature id=%s url=%s error=%s",
                slot.id,
                slot.image_url,
                exc,
            )

    if layout.qr_placeholders:
        payload = ctx.validation_url(unique_identifier)
        for slot in layout.qr_placeholders:
            try:
                _draw_qr(canvas, slot, payload)
            except (DataOverflowError, OSError, ValueError) as exc:
                logger.error(
                    "[CERT-RENDER] element=qr id=%s identifier=%s error=%s",
                    slot.id,
                    unique_identifier,
                    exc,
                )

    buffer = BytesIO()
    canvas.save(buffer, format="PNG")
    return buffer.getvalue()


def sample_record(layout: TemplateLayout) -> RecordMap:
    """Placeholder values used for previews: each placeholder shows its name."""
    return RecordMap({p.name: p.name for p in layout.placeholders})
