from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

TEXT_ALIGNS: tuple[str, ...] = ("left", "center", "right")

DEFAULT_FONT_FAMILY = "Arial"
DEFAULT_FONT_SIZE = 30
DEFAULT_FONT_COLOR = "#000000"
DEFAULT_FONT_WEIGHT = "normal"
DEFAULT_TEXT_ALIGN = "center"

DEFAULT_SIGNATURE_SIZE = (150, 75)
DEFAULT_QR_SIZE = (100, 100)


@dataclass(frozen=True)
class Position:
    x: float
    y: float


@dataclass(frozen=True)
class PlaceholderStyle:
    font_family: str = DEFAULT_FONT_FAMILY
    font_size: int = DEFAULT_FONT_SIZE
    font_color: str = DEFAULT_FONT_COLOR
    font_weight: str = DEFAULT_FONT_WEIGHT
    text_align: str = DEFAULT_TEXT_ALIGN
    custom_font_url: str | None = None

    @property
    def is_bold(self) -> bool:
        weight = (self.font_weight or "").strip().lower()
        if weight in {"bold", "bolder"}:
            return True
        return weight.isdigit() and int(weight) >= 600


@dataclass(frozen=True)
class Placeholder:
    id: str
    name: str
    position: Position
    style: PlaceholderStyle


@dataclass(frozen=True)
class ImageSlot:
    """A signature or QR code box centred on ``position``."""

    id: str
    position: Position
    width: int
    height: int
    image_url: str | None = None


@dataclass(frozen=True)
class TemplateLayout:
    image_url: str
    width: int | None
    height: int | None
    placeholders: tuple[Placeholder, ...] = field(default_factory=tuple)
    signatures: tuple[ImageSlot, ...] = field(default_factory=tuple)
    qr_placeholders: tuple[ImageSlot, ...] = field(default_factory=tuple)

    @property
    def placeholder_names(self) -> list[str]:
        return [p.name for p in self.placeholders]

    @property
    def has_qr(self) -> bool:
        return bool(self.qr_placeholders)


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_int(value: Any, default: int) -> int:
    try:
        parsed = int(round(float(value)))
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _position(raw: Any) -> Position:
    if not isinstance(raw, dict):
        return Position(0.0, 0.0)
    return Position(_as_float(raw.get("x")), _as_float(raw.get("y")))


def sanitize_style(raw: Any) -> PlaceholderStyle:
    if not isinstance(raw, dict):
        return PlaceholderStyle()
    align = str(raw.get("textAlign") or DEFAULT_TEXT_ALIGN).strip().lower()
    if align not in TEXT_ALIGNS:
        align = DEFAULT_TEXT_ALIGN
    family = str(raw.get("fontFamily") or DEFAULT_FONT_FAMILY).strip()
    color = str(raw.get("fontColor") or DEFAULT_FONT_COLOR).strip()
    weight = str(raw.get("fontWeight") or DEFAULT_FONT_WEIGHT).strip()
    custom = raw.get("customFontUrl")
    return PlaceholderStyle(
        font_family=family or DEFAULT_FONT_FAMILY,
        font_size=_as_int(raw.get("fontSize"), DEFAULT_FONT_SIZE),
        font_color=color or DEFAULT_FONT_COLOR,
        font_weight=weight or DEFAULT_FONT_WEIGHT,
        text_align=align,
        custom_font_url=str(custom).strip() if custom else None,
    )


def sanitize_placeholders(values: Iterable[Any] | None) -> tuple[Placeholder, ...]:
    placeholders: list[Placeholder] = []
    for index, raw in enumerate(values or []):
        if not isinstance(raw, dict):
            continue
        name = str(raw.get("name") or "").strip()
        if not name:
            continue
        placeholders.append(
            Placeholder(
                id=str(raw.get("id") or f"placeholder-{index}"),
                name=name,
                position=_position(raw.get("position")),
                style=sanitize_style(raw.get("style")),
            )
        )
    return tuple(placeholders)


def sanitize_slots(
    values: Iterable[Any] | None, default_size: tuple[int, int], prefix: str
) -> tuple[ImageSlot, ...]:
    slots: list[ImageSlot] = []
    for index, raw in enumerate(values or []):
        if not isinstance(raw, dict):
            continue
        style = raw.get("style") if isinstance(raw.get("style"), dict) else {}
        image_url = raw.get("imageUrl")
        slots.append(
            ImageSlot(
                id=str(raw.get("id") or f"{prefix}-{index}"),
                position=_position(raw.get("position")),
                width=_as_int(style.get("Width"), default_size[0]),
                height=_as_int(style.get("Height"), default_size[1]),
                image_url=str(image_url).strip() if image_url else None,
            )
        )
    return tuple(slots)


def layout_from_template(template: Any) -> TemplateLayout:
    """Build a ``TemplateLayout`` from a ``Template`` row or a plain dict.

    Malformed entries are dropped or defaulted rather than rejected so a
    template saved by an older editor still renders.
    """

    def read(attr: str, key: str):
        if isinstance(template, dict):
            return template.get(key)
        return getattr(template, attr, None)

    width = read("width", "width")
    height = read("height", "height")
    return TemplateLayout(
        image_url=str(read("image_url", "imageUrl") or ""),
        width=_as_int(width, 0) or None,
        height=_as_int(height, 0) or None,
        placeholders=sanitize_placeholders(read("placeholders", "placeholders")),
        signatures=sanitize_slots(
            read("signatures", "signatures"), DEFAULT_SIGNATURE_SIZE, "signature"
        ),
        qr_placeholders=sanitize_slots(
            read("qr_placeholders", "qrPlaceholders"), DEFAULT_QR_SIZE, "qr"
        ),
    )
