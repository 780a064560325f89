"""Accessors for the collaborators ``create_app`` installs in ``app.extensions``."""

from __future__ import annotations

from flask import current_app

from .rasterizer import RenderContext
from .rate_limit import FixedWindowRateLimiter
from .storage import LocalArtifactStore


def artifact_store() -> LocalArtifactStore:
    return current_app.extensions["artifact_store"]


def delivery_queue():
    return current_app.extensions["delivery_queue"]


def rate_limiter() -> FixedWindowRateLimiter:
    return current_app.extensions["rate_limiter"]


def render_context() -> RenderContext:
    return RenderContext(
        public_base_url=current_app.config["PUBLIC_BASE_URL"],
        font_dirs=tuple(current_app.config.get("FONT_DIRS", ())),
        store=artifact_store(),
    )
