import pathlib
import sys
from io import BytesIO

import pytest
from PIL import Image

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.app import create_app, db
from app.models import Template, User
from app.shared.rate_limit import FixedWindowRateLimiter, MemoryWindowStore

PUBLIC_BASE_URL = "https://certs.example.com"


def png_bytes(size, color="white") -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "slow" in item.keywords or "quarantine" in item.keywords:
            continue
        item.add_marker("full")
        if "no_smoke" in item.keywords:
            continue
        item.add_marker("smoke")


class RecordingQueue:
    def __init__(self):
        self.jobs = []

    def enqueue(self, job):
        self.jobs.append(job)
        return f"job-{len(self.jobs)}"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(tmp_path, monkeypatch, clock):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.setenv("SITE_ROOT", str(tmp_path / "site"))
    monkeypatch.setenv("FLASK_SKIP_SEED", "1")
    monkeypatch.setenv("PUBLIC_BASE_URL", PUBLIC_BASE_URL)
    monkeypatch.setenv("GENERATION_WORKERS", "2")
    monkeypatch.delenv("BOUNCE_WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("TRUSTED_PROXY_COUNT", raising=False)
    application = create_app()
    application.config["TESTING"] = True
    application.extensions["delivery_queue"] = RecordingQueue()
    application.extensions["rate_limiter"] = FixedWindowRateLimiter(
        MemoryWindowStore(clock=clock), limit=10, window_seconds=1
    )
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def queue(app):
    return app.extensions["delivery_queue"]


@pytest.fixture
def store(app):
    return app.extensions["artifact_store"]


@pytest.fixture
def background(store):
    """Signed URL of a plain 800x600 PNG stored as an uploaded template image."""
    return store.put("templates/background.png", png_bytes((800, 600)))


@pytest.fixture
def make_user(app):
    def _make(email="owner@example.com", tokens=0, is_admin=False, api=False, **extra):
        user = User(
            email=email,
            name=extra.pop("name", "Owner"),
            organization=extra.pop("organization", "Example Org"),
            is_admin=is_admin,
            is_api_enabled=api,
            tokens=tokens,
            **extra,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_template(app, background):
    def _make(creator, image_url=None, placeholders=None, signatures=None, qr=None):
        template = Template(
            name="Course completion",
            image_url=image_url or background,
            width=800,
            height=600,
            placeholders=placeholders
            if placeholders is not None
            else [
                {
                    "id": "p1",
                    "name": "Name",
                    "position": {"x": 400, "y": 250},
                    "style": {"fontSize": 40, "fontWeight": "bold"},
                },
                {
                    "id": "p2",
                    "name": "Course",
                    "position": {"x": 400, "y": 350},
                    "style": {"fontSize": 24, "textAlign": "left"},
                },
            ],
            signatures=signatures or [],
            qr_placeholders=qr or [],
            creator_id=creator.id,
        )
        db.session.add(template)
        db.session.commit()
        return template

    return _make


def login(client, user):
    with client.session_transaction() as sess:
        sess["user_id"] = user.id
