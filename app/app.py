import logging
import os

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import func
from werkzeug.middleware.proxy_fix import ProxyFix

db = SQLAlchemy()

from .models import User  # noqa: E402
from .shared.storage import LocalArtifactStore  # noqa: E402
from .shared.rate_limit import FixedWindowRateLimiter, store_from_url  # noqa: E402
from .services.delivery import CeleryDeliveryQueue  # noqa: E402


def create_app():
    app = Flask(__name__, template_folder="templates")
    app.secret_key = os.getenv("SECRET_KEY", "dev")
    app.config["PREFERRED_URL_SCHEME"] = "https"

    DB_USER = os.getenv("DB_USER", "certgen")
    DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
    DB_HOST = os.getenv("DB_HOST", "db")
    DB_NAME = os.getenv("DB_NAME", "certgen")
    DATABASE_URL = os.getenv(
        "DATABASE_URL",
        f"postgresql+psycopg2://{DB_USER}:{DB_PASSWORD}@{DB_HOST}/{DB_NAME}",
    )

    app.config["SQLALCHEMY_DATABASE_URI"] = DATABASE_URL
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["MAX_CONTENT_LENGTH"] = 25 * 1024 * 1024

    site_root = os.getenv("SITE_ROOT", "/srv")
    app.config["SITE_ROOT"] = site_root
    app.config["PUBLIC_BASE_URL"] = os.getenv(
        "PUBLIC_BASE_URL", "http://localhost:5000"
    ).rstrip("/")
    app.config["ARTIFACT_URL_MAX_AGE"] = int(
        os.getenv("ARTIFACT_URL_MAX_AGE", str(7 * 24 * 3600))
    )
    app.config["EMAIL_FROM"] = os.getenv("EMAIL_FROM")
    app.config["GENERATION_WORKERS"] = int(os.getenv("GENERATION_WORKERS", "4"))
    app.config["BOUNCE_WEBHOOK_SECRET"] = os.getenv("BOUNCE_WEBHOOK_SECRET")
    app.config["RATE_LIMIT_STORAGE_URL"] = os.getenv(
        "RATE_LIMIT_STORAGE_URL", "memory://"
    )
    app.config["API_RATE_LIMIT"] = int(os.getenv("API_RATE_LIMIT", "10"))
    app.config["API_RATE_WINDOW"] = int(os.getenv("API_RATE_WINDOW", "1"))
    # Number of reverse proxies in front of the app whose X-Forwarded-*
    # headers are trusted. Zero means remote_addr is the peer socket.
    app.config["TRUSTED_PROXY_COUNT"] = int(os.getenv("TRUSTED_PROXY_COUNT", "0"))

    font_dirs = [os.path.join(app.root_path, "assets", "fonts")]
    extra_dirs = os.getenv("FONT_DIRS", "")
    font_dirs.extend(d for d in extra_dirs.split(os.pathsep) if d)
    font_dirs.append("/usr/share/fonts/truetype/dejavu")
    app.config["FONT_DIRS"] = font_dirs

    proxies = app.config["TRUSTED_PROXY_COUNT"]
    if proxies > 0:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=proxies, x_proto=proxies, x_host=proxies)

    db.init_app(app)

    # Collaborators are built once here and looked up through
    # app.extensions; tests swap them before issuing requests.
    app.extensions["artifact_store"] = LocalArtifactStore(
        site_root,
        secret_key=app.secret_key,
        public_base_url=app.config["PUBLIC_BASE_URL"],
        max_age=app.config["ARTIFACT_URL_MAX_AGE"],
    )
    app.extensions["delivery_queue"] = CeleryDeliveryQueue()
    app.extensions["rate_limiter"] = FixedWindowRateLimiter(
        store_from_url(app.config["RATE_LIMIT_STORAGE_URL"]),
        limit=app.config["API_RATE_LIMIT"],
        window_seconds=app.config["API_RATE_WINDOW"],
    )

    @app.get("/health")
    def health():  # pragma: no cover - simple healthcheck
        return "OK", 200

    @app.errorhandler(413)
    def too_large(_exc):
        return jsonify({"error": "Upload too large"}), 413

    from .routes.generate import bp as generate_bp
    from .routes.api_v1 import bp as api_v1_bp
    from .routes.validate import bp as validate_bp
    from .routes.batches import bp as batches_bp
    from .routes.bounces import bp as bounces_bp
    from .routes.tokens import bp as tokens_bp
    from .routes.templates import bp as templates_bp
    from .routes.artifacts import bp as artifacts_bp
    from .routes.uploads import bp as uploads_bp

    app.register_blueprint(generate_bp)
    app.register_blueprint(api_v1_bp)
    app.register_blueprint(validate_bp)
    app.register_blueprint(batches_bp)
    app.register_blueprint(bounces_bp)
    app.register_blueprint(tokens_bp)
    app.register_blueprint(templates_bp)
    app.register_blueprint(artifacts_bp)
    app.register_blueprint(uploads_bp)

    with app.app_context():
        if not os.getenv("FLASK_SKIP_SEED"):
            seed_initial_user_safely()

    return app


def seed_initial_user_safely() -> None:
    """Seed an initial admin user if the users table exists and is empty."""

    try:
        if db.engine.url.drivername.startswith("sqlite"):
            return
        from sqlalchemy import inspect

        insp = inspect(db.engine)
        if "users" not in insp.get_table_names():
            logging.info("seed skipped (users table missing)")
            return

        if db.session.query(func.count(User.id)).scalar() > 0:
            return

        first_admin_email = os.getenv("FIRST_ADMIN_EMAIL", "admin@example.com").lower()
        admin = User(
            email=first_admin_email,
            name=first_admin_email,
            is_admin=True,
        )
        db.session.add(admin)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logging.exception("seed_initial_user_safely failed")


