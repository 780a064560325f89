from __future__ import annotations

from sqlalchemy.orm import validates

from ..app import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(255))
    organization = db.Column(db.String(255))
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    is_api_enabled = db.Column(db.Boolean, nullable=False, default=False)
    tokens = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    __table_args__ = (
        db.Index("ix_users_email_lower", db.func.lower(email), unique=True),
        db.CheckConstraint("tokens >= 0", name="ck_users_tokens_non_negative"),
    )

    @validates("email")
    def lower_email(self, key, value):  # pragma: no cover - simple normalizer
        return value.lower()

    def public_info(self) -> dict:
        return {
            "name": self.name,
            "organization": self.organization,
            "email": self.email,
        }


class EmailConfig(db.Model):
    __tablename__ = "email_configs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    default_subject = db.Column(db.String(255), default="Your Certificate")
    default_message = db.Column(
        db.Text, default="Please find your certificate attached."
    )
    email_heading = db.Column(db.String(255))
    logo_url = db.Column(db.String(2048))
    support_email = db.Column(db.String(255))
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )

    user = db.relationship("User")


class Template(db.Model):
    __tablename__ = "templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    image_url = db.Column(db.String(2048), nullable=False)
    width = db.Column(db.Integer)
    height = db.Column(db.Integer)
    placeholders = db.Column(db.JSON, nullable=False, default=list)
    signatures = db.Column(db.JSON, nullable=False, default=list)
    qr_placeholders = db.Column(db.JSON, nullable=False, default=list)
    creator_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )

    creator = db.relationship("User")


class Batch(db.Model):
    __tablename__ = "batches"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    creator_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    template_id = db.Column(db.Integer, db.ForeignKey("templates.id", ondelete="SET NULL"))
    total_rows = db.Column(db.Integer, nullable=False, default=0)
    processed = db.Column(db.Integer, nullable=False, default=0)
    succeeded = db.Column(db.Integer, nullable=False, default=0)
    failed = db.Column(db.Integer, nullable=False, default=0)
    invalid_email_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    creator = db.relationship("User")
    certificates = db.relationship(
        "Certificate", back_populates="batch", lazy="dynamic"
    )
    failed_certificates = db.relationship(
        "FailedCertificate",
        back_populates="batch",
        cascade="all, delete-orphan",
        lazy="dynamic",
    )
    invalid_emails = db.relationship(
        "InvalidEmail",
        back_populates="batch",
        cascade="all, delete-orphan",
        lazy="dynamic",
    )

    @property
    def progress(self) -> dict:
        return {
            "totalRows": self.total_rows or 0,
            "processed": self.processed or 0,
            "succeeded": self.succeeded or 0,
            "failed": self.failed or 0,
            "invalidEmailCount": self.invalid_email_count or 0,
        }


class Certificate(db.Model):
    __tablename__ = "certificates"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("templates.id", ondelete="CASCADE"), nullable=False
    )
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id", ondelete="SET NULL"))
    unique_identifier = db.Column(db.String(64), nullable=False, unique=True)
    data = db.Column(db.JSON, nullable=False, default=dict)
    generated_image_url = db.Column(db.String(2048), nullable=False, default="")
    image_key = db.Column(db.String(512))
    recipient_email = db.Column(db.String(255))
    creator_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    template = db.relationship("Template")
    batch = db.relationship("Batch", back_populates="certificates")
    creator = db.relationship("User")


class FailedCertificate(db.Model):
    __tablename__ = "failed_certificates"

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(
        db.Integer, db.ForeignKey("batches.id", ondelete="CASCADE"), nullable=False
    )
    row_number = db.Column(db.Integer)
    data = db.Column(db.JSON, nullable=False, default=dict)
    reason = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    batch = db.relationship("Batch", back_populates="failed_certificates")


class InvalidEmail(db.Model):
    __tablename__ = "invalid_emails"

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(
        db.Integer, db.ForeignKey("batches.id", ondelete="CASCADE"), nullable=False
    )
    email = db.Column(db.String(255), nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    batch = db.relationship("Batch", back_populates="invalid_emails")


class Bounce(db.Model):
    __tablename__ = "bounces"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    __table_args__ = (
        db.Index("ix_bounces_email_lower", db.func.lower(email), unique=True),
    )

    @validates("email")
    def lower_email(self, key, value):  # pragma: no cover - simple normalizer
        return value.strip().lower()


class TokenTransaction(db.Model):
    __tablename__ = "token_transactions"

    TYPE_CHOICES = ("ADD", "DEDUCT")

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    amount = db.Column(db.Integer, nullable=False)
    type = db.Column(
        db.Enum(*TYPE_CHOICES, name="token_transaction_type"), nullable=False
    )
    reason = db.Column(db.String(120), nullable=False)
    certificate_id = db.Column(
        db.Integer, db.ForeignKey("certificates.id", ondelete="SET NULL")
    )
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    user = db.relationship("User")


class ApiKey(db.Model):
    __tablename__ = "api_keys"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    key = db.Column(db.String(128), nullable=False, unique=True)
    name = db.Column(db.String(255))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    last_used = db.Column(db.DateTime)
    expires_at = db.Column(db.DateTime)

    user = db.relationship("User")
