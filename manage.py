from app.app import create_app, db
import os
import secrets
from datetime import timedelta

from flask_migrate import Migrate
from flask.cli import FlaskGroup
import click
from sqlalchemy import func
from flask import current_app
from app.models import ApiKey, Certificate, Template, User
from app.shared.identifiers import allocate_identifier, release_identifiers
from app.shared.rasterizer import RenderError, render_certificate
from app.shared.records import validate_records
from app.shared.runtime import artifact_store, render_context
from app.shared.storage import CERTIFICATE_PREFIX, write_atomic
from app.shared.template_layout import layout_from_template
from app.shared.time import utc_naive
from app.shared.tokens import credit_tokens, current_balance


migrate = Migrate()


def create_certgen_app():
    app = create_app()
    migrate.init_app(app, db)
    return app


cli = FlaskGroup(create_app=create_certgen_app)


def _user_by_email(email: str):
    return (
        db.session.query(User)
        .filter(func.lower(User.email) == email.strip().lower())
        .one_or_none()
    )


@cli.command("gen_cert")
@click.option("--template", "template_id", required=True, type=int)
@click.option("--csv", "csv_path", required=True, type=click.Path(exists=True))
@click.option("--row", "row_number", default=1, show_default=True, type=int)
@click.option("--out", "out_path", required=True, type=click.Path())
def gen_cert(template_id: int, csv_path: str, row_number: int, out_path: str):
    """Render one CSV row against a template to a local PNG (nothing is stored)."""
    template = db.session.get(Template, template_id)
    if not template:
        click.echo("Template not found", err=True)
        return
    layout = layout_from_template(template)
    with open(csv_path, "rb") as fh:
        validation = validate_records(fh.read(), layout.placeholder_names)
    record = next(
        (r for r in validation.valid_records if r.row_number == row_number), None
    )
    if record is None:
        click.echo(f"Row {row_number} not found or invalid", err=True)
        return
    unique_identifier = allocate_identifier()
    try:
        png = render_certificate(
            layout,
            record.values.with_defaults(layout.placeholder_names),
            unique_identifier,
            render_context(),
        )
    except RenderError as exc:
        click.echo(f"Render failed: {exc}", err=True)
        return
    finally:
        release_identifiers([unique_identifier])
    write_atomic(out_path, png)
    click.echo(out_path)


@cli.command("purge_orphan_certs")
@click.option(
    "--dry-run", is_flag=True, help="List orphaned certificate images without deleting"
)
def purge_orphan_certs(dry_run: bool):
    store = artifact_store()
    cert_root = os.path.join(store.root, CERTIFICATE_PREFIX)
    if not os.path.isdir(cert_root):
        click.echo("Certificate directory missing", err=True)
        return
    if (
        not dry_run
        and current_app.config.get("ENV") == "production"
        and os.getenv("ALLOW_CERT_PURGE") != "1"
    ):
        click.echo(
            "Refusing to delete in production without ALLOW_CERT_PURGE=1", err=True
        )
        return

    total = deleted = kept = errors = 0
    samples: list[str] = []
    for key in store.iter_keys(CERTIFICATE_PREFIX):
        if not key.lower().endswith(".png"):
            continue
        total += 1
        exists = db.session.query(Certificate.id).filter_by(image_key=key).first()
        if exists:
            kept += 1
            continue
        if len(samples) < 5:
            samples.append(key)
        if dry_run:
            continue
        try:
            store.delete(key)
            deleted += 1
        except OSError:
            errors += 1
            current_app.logger.exception("[CERT-PURGE] failed to remove %s", key)
    summary = f"scanned={total} deleted={deleted} kept={kept} errors={errors}"
    for key in samples:
        click.echo(key)
    click.echo(summary)
    current_app.logger.info("[CERT-PURGE] %s", summary)


@cli.command("add_tokens")
@click.option("--email", required=True)
@click.option("--amount", required=True, type=int)
def add_tokens(email: str, amount: int):
    """Credit tokens to a user."""
    user = _user_by_email(email)
    if not user:
        click.echo("User not found", err=True)
        return
    if amount <= 0:
        click.echo("Amount must be positive", err=True)
        return
    credit_tokens(user.id, amount)
    db.session.commit()
    click.echo(f"{user.email} tokens={current_balance(user.id)}")


@cli.command("create_api_key")
@click.option("--email", required=True)
@click.option("--name", default=None)
@click.option("--expires-days", type=int, default=None)
def create_api_key(email: str, name: str | None, expires_days: int | None):
    """Issue an API key for a user and print it once."""
    user = _user_by_email(email)
    if not user:
        click.echo("User not found", err=True)
        return
    key = ApiKey(
        user_id=user.id,
        key=f"sk_{secrets.token_hex(24)}",
        name=name,
        is_active=True,
        expires_at=(
            utc_naive() + timedelta(days=expires_days) if expires_days else None
        ),
    )
    db.session.add(key)
    db.session.commit()
    click.echo(key.key)


@cli.command("enable_api")
@click.option("--email", required=True)
@click.option("--disable", is_flag=True, help="Revoke API access instead")
def enable_api(email: str, disable: bool):
    user = _user_by_email(email)
    if not user:
        click.echo("User not found", err=True)
        return
    user.is_api_enabled = not disable
    db.session.commit()
    click.echo(f"{user.email} api_enabled={user.is_api_enabled}")


if __name__ == "__main__":
    cli()
