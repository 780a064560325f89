from __future__ import annotations

import re

from flask import Blueprint, Response, jsonify, request

from ..app import db
from ..models import Batch
from ..services import reports
from ..shared.acl import owns_batch, user_required

bp = Blueprint("batches", __name__, url_prefix="/api")

_FILENAME_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def _load_batch(batch_id, user):
    batch = db.session.get(Batch, batch_id) if batch_id else None
    if not batch:
        return None, (jsonify({"error": "Batch not found"}), 404)
    if not owns_batch(user, batch):
        return None, (jsonify({"error": "Forbidden"}), 403)
    return batch, None


@bp.get("/batches")
@user_required
def list_batches(current_user):
    return jsonify(
        reports.list_batches(
            current_user,
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("perPage", 20, type=int),
        )
    )


@bp.get("/batches/<int:batch_id>")
@user_required
def progress(batch_id: int, current_user):
    batch, error = _load_batch(batch_id, current_user)
    if error:
        return error
    return jsonify(reports.batch_to_dict(batch))


@bp.get("/batches/<int:batch_id>/certificates")
@user_required
def certificates(batch_id: int, current_user):
    batch, error = _load_batch(batch_id, current_user)
    if error:
        return error
    return jsonify({"certificates": reports.batch_certificates(batch)})


@bp.get("/batches/<int:batch_id>/failed")
@user_required
def failed(batch_id: int, current_user):
    batch, error = _load_batch(batch_id, current_user)
    if error:
        return error
    return jsonify({"failedCertificates": reports.failed_certificates(batch)})


@bp.get("/batches/<int:batch_id>/invalid-emails")
@user_required
def invalid_emails(batch_id: int, current_user):
    batch, error = _load_batch(batch_id, current_user)
    if error:
        return error
    return jsonify({"invalidEmails": reports.invalid_emails(batch)})


@bp.get("/batches/<int:batch_id>/export.csv")
@user_required
def export_csv(batch_id: int, current_user):
    batch, error = _load_batch(batch_id, current_user)
    if error:
        return error
    name = _FILENAME_UNSAFE.sub("_", batch.name or "batch").strip("_") or "batch"
    resp = Response(reports.batch_csv(batch), mimetype="text/csv")
    resp.headers["Content-Disposition"] = f"attachment; filename={name}.csv"
    return resp


@bp.get("/analytics/bounces")
@user_required
def bounces(current_user):
    batch, error = _load_batch(request.args.get("batchId", type=int), current_user)
    if error:
        return error
    return jsonify({"batchId": batch.id, "bouncedEmails": reports.bounced_emails(batch)})
