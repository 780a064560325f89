from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..app import db
from ..models import TokenTransaction, User
from ..shared.acl import admin_required, user_required
from ..shared.tokens import credit_tokens, current_balance

bp = Blueprint("tokens", __name__, url_prefix="/api/tokens")


@bp.get("/balance")
@user_required
def balance(current_user):
    return jsonify({"tokens": current_balance(current_user.id)})


@bp.get("/transactions")
@user_required
def transactions(current_user):
    rows = (
        TokenTransaction.query.filter_by(user_id=current_user.id)
        .order_by(TokenTransaction.created_at.desc(), TokenTransaction.id.desc())
        .limit(200)
        .all()
    )
    return jsonify(
        {
            "transactions": [
                {
                    "id": row.id,
                    "amount": row.amount,
                    "type": row.type,
                    "reason": row.reason,
                    "certificateId": row.certificate_id,
                    "createdAt": row.created_at.isoformat() if row.created_at else None,
                }
                for row in rows
            ]
        }
    )


@bp.post("/credit")
@admin_required
def credit(current_user):
    payload = request.get_json(silent=True) or {}
    email = (payload.get("email") or "").strip().lower()
    try:
        amount = int(payload.get("amount"))
    except (TypeError, ValueError):
        amount = 0
    if not email or amount <= 0:
        return jsonify({"error": "email and a positive amount are required"}), 400

    user = User.query.filter(db.func.lower(User.email) == email).one_or_none()
    if not user:
        return jsonify({"error": "User not found"}), 404
    credit_tokens(user.id, amount)
    db.session.commit()
    return jsonify({"email": user.email, "tokens": current_balance(user.id)})
