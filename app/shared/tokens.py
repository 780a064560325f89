from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, inspect, update

from ..app import db
from ..models import TokenTransaction, User

logger = logging.getLogger("certgen.batch")

GENERATION_REASON = "certificate_generation"
ADMIN_ADD_REASON = "admin_add"


class InsufficientTokens(Exception):
    def __init__(self, required: int, available: int):
        super().__init__(f"Insufficient tokens: required={required} available={available}")
        self.required = required
        self.available = available

    def to_dict(self) -> dict:
        return {
            "error": "Insufficient tokens",
            "required": self.required,
            "available": self.available,
        }


def current_balance(user_id: int) -> int:
    value = db.session.query(User.tokens).filter(User.id == user_id).scalar()
    return int(value or 0)


def ensure_balance(user_id: int, required: int) -> int:
    """Advisory up-front check; raises ``InsufficientTokens`` when short."""
    available = current_balance(user_id)
    if available < required:
        raise InsufficientTokens(required=required, available=available)
    return available


def debit_token(
    user_id: int,
    *,
    amount: int = 1,
    reason: str = GENERATION_REASON,
    certificate_id: Optional[int] = None,
) -> TokenTransaction:
    """Atomically take ``amount`` tokens and append a DEDUCT row.

    The decrement is a single conditional UPDATE so concurrent debits never
    lose updates or push the balance below zero. Caller commits.
    """
    result = db.session.execute(
        update(User)
        .where(User.id == user_id, User.tokens >= amount)
        .values(tokens=User.tokens - amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientTokens(required=amount, available=current_balance(user_id))
    transaction = TokenTransaction(
        user_id=user_id,
        amount=amount,
        type="DEDUCT",
        reason=reason,
        certificate_id=certificate_id,
    )
    db.session.add(transaction)
    _expire_cached_balance(user_id)
    return transaction


def credit_tokens(user_id: int, amount: int, *, reason: str = ADMIN_ADD_REASON) -> None:
    if amount <= 0:
        raise ValueError("amount must be positive")
    db.session.execute(
        update(User)
        .where(User.id == user_id)
        .values(tokens=User.tokens + amount)
        .execution_options(synchronize_session=False)
    )
    db.session.add(
        TokenTransaction(user_id=user_id, amount=amount, type="ADD", reason=reason)
    )
    _expire_cached_balance(user_id)
    logger.info("[TOKENS-ADD] user=%s amount=%s reason=%s", user_id, amount, reason)


def ledger_delta(user_id: int) -> int:
    """Sum of ADD minus DEDUCT rows for ``user_id``."""
    added = (
        db.session.query(func.coalesce(func.sum(TokenTransaction.amount), 0))
        .filter(TokenTransaction.user_id == user_id, TokenTransaction.type == "ADD")
        .scalar()
    )
    deducted = (
        db.session.query(func.coalesce(func.sum(TokenTransaction.amount), 0))
        .filter(TokenTransaction.user_id == user_id, TokenTransaction.type == "DEDUCT")
        .scalar()
    )
    return int(added) - int(deducted)


def _expire_cached_balance(user_id: int) -> None:
    for obj in list(db.session.identity_map.values()):
        if isinstance(obj, User) and inspect(obj).identity == (user_id,):
            db.session.expire(obj, ["tokens"])
