import pytest

from app.app import db
from app.models import TokenTransaction, User
from app.shared.tokens import (
    InsufficientTokens,
    credit_tokens,
    current_balance,
    debit_token,
    ensure_balance,
    ledger_delta,
)
from conftest import login


def test_debit_appends_ledger_row(app, make_user):
    user = make_user(tokens=2)

    txn = debit_token(user.id)
    db.session.commit()

    assert current_balance(user.id) == 1
    assert user.tokens == 1
    assert (txn.type, txn.amount, txn.reason) == ("DEDUCT", 1, "certificate_generation")


def test_debit_never_goes_negative(app, make_user):
    user = make_user(tokens=1)
    debit_token(user.id)
    db.session.commit()

    with pytest.raises(InsufficientTokens) as excinfo:
        debit_token(user.id)
    db.session.rollback()

    assert (excinfo.value.required, excinfo.value.available) == (1, 0)
    assert current_balance(user.id) == 0
    assert TokenTransaction.query.count() == 1


def test_ensure_balance(app, make_user):
    user = make_user(tokens=3)
    assert ensure_balance(user.id, 3) == 3
    with pytest.raises(InsufficientTokens):
        ensure_balance(user.id, 4)


def test_credit_and_ledger(app, make_user):
    user = make_user(tokens=0)
    credit_tokens(user.id, 5)
    debit_token(user.id)
    db.session.commit()

    assert current_balance(user.id) == 4 == ledger_delta(user.id)
    with pytest.raises(ValueError):
        credit_tokens(user.id, 0)


def test_token_routes(app, client, make_user):
    admin = make_user(email="admin@example.com", is_admin=True)
    member = make_user(email="member@example.com", tokens=1)

    login(client, member)
    assert client.get("/api/tokens/balance").get_json() == {"tokens": 1}
    assert client.post("/api/tokens/credit", json={"email": "member@example.com", "amount": 5}).status_code == 403

    login(client, admin)
    resp = client.post("/api/tokens/credit", json={"email": "MEMBER@example.com", "amount": 5})
    assert resp.get_json() == {"email": "member@example.com", "tokens": 6}
    assert client.post("/api/tokens/credit", json={"email": "member@example.com", "amount": -1}).status_code == 400
    assert client.post("/api/tokens/credit", json={"email": "ghost@example.com", "amount": 1}).status_code == 404

    login(client, member)
    history = client.get("/api/tokens/transactions").get_json()["transactions"]
    assert [(t["type"], t["amount"], t["reason"]) for t in history] == [("ADD", 5, "admin_add")]
    assert db.session.get(User, member.id).tokens == 6


def test_token_routes_require_login(app, client):
    assert client.get("/api/tokens/balance").status_code == 401
