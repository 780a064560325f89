from datetime import timedelta

import pytest
from werkzeug.middleware.proxy_fix import ProxyFix

from app.app import create_app, db
from app.models import ApiKey, Certificate, User
from app.shared.time import utc_naive

KEY = "sk_test_key"


@pytest.fixture
def api_owner(make_user):
    user = make_user(email="api@example.com", api=True, tokens=0)
    db.session.add(ApiKey(user_id=user.id, key=KEY, name="ci"))
    db.session.commit()
    return user


@pytest.fixture
def api_template(api_owner, make_template):
    return make_template(api_owner)


def _post(client, payload, headers=None, ip="203.0.113.7"):
    headers = {"x-api-key": KEY, **(headers or {})}
    return client.post(
        "/api/v1/generate",
        json=payload,
        headers=headers,
        environ_base={"REMOTE_ADDR": ip},
    )


def _payload(template, **overrides):
    body = {
        "templateId": template.id,
        "placeholders": {"name": "Alice", "COURSE": "CS101"},
        "email": "alice@x.com",
    }
    body.update(overrides)
    return body


def test_generates_and_queues_link_delivery(app, client, api_template, queue, store):
    resp = _post(client, _payload(api_template))

    assert resp.status_code == 200
    body = resp.get_json()
    cert = Certificate.query.filter_by(unique_identifier=body["certificateId"]).one()
    assert body["certificateUrl"] == cert.generated_image_url
    assert cert.batch_id is None
    assert cert.image_key == f"certificates/{cert.unique_identifier}.png"
    assert store.exists(cert.image_key)
    [job] = queue.jobs
    assert job.recipient_email == "alice@x.com"
    assert job.attachment_key is None
    assert db.session.get(ApiKey, 1).last_used is not None


def test_bearer_header_is_accepted(app, client, api_template):
    resp = client.post(
        "/api/v1/generate",
        json=_payload(api_template),
        headers={"Authorization": f"Bearer {KEY}"},
    )
    assert resp.status_code == 200


def test_missing_placeholders_are_listed(app, client, api_template, queue):
    resp = _post(client, _payload(api_template, placeholders={"Name": "Alice"}))

    assert resp.status_code == 400
    assert resp.get_json()["missing"] == ["course"]
    assert Certificate.query.count() == 0
    assert queue.jobs == []


@pytest.mark.parametrize(
    "overrides,status,error",
    [
        ({"email": "nope"}, 400, "Invalid email format"),
        ({"email": None}, 400, "Missing required fields"),
        ({"placeholders": "x"}, 400, "Missing required fields"),
        ({"templateId": 4242}, 404, "Template not found"),
    ],
)
def test_request_validation(app, client, api_template, overrides, status, error):
    resp = _post(client, _payload(api_template, **overrides))
    assert resp.status_code == status
    assert resp.get_json()["error"] == error


def test_key_checks(app, client, api_owner, api_template):
    assert client.post("/api/v1/generate", json=_payload(api_template)).status_code == 401
    assert _post(client, _payload(api_template), headers={"x-api-key": "sk_wrong"}).status_code == 401

    key = ApiKey.query.filter_by(key=KEY).one()
    key.expires_at = utc_naive() - timedelta(days=1)
    db.session.commit()
    assert _post(client, _payload(api_template)).status_code == 401

    key.expires_at = None
    db.session.get(User, api_owner.id).is_api_enabled = False
    db.session.commit()
    resp = _post(client, _payload(api_template))
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "Invalid API key"}

    db.session.get(User, api_owner.id).is_api_enabled = True
    key.is_active = False
    db.session.commit()
    assert _post(client, _payload(api_template)).status_code == 401


def test_api_path_does_not_debit_tokens(app, client, api_owner, api_template):
    assert _post(client, _payload(api_template)).status_code == 200
    assert db.session.get(User, api_owner.id).tokens == 0


def test_rate_limit_returns_retry_after(app, client, api_template, clock):
    for _ in range(10):
        assert _post(client, _payload(api_template, email=None)).status_code == 400
        clock.advance(0.01)

    resp = _post(client, _payload(api_template))

    assert resp.status_code == 429
    assert resp.headers["Retry-After"] == "1"
    assert Certificate.query.count() == 0
    # other clients are unaffected
    assert _post(client, _payload(api_template), ip="198.51.100.1").status_code == 200


def test_spoofed_forwarded_for_does_not_reset_the_count(app, client, api_template):
    for i in range(10):
        _post(client, _payload(api_template, email=None), headers={"X-Forwarded-For": f"192.0.2.{i}"})
    limited = _post(client, _payload(api_template), headers={"X-Forwarded-For": "192.0.2.99"})
    assert limited.status_code == 429


def test_trusted_proxy_hop_identifies_client(app, client, api_template):
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)
    for i in range(10):
        _post(
            client,
            _payload(api_template, email=None),
            headers={"X-Forwarded-For": f"10.9.9.{i}, 192.0.2.1"},
            ip="10.0.0.1",
        )
    limited = _post(
        client, _payload(api_template), headers={"X-Forwarded-For": "192.0.2.1"}, ip="10.0.0.1"
    )
    assert limited.status_code == 429
    other = _post(
        client, _payload(api_template), headers={"X-Forwarded-For": "192.0.2.2"}, ip="10.0.0.1"
    )
    assert other.status_code == 200


def test_proxy_fix_only_with_trusted_proxies(app, monkeypatch):
    assert not isinstance(app.wsgi_app, ProxyFix)
    monkeypatch.setenv("TRUSTED_PROXY_COUNT", "1")
    assert isinstance(create_app().wsgi_app, ProxyFix)


def test_key_cannot_use_another_users_template(app, client, api_owner, make_user, make_template):
    foreign = make_template(make_user(email="someone@example.com"))
    resp = _post(client, _payload(foreign))
    assert resp.status_code == 403
    assert Certificate.query.count() == 0
