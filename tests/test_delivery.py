import smtplib

import pytest

from app import emailer
from app.services import delivery
from app.services.delivery import DeliveryError, DeliveryJob, deliver


def _job(**overrides):
    data = dict(
        recipient_email="alice@x.com",
        from_address="certs@example.com",
        subject="Your Certificate",
        text_body="Please find your certificate attached.",
        html_body="<p>hi</p>",
        certificate_url="https://certs.example.com/artifacts/t",
        cc_emails=("cc@example.com",),
        bcc_emails=("bcc@example.com",),
        attachment_key="certificates/CERT-1.png",
        certificate_id="CERT-1",
    )
    data.update(overrides)
    return DeliveryJob(**data)


SETTINGS = emailer.SmtpSettings(host="smtp.example.com", port=587, user="u", password="p")


class FakeSMTP:
    instances = []
    fail_with = None

    def __init__(self, host, port):
        self.host, self.port = host, port
        self.sent = []
        self.closed = False
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True

    def starttls(self):
        pass

    def login(self, user, password):
        pass

    def sendmail(self, from_addr, recipients, message):
        if FakeSMTP.fail_with:
            raise FakeSMTP.fail_with
        self.sent.append((from_addr, recipients, message))


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def test_payload_round_trip_is_json_friendly():
    job = _job()
    payload = job.to_payload()
    assert payload["cc_emails"] == ["cc@example.com"]
    assert DeliveryJob.from_payload(payload) == job


def test_deliver_sends_with_attachment(app, fake_smtp, store):
    store.put("certificates/CERT-1.png", b"\x89PNGdata")

    result = deliver(_job(), store=store, settings=SETTINGS)

    assert result["ok"]
    [server] = fake_smtp.instances
    [(from_addr, recipients, message)] = server.sent
    assert from_addr == "certs@example.com"
    assert recipients == ["alice@x.com", "cc@example.com", "bcc@example.com"]
    assert 'filename="certificate.png"' in message
    assert "bcc@example.com" not in message.split("\n\n", 1)[0]
    assert server.closed


def test_missing_attachment_still_sends_link(app, fake_smtp, store, caplog):
    result = deliver(_job(), store=store, settings=SETTINGS)
    assert result["ok"]
    assert "certificate.png" not in fake_smtp.instances[0].sent[0][2]


def test_transient_failure_raises_for_retry(app, fake_smtp):
    fake_smtp.fail_with = smtplib.SMTPServerDisconnected("gone")
    with pytest.raises(DeliveryError):
        deliver(_job(attachment_key=None), settings=SETTINGS)
    # closed even though sendmail raised
    assert [s.closed for s in fake_smtp.instances] == [True]


def test_refused_recipient_is_permanent(app, fake_smtp):
    fake_smtp.fail_with = smtplib.SMTPRecipientsRefused({"alice@x.com": (550, b"no")})
    result = deliver(_job(attachment_key=None), settings=SETTINGS)
    assert result == {"ok": False, "detail": result["detail"], "retryable": False}


def test_stub_mode_without_smtp_host(caplog):
    caplog.set_level("INFO", logger="certgen.mailer")
    result = deliver(_job(attachment_key=None), settings=emailer.SmtpSettings(None, None, None, None))
    assert result["ok"] is False
    assert result["retryable"] is False
    assert any("result=stub" in m for m in caplog.messages)


def test_task_retry_policy():
    task = delivery.send_certificate_email
    assert task.name == delivery.TASK_NAME
    assert task.max_retries == delivery.MAX_ATTEMPTS - 1 == 2
    assert DeliveryError in task.autoretry_for
    assert task.retry_backoff == 1


def test_celery_queue_enqueues_payload(monkeypatch):
    captured = {}

    class Result:
        id = "task-1"

    def fake_apply_async(args):
        captured["args"] = args
        return Result()

    monkeypatch.setattr(delivery.send_certificate_email, "apply_async", fake_apply_async)

    assert delivery.CeleryDeliveryQueue().enqueue(_job()) == "task-1"
    assert captured["args"][0]["recipient_email"] == "alice@x.com"
