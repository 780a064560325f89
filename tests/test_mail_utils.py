from __future__ import annotations

import pytest

from app.shared.mail_utils import normalize_recipients, render_variables


@pytest.mark.no_smoke
def test_normalize_recipients_comma_separated():
    envelope, header = normalize_recipients("a@x.com, b@y.com")

    assert envelope == ["a@x.com", "b@y.com"]
    assert header == "a@x.com, b@y.com"


@pytest.mark.no_smoke
def test_normalize_recipients_semicolon_separated():
    envelope, header = normalize_recipients("a@x.com; b@y.com ;")

    assert envelope == ["a@x.com", "b@y.com"]
    assert header == "a@x.com, b@y.com"


@pytest.mark.no_smoke
def test_normalize_recipients_excludes_primary():
    envelope, _ = normalize_recipients(["A@X.com", "cc@y.com"], exclude=["a@x.com"])

    assert envelope == ["cc@y.com"]


@pytest.mark.no_smoke
def test_normalize_recipients_drops_invalid(caplog):
    caplog.set_level("WARNING", logger="certgen.mailer")

    envelope, header = normalize_recipients("bad, ok@x.com")

    assert envelope == ["ok@x.com"]
    assert header == "ok@x.com"
    assert any("[MAIL-INVALID-RECIPIENT]" in message for message in caplog.messages)


def test_render_variables_is_case_insensitive():
    rendered = render_variables("Hi ${name}, ${Course} ${missing}!", {"Name": "Alice", "course": "CS101"})
    assert rendered == "Hi Alice, CS101 !"
    assert render_variables(None, {}) == ""
