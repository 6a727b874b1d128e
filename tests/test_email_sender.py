import pytest
import requests

from propdesk import email_sender
from propdesk.email_sender import STATUS_HINTS, SendGridError, send_email, text_to_html


class _Resp:
    def __init__(self, status_code, body=None, headers=None):
        self.status_code = status_code
        self._body = body
        self.headers = headers or {}
        self.text = str(body or "")

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


@pytest.fixture
def sendgrid(monkeypatch, configure):
    configure(SENDGRID_API_KEY="SG.test", SENDGRID_FROM_EMAIL="desk@example.com")
    calls = []
    responses = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers})
        return responses.pop(0)

    monkeypatch.setattr(email_sender.requests, "post", fake_post)
    return calls, responses


def test_text_to_html_escapes_and_keeps_line_breaks():
    assert text_to_html("a < b\nthanks") == "<p>a &lt; b<br>thanks</p>"


def test_mock_mode_returns_fake_id():
    assert send_email("jane@x.com", "RE: Pool hours", "Open 9-5").startswith("mock-email-")


def test_recipient_required():
    with pytest.raises(SendGridError):
        send_email("  ", "Subject", "Body")


def test_live_send_returns_message_id(sendgrid):
    calls, responses = sendgrid
    responses.append(_Resp(202, headers={"X-Message-Id": "abc123"}))

    assert send_email("jane@x.com", "RE: Pool hours", "Open 9-5") == "abc123"

    sent = calls[0]
    assert sent["url"] == email_sender.SENDGRID_URL
    assert sent["headers"]["Authorization"] == "Bearer SG.test"
    assert sent["json"]["personalizations"] == [{"to": [{"email": "jane@x.com"}]}]
    assert sent["json"]["from"] == {"email": "desk@example.com"}
    assert sent["json"]["content"][1]["value"] == "<p>Open 9-5</p>"


def test_rejection_raises_with_hint(sendgrid):
    _, responses = sendgrid
    responses.append(_Resp(403, body={"errors": [{"message": "Sender not verified"}]}))

    with pytest.raises(SendGridError) as excinfo:
        send_email("jane@x.com", "Subject", "Body")

    assert excinfo.value.status_code == 403
    assert excinfo.value.hint == STATUS_HINTS[403]
    assert "Sender not verified" in str(excinfo.value)


def test_network_failure_raises(monkeypatch, configure):
    configure(SENDGRID_API_KEY="SG.test")

    def boom(*_a, **_k):
        raise requests.ConnectionError("dns")

    monkeypatch.setattr(email_sender.requests, "post", boom)

    with pytest.raises(SendGridError, match="request failed"):
        send_email("jane@x.com", "Subject", "Body")
