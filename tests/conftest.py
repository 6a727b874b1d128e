import os
import sys
from types import SimpleNamespace

# Ensure project root is in sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest

from propdesk import email_sender, twilio_sender
from propdesk.config import settings
from propdesk.datastore import REPOSITORY, reset_state

_VENDOR_ENV = [
    "AIRTABLE_API_KEY",
    "AIRTABLE_BASE_ID",
    "OPENAI_API_KEY",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_PHONE_NUMBER",
    "SENDGRID_API_KEY",
    "REQUIRE_SIGNATURE_VALIDATION",
    "INBOUND_WEBHOOK_TOKEN",
    "PUBLIC_BASE_URL",
    "AUTO_CREATE_PLACEHOLDER_TENANTS",
    "EMERGENCY_KEYWORDS",
    "DEFAULT_COUNTRY_CODE",
    "DEFAULT_PROPERTY_NAME",
    "DEFAULT_PROPERTY_ADDRESS",
    "VOICE_MAX_RECORDING_SECONDS",
]


@pytest.fixture(autouse=True)
def _reset_datastore(monkeypatch):
    for key in _VENDOR_ENV:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("PROPDESK_FORCE_IN_MEMORY", "1")
    settings.cache_clear()
    reset_state()
    yield
    settings.cache_clear()


@pytest.fixture
def configure(monkeypatch):
    """Set env vars and rebuild the cached settings."""

    def _apply(**env):
        for key, value in env.items():
            monkeypatch.setenv(key, str(value))
        settings.cache_clear()
        reset_state()

    return _apply


@pytest.fixture
def outbox(monkeypatch):
    """Capture outbound SMS / email instead of sending."""
    box = {"sms": [], "email": []}

    def fake_sms(to, body, **_k):
        box["sms"].append((to, body))
        return f"SM_test_{len(box['sms'])}"

    def fake_email(to, subject, text, html=None, **_k):
        box["email"].append((to, subject, text))
        return f"EM_test_{len(box['email'])}"

    monkeypatch.setattr(twilio_sender, "send_sms", fake_sms)
    monkeypatch.setattr(email_sender, "send_email", fake_email)
    return box


@pytest.fixture
def fake_openai():
    """Build a stand-in for ``OpenAI()`` returning canned completions or raising."""

    def _build(content=None, exc=None, transcript=None):
        calls = []

        def create(**kwargs):
            calls.append(kwargs)
            if exc is not None:
                raise exc
            return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

        def transcribe(**kwargs):
            calls.append(kwargs)
            if exc is not None:
                raise exc
            return SimpleNamespace(text=transcript)

        return SimpleNamespace(
            chat=SimpleNamespace(completions=SimpleNamespace(create=create)),
            audio=SimpleNamespace(transcriptions=SimpleNamespace(create=transcribe)),
            calls=calls,
        )

    return _build


@pytest.fixture
def maple():
    return REPOSITORY.create_property("Maple Court", "12 Maple Ave")


@pytest.fixture
def jane(maple):
    return REPOSITORY.create_tenant(
        "Jane Doe", "4B", email="jane@x.com", phone="+14045550100", property_id=maple.id
    )
