from propdesk.ai import responder
from propdesk.ai.outcome import AiSucceeded, FallbackUsed
from propdesk.ai.responder import FALLBACK_REPLY, draft
from propdesk.airtable_schema import Urgency
from propdesk.models import Classification

LEAK = Classification(urgency=Urgency.HIGH, category="plumbing", summary="Leak under sink.")


def test_fallback_reply_without_api_key():
    outcome = draft("Jane Doe", "My sink leaks", LEAK)

    assert isinstance(outcome, FallbackUsed)
    assert outcome.value == FALLBACK_REPLY


def test_model_reply_is_trimmed_and_prompt_carries_context(monkeypatch, fake_openai):
    client = fake_openai(content="  Hi Jane, a plumber is on the way today.  ")
    monkeypatch.setattr(responder, "get_client", lambda deadline=None: client)

    outcome = draft("Jane Doe", "My sink leaks", LEAK)

    assert isinstance(outcome, AiSucceeded)
    assert outcome.value == "Hi Jane, a plumber is on the way today."
    system, user = client.calls[0]["messages"]
    assert "high urgency" in system["content"]
    assert "plumbing" in system["content"]
    assert user["content"].startswith("Tenant name: Jane Doe")


def test_empty_completion_uses_fallback(monkeypatch, fake_openai):
    monkeypatch.setattr(responder, "get_client", lambda deadline=None: fake_openai(content="   "))

    outcome = draft("Jane Doe", "My sink leaks", LEAK)

    assert isinstance(outcome, FallbackUsed)
    assert outcome.value == FALLBACK_REPLY
    assert outcome.reason == "empty completion"


def test_client_error_uses_fallback(monkeypatch, fake_openai):
    monkeypatch.setattr(responder, "get_client", lambda deadline=None: fake_openai(exc=ConnectionError("down")))

    outcome = draft("there", "Hello?", LEAK)

    assert outcome.degraded
    assert outcome.value == FALLBACK_REPLY
