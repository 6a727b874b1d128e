from __future__ import annotations

from typing import Optional

from propdesk.ai.client import AIUnavailable, get_client
from propdesk.ai.outcome import AiSucceeded, FallbackUsed, Outcome
from propdesk.config import settings
from propdesk.models import Classification
from propdesk.runtime import Deadline, PerfTimer, get_logger

logger = get_logger(__name__)

FALLBACK_REPLY = "I'll look into this issue and get back to you as soon as possible."


# ───────────────────────────────────────────────────────────
# Prompt
# ───────────────────────────────────────────────────────────
def _system_prompt(classification: Classification) -> str:
    return (
        "You are an AI assistant for a property manager responding to tenant communications. "
        "Create a professional, helpful, and empathetic response to the tenant message. "
        f"Address the tenant by name. The message is classified as {classification.urgency.value} urgency "
        f"in the category of {classification.category}.\n\n"
        "Keep responses under 150 words. Be specific about next steps and when the tenant can expect assistance.\n"
        "For emergencies, emphasize immediate action being taken.\n"
        "For high urgency, provide specific timeframes for resolution.\n"
        "For medium urgency, provide general timeframes and clear expectations.\n"
        "For low urgency, be courteous but indicate the request will be handled in normal business order."
    )


def _user_prompt(tenant_name: str, text: str, classification: Classification) -> str:
    return (
        f"Tenant name: {tenant_name}\n"
        f"Message: {text}\n"
        f"Classification: {classification.urgency.value} urgency, {classification.category} category"
    )


# ───────────────────────────────────────────────────────────
# Public API
# ───────────────────────────────────────────────────────────
def draft(
    tenant_name: str,
    text: str,
    classification: Classification,
    deadline: Optional[Deadline] = None,
) -> Outcome[str]:
    """
    Draft a reply to the tenant.

    Returns ``AiSucceeded`` with the model's text, or ``FallbackUsed`` with the
    fixed acknowledgement on any error, empty completion, missing key or spent
    deadline. Never raises.
    """
    try:
        client = get_client(deadline)
        with PerfTimer("ai.draft", logger=logger):
            resp = client.chat.completions.create(
                model=settings().OPENAI_MODEL,
                messages=[
                    {"role": "system", "content": _system_prompt(classification)},
                    {"role": "user", "content": _user_prompt(tenant_name, text, classification)},
                ],
            )
        content = ((resp.choices[0].message.content if resp and resp.choices else None) or "").strip()
        if not content:
            return FallbackUsed(FALLBACK_REPLY, reason="empty completion")
        return AiSucceeded(content)
    except AIUnavailable as exc:
        logger.info("Responder skipped AI (%s); using fallback reply.", exc)
        return FallbackUsed(FALLBACK_REPLY, reason=str(exc))
    except Exception as exc:
        logger.warning("Response generation failed; using fallback reply: %s", exc)
        return FallbackUsed(FALLBACK_REPLY, reason=str(exc))
