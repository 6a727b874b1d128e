"""OpenAI client factory shared by the classifier, responder and transcriber."""

from __future__ import annotations

from typing import Optional

from openai import OpenAI

from propdesk.config import settings
from propdesk.runtime import Deadline


class AIUnavailable(Exception):
    """No usable client for this call (missing key or spent deadline)."""


def call_timeout(deadline: Optional[Deadline]) -> float:
    """Per-call timeout: ``AI_TIMEOUT_SECONDS`` capped by what the deadline has left."""
    per_call = settings().AI_TIMEOUT_SECONDS
    if deadline is None:
        return per_call
    if deadline.expired:
        raise AIUnavailable("cancelled" if deadline.cancelled else "deadline expired")
    return deadline.timeout_for(per_call)


def get_client(deadline: Optional[Deadline] = None) -> OpenAI:
    """
    Build a client bound to this call's timeout.

    Retries are disabled; a failed call goes straight to the caller's fallback.
    """
    cfg = settings()
    if not cfg.ai_enabled:
        raise AIUnavailable("OPENAI_API_KEY not configured")
    return OpenAI(api_key=cfg.OPENAI_API_KEY, timeout=call_timeout(deadline), max_retries=0)
