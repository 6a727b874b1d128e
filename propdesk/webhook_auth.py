"""Webhook authentication: Twilio request signatures and the shared inbound token."""

from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Iterable, Mapping, Tuple, Union

from fastapi import HTTPException, Request

from propdesk.config import settings
from propdesk.runtime import get_logger

logger = get_logger(__name__)

Params = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


def _pairs(params: Params):
    items = params.items() if isinstance(params, Mapping) else params
    return sorted(((str(k), str(v)) for k, v in items), key=lambda kv: kv[0])


def compute_twilio_signature(auth_token: str, url: str, params: Params) -> str:
    """HMAC-SHA1 over the full URL followed by every POST param (sorted by name), base64-encoded."""
    payload = url + "".join(f"{k}{v}" for k, v in _pairs(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_twilio_signature(auth_token: str, signature: str | None, url: str, params: Params) -> bool:
    if not signature:
        return False
    expected = compute_twilio_signature(auth_token, url, params)
    return hmac.compare_digest(expected, signature)


def public_url(request: Request) -> str:
    """URL Twilio signed; rebuilt from PUBLIC_BASE_URL when running behind a proxy."""
    base = settings().PUBLIC_BASE_URL
    if not base:
        return str(request.url)
    url = base.rstrip("/") + request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return url


def _token_from_authorization(header: str | None) -> str | None:
    if not header:
        return None
    parts = header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


async def require_twilio_signature(request: Request) -> None:
    """Reject Twilio webhooks whose ``X-Twilio-Signature`` does not verify."""
    cfg = settings()
    if not cfg.REQUIRE_SIGNATURE_VALIDATION:
        return
    if not cfg.TWILIO_AUTH_TOKEN:
        logger.error("Signature validation is required but TWILIO_AUTH_TOKEN is not set")
        raise HTTPException(status_code=403, detail="Signature validation unavailable")

    params: list = []
    if "form" in (request.headers.get("content-type") or "").lower():
        form = await request.form()
        params = list(form.multi_items())

    url = public_url(request)
    if not validate_twilio_signature(cfg.TWILIO_AUTH_TOKEN, request.headers.get("x-twilio-signature"), url, params):
        logger.warning("Rejected Twilio webhook with bad signature for %s", url)
        raise HTTPException(status_code=403, detail="Invalid Twilio signature")


async def require_webhook_token(request: Request) -> None:
    """Shared-token check for the email webhook (query ``token``, ``X-Webhook-Token`` or Bearer)."""
    cfg = settings()
    if not cfg.REQUIRE_SIGNATURE_VALIDATION:
        return

    expected = cfg.INBOUND_WEBHOOK_TOKEN
    provided = request.query_params.get("token")
    provided = provided or request.headers.get("x-webhook-token")
    provided = provided or _token_from_authorization(request.headers.get("Authorization"))

    if not expected or not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(status_code=401, detail="Invalid webhook token")
