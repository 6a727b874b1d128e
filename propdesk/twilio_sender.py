# propdesk/twilio_sender.py
"""
📡 Twilio Sender: outbound SMS over the 2010-04-01 Messages REST endpoint
- Normalizes and validates numbers (E.164) before any network call
- Vendor failures surface as TwilioError with the Twilio code and a remediation hint
- Without credentials, runs as a mock that logs and returns a fake SID
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import httpx

from propdesk.config import settings
from propdesk.errors import DeliveryError
from propdesk.runtime import PerfTimer, epoch_millis, get_logger, is_e164, normalize_phone

logger = get_logger("twilio_sender")

API_BASE = "https://api.twilio.com/2010-04-01"
MAX_BODY_CHARS = 1600

# Twilio error code → what the operator should do about it
ERROR_HINTS: Dict[int, str] = {
    21211: "Invalid 'To' phone number. Use E.164 format, e.g. +15551234567.",
    21608: "This number isn't verified in your Twilio trial account. Verify it or upgrade the account.",
    21219: "Invalid 'From' number. Check the TWILIO_PHONE_NUMBER setup in the Twilio console.",
    21606: "The 'From' number cannot send SMS. Use an SMS-capable Twilio number.",
    20003: "Authentication failed. Check TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN.",
    20005: "The Twilio account is suspended or inactive.",
    30002: "The Twilio account is suspended or inactive.",
    21610: "The recipient has unsubscribed (replied STOP) and cannot receive messages.",
}


def hint_for(code: Optional[int]) -> Optional[str]:
    if code is None:
        return None
    return ERROR_HINTS.get(int(code))


class TwilioError(DeliveryError):
    """Delivery error that carries Twilio's HTTP metadata and response body."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[int] = None,
        body: Any = None,
        hint: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            channel="sms",
            status_code=status_code,
            code=code,
            body=body,
            hint=hint or hint_for(code),
        )
        self.payload = payload


# =========================
# Small helpers
# =========================
def _has_value(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def _messages_url(account_sid: str) -> str:
    return f"{API_BASE}/Accounts/{account_sid}/Messages.json"


def _validate_payload(payload: Dict[str, Any], *, require_from: bool = True) -> None:
    """Ensure To/From/Body are present and sane before dispatch."""
    to = payload.get("To")
    if not is_e164(to):
        raise TwilioError(f'To must be E.164; got "{to}"', hint=ERROR_HINTS[21211], payload=dict(payload))

    if require_from and not is_e164(payload.get("From")):
        raise TwilioError(
            f'From must be E.164; got "{payload.get("From")}"',
            hint=ERROR_HINTS[21219],
            payload=dict(payload),
        )

    problems: List[str] = []
    body = payload.get("Body")
    if not _has_value(body):
        problems.append("Body is required")
    elif len(str(body)) > MAX_BODY_CHARS:
        problems.append(f"Body exceeds {MAX_BODY_CHARS} characters")
    if problems:
        raise TwilioError("Invalid SMS payload: " + "; ".join(problems), payload=dict(payload))


def _extract_error_body(resp: Any) -> Any:
    """Parse JSON body if available; fallback to plain text."""
    if resp is None:
        return None
    try:
        return resp.json()
    except ValueError:
        return (getattr(resp, "text", "") or "").strip()


def _summarize_error_body(body: Any) -> str:
    if body is None:
        return ""
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if _has_value(value):
                return str(value)
        return str(body)
    return str(body)


def _error_code(body: Any) -> Optional[int]:
    if isinstance(body, dict) and body.get("code") not in (None, ""):
        try:
            return int(body["code"])
        except (TypeError, ValueError):
            return None
    return None


def _http_post(url: str, data: Dict[str, Any], auth: Tuple[str, str], timeout: float = 15) -> Dict[str, Any]:
    try:
        resp = httpx.post(url, data=data, auth=auth, timeout=timeout)
    except httpx.HTTPError as exc:
        raise TwilioError(f"Twilio request failed: {exc}", payload=data) from exc

    if resp.is_error:
        body = _extract_error_body(resp)
        logger.error("Twilio %s error body: %s", resp.status_code, body)
        summary = _summarize_error_body(body)
        message = f"Twilio HTTP {resp.status_code}"
        if summary:
            message = f"{message}: {summary}"
        raise TwilioError(message, status_code=resp.status_code, code=_error_code(body), body=body, payload=data)
    try:
        return resp.json()
    except ValueError:
        return {"raw": resp.text}


# =========================
# Public API
# =========================
def send_sms(to: str, body: str, *, timeout: float = 15) -> str:
    """
    Send one SMS and return the provider message SID.

    ``to`` is normalized with the configured default country code first.
    Raises TwilioError on validation or vendor failure.
    """
    cfg = settings()
    normalized_to = normalize_phone(to, cfg.DEFAULT_COUNTRY_CODE) or (to or "")
    data: Dict[str, Any] = {"To": normalized_to, "From": cfg.TWILIO_PHONE_NUMBER, "Body": (body or "").strip()}

    if not cfg.twilio_enabled:
        _validate_payload(data, require_from=False)
        sid = f"mock-sid-{epoch_millis()}"
        logger.info("[MOCK TWILIO] Sending SMS to %s: %s", normalized_to, data["Body"][:60])
        return sid

    _validate_payload(data)
    logger.info("📤 Sending SMS → %s: %s...", normalized_to, data["Body"][:50])
    with PerfTimer("twilio.send_sms", logger=logger):
        resp = _http_post(
            _messages_url(cfg.TWILIO_ACCOUNT_SID),
            data=data,
            auth=(cfg.TWILIO_ACCOUNT_SID, cfg.TWILIO_AUTH_TOKEN),
            timeout=timeout,
        )
    sid = resp.get("sid")
    if not sid:
        raise TwilioError("Twilio response did not include a message SID", body=resp, payload=data)
    logger.info("✅ SMS sent with SID %s", sid)
    return sid
