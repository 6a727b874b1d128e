"""Outbound email through the SendGrid v3 ``mail/send`` endpoint."""

from __future__ import annotations

from html import escape
from typing import Any, Dict, Optional

import requests

from propdesk.config import settings
from propdesk.errors import DeliveryError
from propdesk.runtime import PerfTimer, epoch_millis, get_logger

logger = get_logger("email_sender")

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"

STATUS_HINTS: Dict[int, str] = {
    401: "SendGrid rejected the API key. Check SENDGRID_API_KEY.",
    403: "The sender address is not verified in SendGrid. Check SENDGRID_FROM_EMAIL.",
    413: "The email is larger than SendGrid accepts.",
    429: "SendGrid rate limit reached. Retry later.",
}


class SendGridError(DeliveryError):
    def __init__(self, message: str, *, status_code: Optional[int] = None, body: Any = None) -> None:
        super().__init__(
            message,
            channel="email",
            status_code=status_code,
            body=body,
            hint=STATUS_HINTS.get(status_code) if status_code else None,
        )


def text_to_html(text: str) -> str:
    return f"<p>{escape(text or '').replace(chr(10), '<br>')}</p>"


def _summarize(body: Any) -> str:
    # {"errors": [{"message": "...", "field": "..."}]}
    if isinstance(body, dict) and isinstance(body.get("errors"), list) and body["errors"]:
        return "; ".join(str(err.get("message", err)) for err in body["errors"] if err)
    return str(body or "").strip()


def send_email(to: str, subject: str, text: str, html: Optional[str] = None, *, timeout: float = 15) -> str:
    """
    Send one email and return SendGrid's message id (``X-Message-Id``).

    Raises SendGridError when the request fails or SendGrid rejects it.
    """
    cfg = settings()
    if not (to or "").strip():
        raise SendGridError("Recipient email address is required")

    if not cfg.sendgrid_enabled:
        message_id = f"mock-email-{epoch_millis()}"
        logger.info("[MOCK SENDGRID] Email to %s | %s: %s", to, subject, (text or "")[:60])
        return message_id

    payload = {
        "personalizations": [{"to": [{"email": to.strip()}]}],
        "from": {"email": cfg.SENDGRID_FROM_EMAIL},
        "subject": subject,
        "content": [
            {"type": "text/plain", "value": text},
            {"type": "text/html", "value": html or text_to_html(text)},
        ],
    }
    try:
        with PerfTimer("sendgrid.send_email", logger=logger):
            resp = requests.post(
                SENDGRID_URL,
                json=payload,
                headers={"Authorization": f"Bearer {cfg.SENDGRID_API_KEY}"},
                timeout=timeout,
            )
    except requests.RequestException as exc:
        raise SendGridError(f"SendGrid request failed: {exc}") from exc

    if resp.status_code >= 400:
        try:
            body: Any = resp.json()
        except ValueError:
            body = resp.text
        logger.error("SendGrid %s error body: %s", resp.status_code, body)
        raise SendGridError(f"SendGrid HTTP {resp.status_code}: {_summarize(body)}", status_code=resp.status_code, body=body)

    message_id = resp.headers.get("X-Message-Id") or f"sendgrid-{epoch_millis()}"
    logger.info("✅ Email sent to %s (%s)", to, message_id)
    return message_id
