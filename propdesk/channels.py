"""
Inbound channel adapters.

Each adapter turns a vendor webhook payload (Twilio SMS, SendGrid inbound
parse, Twilio recording callback) into an ``InboundContact`` for the intake
pipeline. TwiML builders for the Twilio responses live here too.
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from email.utils import parseaddr
from typing import Any, Mapping, Optional
from urllib.parse import urlparse
from xml.sax.saxutils import escape, quoteattr

import requests

from propdesk.airtable_schema import Channel
from propdesk.config import settings
from propdesk.errors import InvalidPayload
from propdesk.runtime import PerfTimer, get_logger, normalize_phone

logger = get_logger(__name__)

# addr-spec with the RFC 5322 atext local part; dot-separated domain labels
EMAIL_ADDRESS_RE = re.compile(r"[A-Za-z0-9!#$%&'*+/=?^_`{|}~.-]+@[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)+")

UNKNOWN_SENDER_REPLY = "We couldn't identify your account. Please contact property management directly."
VOICE_PROMPT = "Please leave your message after the tone."
VOICE_NO_RECORDING = "We did not receive a recording."
VOICE_THANKS = "Thank you for your message. We'll get back to you shortly."
VOICE_UNKNOWN_CALLER = (
    "Thank you for your message. However, we could not identify your account. "
    "Please contact property management directly."
)
VOICE_ERROR = (
    "We're sorry, but there was an error processing your message. "
    "Please try again later or contact property management directly."
)
VOICE_RECORDING_ACTION = "/api/voice/recorded"


@dataclass(frozen=True)
class InboundContact:
    channel: Channel
    sender: str
    content: str
    analysis_text: str
    original_content: str
    phone: Optional[str] = None
    email: Optional[str] = None
    subject: Optional[str] = None
    recording_url: Optional[str] = None
    recording_sid: Optional[str] = None


def _text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    return str(value).strip() if value is not None else ""


# ───────────────────────────────────────────────
# SMS
# ───────────────────────────────────────────────
def sms_contact(payload: Mapping[str, Any]) -> InboundContact:
    sender = _text(payload, "From")
    body = _text(payload, "Body")
    if not sender or not body:
        raise InvalidPayload("Missing From or Body")
    return InboundContact(
        channel=Channel.SMS,
        sender=sender,
        content=body,
        analysis_text=body,
        original_content=body,
        phone=normalize_phone(sender, settings().DEFAULT_COUNTRY_CODE),
    )


# ───────────────────────────────────────────────
# EMAIL
# ───────────────────────────────────────────────
def extract_email_address(header: Optional[str]) -> Optional[str]:
    """Address from a ``From`` header; the angle address wins over the display name."""
    _name, address = parseaddr(header or "")
    address = address.strip()
    return address if EMAIL_ADDRESS_RE.fullmatch(address) else None


def email_contact(payload: Mapping[str, Any]) -> Optional[InboundContact]:
    """
    Normalize a SendGrid inbound-parse payload.

    Returns None when no address can be pulled out of ``from``; the caller
    drops such messages.
    """
    from_header = _text(payload, "from")
    if not from_header:
        raise InvalidPayload("Missing from")
    address = extract_email_address(from_header)
    if not address:
        logger.error("Could not extract email address from: %s", from_header)
        return None

    subject = _text(payload, "subject")
    text = _text(payload, "text")
    if not text and not subject:
        raise InvalidPayload("Email has neither subject nor body")

    full = f"Subject: {subject}\n\n{text}"
    return InboundContact(
        channel=Channel.EMAIL,
        sender=address,
        content=text or subject,
        analysis_text=full,
        original_content=full,
        email=address,
        subject=subject or None,
    )


# ───────────────────────────────────────────────
# VOICEMAIL
# ───────────────────────────────────────────────
@dataclass(frozen=True)
class RecordingCallback:
    sender: str
    phone: Optional[str]
    recording_url: str
    recording_sid: Optional[str]


def recording_callback(payload: Mapping[str, Any]) -> RecordingCallback:
    sender = _text(payload, "From")
    url = _text(payload, "RecordingUrl")
    if not sender or not url:
        raise InvalidPayload("Missing From or RecordingUrl")
    return RecordingCallback(
        sender=sender,
        phone=normalize_phone(sender, settings().DEFAULT_COUNTRY_CODE),
        recording_url=url,
        recording_sid=_text(payload, "RecordingSid") or None,
    )


def _audio_url(url: str) -> str:
    # Twilio serves WAV for a bare recording URL; ask for MP3 explicitly.
    return url if posixpath.splitext(urlparse(url).path)[1] else f"{url}.mp3"


def download_recording(url: str, *, timeout: float = 20) -> bytes:
    """Fetch the recording audio, with Twilio basic auth when credentials are configured."""
    cfg = settings()
    auth = (cfg.TWILIO_ACCOUNT_SID, cfg.TWILIO_AUTH_TOKEN) if cfg.twilio_enabled else None
    with PerfTimer("twilio.download_recording", logger=logger):
        resp = requests.get(_audio_url(url), auth=auth, timeout=timeout)
    resp.raise_for_status()
    return resp.content


def voicemail_contact(callback: RecordingCallback, transcript: str) -> InboundContact:
    return InboundContact(
        channel=Channel.VOICEMAIL,
        sender=callback.sender,
        content=transcript,
        analysis_text=transcript,
        original_content=transcript,
        phone=callback.phone,
        recording_url=callback.recording_url,
        recording_sid=callback.recording_sid,
    )


# ───────────────────────────────────────────────
# TwiML
# ───────────────────────────────────────────────
def twiml_empty() -> str:
    return "<Response></Response>"


def twiml_message(text: str) -> str:
    return f"<Response><Message>{escape(text)}</Message></Response>"


def twiml_say(text: str) -> str:
    return f"<Response><Say>{escape(text)}</Say></Response>"


def voice_prompt_twiml(action: str = VOICE_RECORDING_ACTION, max_length: Optional[int] = None) -> str:
    length = max_length if max_length is not None else settings().VOICE_MAX_RECORDING_SECONDS
    return (
        "<Response>"
        f"<Say>{escape(VOICE_PROMPT)}</Say>"
        f'<Record action={quoteattr(action)} method="POST" maxLength="{int(length)}" />'
        f"<Say>{escape(VOICE_NO_RECORDING)}</Say>"
        "</Response>"
    )
