"""Inbound webhooks: Twilio SMS, Twilio voice (prompt + recording callback), SendGrid inbound parse."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from propdesk.channels import (
    UNKNOWN_SENDER_REPLY,
    VOICE_ERROR,
    VOICE_THANKS,
    VOICE_UNKNOWN_CALLER,
    email_contact,
    recording_callback,
    sms_contact,
    twiml_empty,
    twiml_message,
    twiml_say,
    voice_prompt_twiml,
)
from propdesk.errors import InvalidPayload
from propdesk.pipeline import get_pipeline
from propdesk.runtime import get_logger
from propdesk.webhook_auth import require_twilio_signature, require_webhook_token

logger = get_logger("inbound")

router = APIRouter()


async def _parse_body(request: Request) -> Dict[str, Any]:
    """Parse request body supporting both JSON and form data."""
    content_type = request.headers.get("content-type", "").lower()
    try:
        if "application/json" in content_type:
            body = await request.json()
            return dict(body) if isinstance(body, dict) else {}
        form = await request.form()
        return {k: (v if isinstance(v, str) else str(v)) for k, v in form.items()}
    except Exception as exc:
        logger.warning("⚠️ Failed to parse request body: %s", exc)
        raise HTTPException(status_code=422, detail="Invalid payload")


def _xml(body: str, status_code: int = 200) -> Response:
    return Response(content=body, media_type="text/xml", status_code=status_code)


# === SMS ===
@router.post("/api/sms/incoming", dependencies=[Depends(require_twilio_signature)])
async def sms_incoming(request: Request):
    data = await _parse_body(request)
    try:
        contact = sms_contact(data)
        result = await run_in_threadpool(get_pipeline().process, contact)
    except InvalidPayload as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except Exception:
        logger.exception("❌ Error processing incoming SMS")
        return PlainTextResponse("Error processing message", status_code=500)

    if result.unknown_sender:
        return _xml(twiml_message(UNKNOWN_SENDER_REPLY))
    return _xml(twiml_empty())


# === VOICE ===
@router.post("/api/voice/incoming", dependencies=[Depends(require_twilio_signature)])
async def voice_incoming():
    return _xml(voice_prompt_twiml())


@router.post("/api/voice/recorded", dependencies=[Depends(require_twilio_signature)])
async def voice_recorded(request: Request):
    """Always answers with TwiML so the caller hears something, even when processing fails."""
    try:
        data = await _parse_body(request)
        callback = recording_callback(data)
        result = await run_in_threadpool(get_pipeline().process_voicemail, callback)
    except (InvalidPayload, HTTPException) as exc:
        logger.warning("Rejected recording callback: %s", exc)
        return _xml(twiml_say(VOICE_ERROR))
    except Exception:
        logger.exception("❌ Error processing voicemail")
        return _xml(twiml_say(VOICE_ERROR))

    if result.unknown_sender:
        return _xml(twiml_say(VOICE_UNKNOWN_CALLER))
    return _xml(twiml_say(VOICE_THANKS))


# === EMAIL ===
@router.post("/api/email/incoming", dependencies=[Depends(require_webhook_token)])
async def email_incoming(request: Request):
    data = await _parse_body(request)
    try:
        contact = email_contact(data)
        if contact is None:
            return PlainTextResponse("OK")
        result = await run_in_threadpool(get_pipeline().process, contact)
    except InvalidPayload as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except Exception:
        logger.exception("❌ Error processing incoming email")
        return JSONResponse({"error": "Failed to process email"}, status_code=500)

    if result.unknown_sender:
        logger.warning("Email from unknown address %s was not filed.", contact.email)
    return PlainTextResponse("OK")
