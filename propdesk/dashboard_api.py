"""Management REST API consumed by the dashboard (prefix ``/api``)."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from propdesk import email_sender, twilio_sender
from propdesk.airtable_schema import Channel, MessageStatus
from propdesk.datastore import REPOSITORY
from propdesk.directory import TenantDirectory
from propdesk.errors import DeliveryError, InvalidPayload, NotFoundError
from propdesk.models import Message, MessageFilter, coerce_enum
from propdesk.pipeline import reply_subject
from propdesk.runtime import get_logger, iso_now

logger = get_logger("dashboard_api")

router = APIRouter(prefix="/api")


# ───────────────────────────── Request bodies ─────────────────────────────
class RespondRequest(BaseModel):
    messageId: Optional[str] = None
    responseContent: Optional[str] = None
    useAiResponse: Optional[bool] = None


class AssignRequest(BaseModel):
    messageId: Optional[str] = None
    userId: Optional[str] = None


class StatusRequest(BaseModel):
    status: Optional[str] = None


class PropertyRequest(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    ownerUserId: Optional[str] = None


class TenantRequest(BaseModel):
    name: Optional[str] = None
    unitNumber: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    propertyId: Optional[str] = None


class SmsTestRequest(BaseModel):
    phoneNumber: Optional[str] = None
    message: Optional[str] = None


# ───────────────────────────── Helpers ─────────────────────────────
@contextmanager
def _api_errors():
    try:
        yield
    except InvalidPayload as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


def _message_or_404(message_id: str) -> Message:
    message = REPOSITORY.get_message(message_id)
    if message is None:
        raise HTTPException(status_code=404, detail=f"Message {message_id} not found")
    return message


def _deliver(message: Message, text: str) -> str:
    """Send ``text`` back over the channel the message arrived on."""
    tenant = REPOSITORY.get_tenant(message.tenant_id)
    meta = message.metadata
    if message.channel == Channel.EMAIL:
        to = getattr(meta, "email", None) or (tenant.email if tenant else None)
        if not to:
            raise DeliveryError("No email address on file for this message", channel="email")
        return email_sender.send_email(to, reply_subject(getattr(meta, "subject", None), message.urgency), text)

    to = getattr(meta, "phone", None) or (tenant.phone if tenant else None)
    if not to:
        raise DeliveryError("No phone number on file for this message", channel="sms")
    return twilio_sender.send_sms(to, text)


# ───────────────────────────── Messages ─────────────────────────────
@router.get("/messages")
def list_messages(request: Request):
    with _api_errors():
        message_filter = MessageFilter.from_params(dict(request.query_params))
        return [m.to_api() for m in REPOSITORY.list_messages(message_filter)]


@router.get("/messages/stats")
def message_stats():
    return REPOSITORY.message_stats().to_api()


@router.get("/messages/{message_id}")
def get_message(message_id: str):
    return _message_or_404(message_id).to_api()


@router.post("/messages/respond")
def respond(body: RespondRequest):
    if not body.messageId:
        raise HTTPException(status_code=400, detail="messageId is required")
    message = _message_or_404(body.messageId)

    text = (body.responseContent or "").strip()
    if not text and body.useAiResponse:
        text = (message.ai_response or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Nothing to send: provide responseContent or useAiResponse")

    with _api_errors():
        message = REPOSITORY.update_message(
            message.id,
            {"response_content": text, "responded_at": iso_now(), "status": MessageStatus.RESOLVED},
        )
    try:
        _deliver(message, text)
    except DeliveryError as exc:
        logger.error("Response for message %s saved but not delivered: %s", message.id, exc)
        REPOSITORY.update_message(message.id, {"delivery_error": str(exc)})
        return JSONResponse(status_code=502, content={**exc.to_payload(), "messageId": message.id})
    return message.to_api()


@router.post("/messages/assign")
def assign(body: AssignRequest):
    if not body.messageId or not body.userId:
        raise HTTPException(status_code=400, detail="messageId and userId are required")
    with _api_errors():
        message = REPOSITORY.update_message(
            body.messageId, {"assigned_to": body.userId, "status": MessageStatus.IN_PROGRESS}
        )
    return message.to_api()


@router.post("/messages/{message_id}/resolve")
def resolve(message_id: str):
    with _api_errors():
        return REPOSITORY.update_message(message_id, {"status": MessageStatus.RESOLVED}).to_api()


@router.post("/messages/{message_id}/status")
def update_status(message_id: str, body: StatusRequest):
    with _api_errors():
        if not body.status:
            raise InvalidPayload("status is required")
        status = coerce_enum(MessageStatus, body.status, "status")
        return REPOSITORY.update_message(message_id, {"status": status}).to_api()


# ───────────────────────────── Properties ─────────────────────────────
@router.get("/properties")
def list_properties():
    return [p.to_api() for p in REPOSITORY.list_properties()]


@router.post("/properties", status_code=201)
def create_property(body: PropertyRequest):
    with _api_errors():
        prop = REPOSITORY.create_property(body.name or "", body.address or "", owner_user_id=body.ownerUserId)
    return prop.to_api()


# ───────────────────────────── Tenants ─────────────────────────────
@router.get("/tenants")
def list_tenants():
    return [t.to_api() for t in TenantDirectory().list_tenants()]


@router.get("/tenants/{tenant_id}")
def get_tenant(tenant_id: str):
    tenant = TenantDirectory().get_tenant(tenant_id)
    if tenant is None:
        raise HTTPException(status_code=404, detail=f"Tenant {tenant_id} not found")
    messages = REPOSITORY.list_messages(MessageFilter(tenant_id=tenant.id))
    return {**tenant.to_api(), "messages": [m.to_api() for m in messages]}


@router.post("/tenants", status_code=201)
def create_tenant(body: TenantRequest):
    with _api_errors():
        tenant = TenantDirectory().create_tenant(
            body.name or "",
            body.unitNumber or "",
            email=body.email,
            phone=body.phone,
            property_id=body.propertyId,
        )
    return tenant.to_api()


# ───────────────────────────── Diagnostics ─────────────────────────────
@router.post("/test-sms")
def test_sms(body: SmsTestRequest):
    if not (body.phoneNumber or "").strip() or not (body.message or "").strip():
        raise HTTPException(status_code=400, detail="phoneNumber and message are required")
    try:
        sid = twilio_sender.send_sms(body.phoneNumber, body.message)
    except DeliveryError as exc:
        logger.error("Test SMS to %s failed: %s", body.phoneNumber, exc)
        return JSONResponse(status_code=502, content=exc.to_payload())
    return {"success": True, "sid": sid, "message": f"SMS sent to {body.phoneNumber}"}
