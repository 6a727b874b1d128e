"""
Intake Pipeline
---------------
Runs one inbound contact through identify → classify → draft → persist →
dispatch → finalize. AI steps never raise (they degrade to fallbacks) and a
failed reply never rolls back the stored message.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import requests

from propdesk import email_sender, twilio_sender
from propdesk.ai import classifier, responder, transcriber
from propdesk.ai.outcome import FallbackUsed, Outcome
from propdesk.airtable_schema import Channel, MessageStatus, Urgency
from propdesk.channels import InboundContact, RecordingCallback, download_recording, voicemail_contact
from propdesk.config import settings
from propdesk.datastore import REPOSITORY, IntakeRepository
from propdesk.directory import TenantDirectory, greeting_name
from propdesk.errors import DeliveryError, InvalidPayload
from propdesk.models import (
    Classification,
    EmailMetadata,
    Message,
    MessageMetadata,
    SmsMetadata,
    Tenant,
    VoicemailMetadata,
)
from propdesk.runtime import Deadline, PerfTimer, get_logger, iso_now

logger = get_logger("pipeline")

DEFAULT_EMAIL_SUBJECT = "Your Maintenance Request"
VOICEMAIL_URGENT_PREFIX = "We received your voicemail and identified it as urgent. "
VOICEMAIL_PREFIX = "We received your voicemail. "


def voicemail_confirmation(urgency: Urgency) -> str:
    return f"Thanks for your voicemail. We've flagged this as {urgency.value}. We'll follow up shortly."


def reply_subject(subject: Optional[str], urgency: Urgency) -> str:
    base = f"RE: {subject or DEFAULT_EMAIL_SUBJECT}"
    return f"{base} - URGENT" if urgency == Urgency.EMERGENCY else base


@dataclass
class IntakeResult:
    message: Optional[Message] = None
    tenant: Optional[Tenant] = None
    classification: Optional[Classification] = None
    draft: Optional[str] = None
    unknown_sender: bool = False
    delivered: bool = False
    delivery_error: Optional[str] = None


class IntakePipeline:
    """
    Orchestrates one intake run.

    Collaborators default to the module-level implementations; tests swap
    them through the constructor or by monkeypatching the modules.
    """

    def __init__(
        self,
        *,
        repository: Optional[IntakeRepository] = None,
        directory: Optional[TenantDirectory] = None,
        classify: Optional[Callable[..., Outcome[Classification]]] = None,
        draft: Optional[Callable[..., Outcome[str]]] = None,
        transcribe: Optional[Callable[..., Outcome[str]]] = None,
        send_sms: Optional[Callable[[str, str], str]] = None,
        send_email: Optional[Callable[..., str]] = None,
    ) -> None:
        self.repository = repository or REPOSITORY
        self.directory = directory or TenantDirectory(self.repository)
        self.classify = classify or classifier.classify
        self.draft = draft or responder.draft
        self.transcribe = transcribe or transcriber.transcribe
        self.send_sms = send_sms or twilio_sender.send_sms
        self.send_email = send_email or email_sender.send_email

    # ───────────────────────── Public entry points ─────────────────────────
    def process(self, contact: InboundContact, *, deadline: Optional[Deadline] = None) -> IntakeResult:
        if not (contact.sender or "").strip() or not (contact.content or "").strip():
            raise InvalidPayload("Inbound contact needs a sender and content")
        deadline = deadline or Deadline(settings().INTAKE_AI_BUDGET_SECONDS)

        with PerfTimer(f"intake.{contact.channel.value}", logger=logger):
            tenant = self._identify(contact)
            if tenant is None:
                logger.warning("Received %s from unknown sender %s; not filed.", contact.channel.value, contact.sender)
                return IntakeResult(unknown_sender=True)

            classification = self.classify(contact.analysis_text, deadline)
            reply = self.draft(greeting_name(tenant), contact.analysis_text, classification.value, deadline)
            message = self._persist(contact, tenant, classification, reply)

            delivered, delivery_error = False, None
            try:
                delivered = self._dispatch(contact, tenant, classification.value.urgency, reply.value)
            except DeliveryError as exc:
                logger.error("Reply to %s for message %s failed: %s", contact.sender, message.id, exc)
                delivery_error = str(exc)

            message = self._finalize(message, classification.value, reply.value, delivered, delivery_error)

        logger.info(
            "📥 Filed %s message %s (tenant=%s urgency=%s status=%s delivered=%s)",
            contact.channel.value,
            message.id,
            tenant.id,
            message.urgency.value,
            message.status.value,
            delivered,
        )
        return IntakeResult(
            message=message,
            tenant=tenant,
            classification=classification.value,
            draft=reply.value,
            delivered=delivered,
            delivery_error=delivery_error,
        )

    def process_voicemail(self, callback: RecordingCallback) -> IntakeResult:
        """Download and transcribe a recording, then run it through ``process``."""
        deadline = Deadline(settings().INTAKE_AI_BUDGET_SECONDS)
        transcript = self._transcribe_recording(callback, deadline)
        return self.process(voicemail_contact(callback, transcript.value), deadline=deadline)

    # ───────────────────────── Steps ─────────────────────────
    def _transcribe_recording(self, callback: RecordingCallback, deadline: Deadline) -> Outcome[str]:
        try:
            audio = download_recording(callback.recording_url)
        except requests.RequestException as exc:
            logger.warning("Could not download recording %s: %s", callback.recording_sid or callback.recording_url, exc)
            return FallbackUsed(transcriber.UNTRANSCRIBED_PLACEHOLDER, reason=f"download failed: {exc}")
        return self.transcribe(audio, deadline=deadline)

    def _identify(self, contact: InboundContact) -> Optional[Tenant]:
        if contact.channel == Channel.EMAIL:
            tenant = self.directory.find_by_email(contact.email)
        elif not contact.phone:
            # Alphanumeric sender ids cannot be matched or replied to.
            logger.warning("Sender %r has no usable phone number; not filed.", contact.sender)
            return None
        else:
            tenant = self.directory.find_by_phone(contact.phone)
        if tenant is not None:
            return tenant
        if not settings().AUTO_CREATE_PLACEHOLDER_TENANTS:
            return None
        if contact.channel == Channel.EMAIL:
            return self.directory.create_placeholder(email=contact.email)
        return self.directory.create_placeholder(phone=contact.phone)

    def _metadata(self, contact: InboundContact, tenant: Tenant) -> MessageMetadata:
        name, unit, property_name = self.directory.display_context(tenant)
        if contact.channel == Channel.EMAIL:
            return EmailMetadata(
                tenant_name=name, unit_number=unit, property_name=property_name,
                email=contact.email, subject=contact.subject,
            )
        if contact.channel == Channel.VOICEMAIL:
            return VoicemailMetadata(
                tenant_name=name, unit_number=unit, property_name=property_name,
                phone=contact.phone or contact.sender,
                recording_url=contact.recording_url, recording_sid=contact.recording_sid,
            )
        return SmsMetadata(
            tenant_name=name, unit_number=unit, property_name=property_name,
            phone=contact.phone or contact.sender,
        )

    def _persist(
        self,
        contact: InboundContact,
        tenant: Tenant,
        classification: Outcome[Classification],
        reply: Outcome[str],
    ) -> Message:
        return self.repository.create_message(
            tenant_id=tenant.id,
            content=contact.content,
            original_content=contact.original_content,
            channel=contact.channel,
            urgency=classification.value.urgency,
            category=classification.value.category,
            summary=classification.value.summary,
            ai_response=reply.value,
            metadata=self._metadata(contact, tenant),
            status=MessageStatus.OPEN,
            classification_source=classification.source,
            response_source=reply.source,
        )

    def _dispatch(self, contact: InboundContact, tenant: Tenant, urgency: Urgency, reply: str) -> bool:
        """Send the reply over the originating channel; False when there is nobody to send to."""
        if contact.channel == Channel.SMS:
            self.send_sms(contact.sender, reply)
            return True
        if contact.channel == Channel.EMAIL:
            self.send_email(contact.email, reply_subject(contact.subject, urgency), reply)
            return True

        phone = tenant.phone or contact.phone
        if not phone:
            logger.info("No phone on file for tenant %s; voicemail reply skipped.", tenant.id)
            return False
        self.send_sms(phone, voicemail_confirmation(urgency))
        prefix = VOICEMAIL_URGENT_PREFIX if urgency == Urgency.EMERGENCY else VOICEMAIL_PREFIX
        self.send_sms(phone, prefix + reply)
        return True

    def _finalize(
        self,
        message: Message,
        classification: Classification,
        reply: str,
        delivered: bool,
        delivery_error: Optional[str],
    ) -> Message:
        changes = {}
        if classification.urgency == Urgency.EMERGENCY:
            changes["status"] = MessageStatus.IN_PROGRESS
        if delivered:
            changes["response_content"] = reply
            changes["responded_at"] = iso_now()
        if delivery_error:
            changes["delivery_error"] = delivery_error
        if not changes:
            return message
        return self.repository.update_message(message.id, changes)


def get_pipeline() -> IntakePipeline:
    return IntakePipeline()
