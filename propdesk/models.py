"""Domain records for the intake desk: properties, tenants, messages and their metadata."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Dict, Mapping, Optional, Set, Type, Union

from propdesk.airtable_schema import Channel, MessageStatus, ResultSource, SortOrder, Urgency
from propdesk.errors import InvalidPayload

PLACEHOLDER_UNIT_PREFIX = "TEMP-"
UNKNOWN_PROPERTY_NAME = "Unknown Property"


def coerce_enum(enum_cls, value: Any, field_name: str):
    """Return ``enum_cls(value)`` or raise InvalidPayload naming the bad field."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidPayload(f"Invalid {field_name} {value!r}; expected one of: {allowed}") from None


# ---------------------------------------------------------------------------
# Properties & tenants
# ---------------------------------------------------------------------------


@dataclass
class Property:
    id: str
    name: str
    address: str
    owner_user_id: Optional[str] = None
    created_at: Optional[str] = None

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "ownerUserId": self.owner_user_id,
            "createdAt": self.created_at,
        }


@dataclass
class Tenant:
    id: str
    name: str
    unit_number: str
    email: Optional[str] = None
    phone: Optional[str] = None
    property_id: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def is_placeholder(self) -> bool:
        return (self.unit_number or "").startswith(PLACEHOLDER_UNIT_PREFIX)

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "propertyId": self.property_id,
            "unitNumber": self.unit_number,
            "createdAt": self.created_at,
            "placeholder": self.is_placeholder,
        }


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Classification:
    urgency: Urgency
    category: str
    summary: str


# ---------------------------------------------------------------------------
# Channel-tagged metadata
# ---------------------------------------------------------------------------

_CAMEL_KEYS = {
    "tenant_name": "tenantName",
    "unit_number": "unitNumber",
    "property_name": "propertyName",
    "recording_url": "recordingUrl",
    "recording_sid": "recordingSid",
}


@dataclass
class DisplayContext:
    """Tenant/property display fields resolved when the message was written."""

    channel: ClassVar[Channel]

    tenant_name: Optional[str] = None
    unit_number: Optional[str] = None
    property_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"channel": self.channel.value}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                out[_CAMEL_KEYS.get(f.name, f.name)] = value
        return out


@dataclass
class SmsMetadata(DisplayContext):
    channel: ClassVar[Channel] = Channel.SMS

    phone: Optional[str] = None


@dataclass
class EmailMetadata(DisplayContext):
    channel: ClassVar[Channel] = Channel.EMAIL

    email: Optional[str] = None
    subject: Optional[str] = None


@dataclass
class VoicemailMetadata(DisplayContext):
    channel: ClassVar[Channel] = Channel.VOICEMAIL

    phone: Optional[str] = None
    recording_url: Optional[str] = None
    recording_sid: Optional[str] = None


MessageMetadata = Union[SmsMetadata, EmailMetadata, VoicemailMetadata]

_METADATA_TYPES: Dict[Channel, Type[DisplayContext]] = {
    Channel.SMS: SmsMetadata,
    Channel.EMAIL: EmailMetadata,
    Channel.VOICEMAIL: VoicemailMetadata,
}


def metadata_from_dict(channel: Channel | str, data: Optional[Mapping[str, Any]]) -> MessageMetadata:
    """Rebuild the metadata variant for ``channel``; unknown keys are dropped."""
    cls = _METADATA_TYPES[coerce_enum(Channel, channel, "channel")]
    data = data or {}
    kwargs = {}
    for f in fields(cls):
        camel = _CAMEL_KEYS.get(f.name, f.name)
        if camel in data:
            kwargs[f.name] = data[camel]
        elif f.name in data:
            kwargs[f.name] = data[f.name]
    return cls(**kwargs)  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass
class Message:
    id: str
    tenant_id: str
    content: str
    original_content: str
    channel: Channel
    urgency: Urgency
    metadata: MessageMetadata
    status: MessageStatus = MessageStatus.OPEN
    category: Optional[str] = None
    summary: Optional[str] = None
    ai_response: Optional[str] = None
    response_content: Optional[str] = None
    responded_at: Optional[str] = None
    assigned_to: Optional[str] = None
    created_at: Optional[str] = None
    classification_source: ResultSource = ResultSource.AI
    response_source: ResultSource = ResultSource.AI
    delivery_error: Optional[str] = None

    # Attributes the management side (and the pipeline's finalize step) may change.
    UPDATABLE: ClassVar[frozenset] = frozenset(
        {
            "status",
            "urgency",
            "category",
            "summary",
            "ai_response",
            "response_content",
            "responded_at",
            "assigned_to",
            "delivery_error",
            "metadata",
        }
    )

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenantId": self.tenant_id,
            "content": self.content,
            "originalContent": self.original_content,
            "channel": self.channel.value,
            "urgency": self.urgency.value,
            "category": self.category,
            "summary": self.summary,
            "aiResponse": self.ai_response,
            "status": self.status.value,
            "responseContent": self.response_content,
            "respondedAt": self.responded_at,
            "assignedTo": self.assigned_to,
            "createdAt": self.created_at,
            "metadata": self.metadata.to_dict(),
            "classificationSource": self.classification_source.value,
            "responseSource": self.response_source.value,
            "deliveryError": self.delivery_error,
        }


@dataclass(frozen=True)
class MessageStats:
    active: int
    emergency: int
    pending: int
    resolved: int

    def to_api(self) -> Dict[str, int]:
        return {
            "active": self.active,
            "emergency": self.emergency,
            "pending": self.pending,
            "resolved": self.resolved,
        }


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

_FILTER_KEYS = {
    "propertyId": "property_id",
    "tenantId": "tenant_id",
    "sortOrder": "sort_order",
}


@dataclass(frozen=True)
class MessageFilter:
    property_id: Optional[str] = None
    urgency: Optional[Urgency] = None
    status: Optional[MessageStatus] = None
    tenant_id: Optional[str] = None
    category: Optional[str] = None
    channel: Optional[Channel] = None
    sort_order: SortOrder = field(default=SortOrder.NEWEST)

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "MessageFilter":
        """
        Build a filter from query-string style params (camelCase or snake_case).

        Blank values are ignored; enum values outside their fixed sets raise
        InvalidPayload.
        """
        raw: Dict[str, Any] = {}
        for key, value in (params or {}).items():
            if value is None or str(value).strip() == "":
                continue
            raw[_FILTER_KEYS.get(key, key)] = str(value).strip()

        kwargs: Dict[str, Any] = {}
        if "property_id" in raw:
            kwargs["property_id"] = raw["property_id"]
        if "tenant_id" in raw:
            kwargs["tenant_id"] = raw["tenant_id"]
        if "category" in raw:
            kwargs["category"] = raw["category"]
        if "urgency" in raw:
            kwargs["urgency"] = coerce_enum(Urgency, raw["urgency"], "urgency")
        if "status" in raw:
            kwargs["status"] = coerce_enum(MessageStatus, raw["status"], "status")
        if "channel" in raw:
            kwargs["channel"] = coerce_enum(Channel, raw["channel"], "channel")
        if "sort_order" in raw:
            kwargs["sort_order"] = coerce_enum(SortOrder, raw["sort_order"], "sortOrder")
        return cls(**kwargs)

    def matches(self, message: Message, property_tenant_ids: Optional[Set[str]] = None) -> bool:
        if self.property_id is not None and message.tenant_id not in (property_tenant_ids or set()):
            return False
        if self.urgency is not None and message.urgency != self.urgency:
            return False
        if self.status is not None and message.status != self.status:
            return False
        if self.tenant_id is not None and message.tenant_id != self.tenant_id:
            return False
        if self.category is not None and message.category != self.category:
            return False
        if self.channel is not None and message.channel != self.channel:
            return False
        return True
