from __future__ import annotations

"""
Central Airtable schema definitions and enumerations.

Canonical table and column names live here so the datastore never hard-codes
strings. Environment variables can override individual names to line up with
a customised copy of the base; the defaults reflect the live schema.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Tuple


# ---------------------------------------------------------------------------
# Core data containers
# ---------------------------------------------------------------------------


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    v = value.strip()
    return v if v else None


@dataclass(frozen=True)
class FieldDefinition:
    """
    Represents an Airtable column.

    Args:
        default: Canonical field name in Airtable.
        env_vars: Ordered list of env vars that can override the field name
                  (first non-empty wins).
        options: Allowed values for single-select fields (if applicable).
    """

    default: str
    env_vars: Tuple[str, ...] = field(default_factory=tuple)
    options: Tuple[str, ...] = field(default_factory=tuple)

    def resolve(self) -> str:
        """Return the active field name (env override or default)."""
        for env in self.env_vars:
            override = _clean(os.getenv(env))
            if override:
                return override
        return self.default


@dataclass(frozen=True)
class TableDefinition:
    """
    Airtable table metadata with helpers to resolve field names.

    Args:
        default: Human-readable table name in Airtable.
        env_vars: Env vars that can rename the table.
        fields: Mapping of logical keys → FieldDefinition.
    """

    default: str
    env_vars: Tuple[str, ...] = field(default_factory=tuple)
    fields: Dict[str, FieldDefinition] = field(default_factory=dict)

    def name(self) -> str:
        for env in self.env_vars:
            override = _clean(os.getenv(env))
            if override:
                return override
        return self.default

    def field_name(self, key: str) -> str:
        return self.fields[key].resolve()

    def field_names(self) -> Dict[str, str]:
        return {key: f.resolve() for key, f in self.fields.items()}


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Urgency(str, Enum):
    EMERGENCY = "emergency"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Channel(str, Enum):
    SMS = "sms"
    EMAIL = "email"
    VOICEMAIL = "voicemail"


class MessageStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    ESCALATED_VENDOR = "escalated_vendor"
    PENDING_REPAIR = "pending_repair"


class SortOrder(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"


class ResultSource(str, Enum):
    AI = "ai"
    FALLBACK = "fallback"


def _values(enum_cls) -> Tuple[str, ...]:
    return tuple(member.value for member in enum_cls)


# ---------------------------------------------------------------------------
# Table definitions
# ---------------------------------------------------------------------------


PROPERTIES_TABLE = TableDefinition(
    default="Properties",
    env_vars=("PROPERTIES_TABLE",),
    fields={
        "NAME": FieldDefinition("Name", ("PROPERTY_NAME_FIELD",)),
        "ADDRESS": FieldDefinition("Address", ("PROPERTY_ADDRESS_FIELD",)),
        "OWNER_USER_ID": FieldDefinition("Owner User ID"),
        "CREATED_AT": FieldDefinition("Created At"),
    },
)

TENANTS_TABLE = TableDefinition(
    default="Tenants",
    env_vars=("TENANTS_TABLE",),
    fields={
        "NAME": FieldDefinition("Name", ("TENANT_NAME_FIELD",)),
        "EMAIL": FieldDefinition("Email", ("TENANT_EMAIL_FIELD",)),
        "PHONE": FieldDefinition("Phone", ("TENANT_PHONE_FIELD",)),
        "PROPERTY_LINK": FieldDefinition("Property", ("TENANT_PROPERTY_LINK_FIELD",)),
        "UNIT_NUMBER": FieldDefinition("Unit Number", ("TENANT_UNIT_FIELD",)),
        "CREATED_AT": FieldDefinition("Created At"),
    },
)

MESSAGES_TABLE = TableDefinition(
    default="Messages",
    env_vars=("MESSAGES_TABLE",),
    fields={
        "TENANT_LINK": FieldDefinition("Tenant", ("MESSAGE_TENANT_LINK_FIELD",)),
        "CONTENT": FieldDefinition("Content"),
        "ORIGINAL_CONTENT": FieldDefinition("Original Content"),
        "CHANNEL": FieldDefinition("Channel", options=_values(Channel)),
        "URGENCY": FieldDefinition("Urgency", options=_values(Urgency)),
        "CATEGORY": FieldDefinition("Category"),
        "SUMMARY": FieldDefinition("AI Summary"),
        "AI_RESPONSE": FieldDefinition("AI Response"),
        "STATUS": FieldDefinition("Status", options=_values(MessageStatus)),
        "RESPONSE_CONTENT": FieldDefinition("Response Content"),
        "RESPONDED_AT": FieldDefinition("Responded At"),
        "ASSIGNED_TO": FieldDefinition("Assigned To"),
        "CREATED_AT": FieldDefinition("Created At"),
        "METADATA": FieldDefinition("Metadata"),
        "CLASSIFICATION_SOURCE": FieldDefinition("Classification Source", options=_values(ResultSource)),
        "RESPONSE_SOURCE": FieldDefinition("Response Source", options=_values(ResultSource)),
        "DELIVERY_ERROR": FieldDefinition("Delivery Error"),
    },
)


def properties_field_map() -> Dict[str, str]:
    return PROPERTIES_TABLE.field_names()


def tenants_field_map() -> Dict[str, str]:
    return TENANTS_TABLE.field_names()


def messages_field_map() -> Dict[str, str]:
    return MESSAGES_TABLE.field_names()
