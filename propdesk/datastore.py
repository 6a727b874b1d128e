"""Schema-aware Airtable datastore with an in-memory fallback for local runs and tests."""

from __future__ import annotations

import itertools
import json
import os
import re
import threading
import time
import traceback
from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

import requests
from pyairtable import Api

from propdesk.airtable_schema import (
    MESSAGES_TABLE,
    PROPERTIES_TABLE,
    TENANTS_TABLE,
    Channel,
    MessageStatus,
    ResultSource,
    SortOrder,
    Urgency,
    messages_field_map,
    properties_field_map,
    tenants_field_map,
)
from propdesk.config import settings
from propdesk.errors import InvalidPayload, NotFoundError, StoreError
from propdesk.models import (
    PLACEHOLDER_UNIT_PREFIX,
    DisplayContext,
    Message,
    MessageFilter,
    MessageMetadata,
    MessageStats,
    Property,
    Tenant,
    coerce_enum,
    metadata_from_dict,
)
from propdesk.runtime import get_logger, iso_now, normalize_phone, parse_iso, retry, utc_now

logger = get_logger(__name__)
DEBUG = os.getenv("DEBUG", "").lower() in {"1", "true", "yes"}

PLACEHOLDER_TENANT_NAME = "Unknown Tenant"


class InMemoryTable:
    """Minimal Airtable drop-in replacement used for local runs and tests."""

    def __init__(self, name: str):
        self.name = name
        self._records: Dict[str, Dict[str, Any]] = {}
        self._sequence = itertools.count(1)

    def create(self, fields: Dict[str, Any]):
        record_id = f"rec_{next(self._sequence)}"
        record = {"id": record_id, "createdTime": iso_now(), "fields": dict(fields)}
        self._records[record_id] = record
        return record

    def update(self, record_id: str, fields: Dict[str, Any]):
        if record_id not in self._records:
            raise KeyError(f"Unknown record id {record_id} in {self.name}")
        self._records[record_id]["fields"].update(fields)
        return self._records[record_id]

    def get(self, record_id: str):
        return self._records.get(record_id)

    def all(self, **kwargs):
        records = list(self._records.values())
        formula = kwargs.get("formula")
        max_records = kwargs.get("max_records")
        if formula:
            records = [rec for rec in records if _formula_match(rec, formula)]
        if max_records is not None:
            records = records[: int(max_records)]
        return records


_FORMULA_PATTERN = re.compile(r"\{([^}]+)\}\s*=\s*'([^']*)'")


def _formula_match(record: Dict[str, Any], formula: str) -> bool:
    matches = _FORMULA_PATTERN.findall(formula)
    if not matches:
        return False
    fields = record.get("fields", {})
    for field_name, expected in matches:
        if str(fields.get(field_name)) != expected:
            return False
    return True


def _equals_formula(field_name: str, value: str) -> str:
    escaped = str(value).replace("'", "\\'")
    return f"{{{field_name}}}='{escaped}'"


@dataclass
class TableHandle:
    table: Any
    in_memory: bool
    base_id: Optional[str]
    table_name: str
    last_error: Optional[Dict[str, Any]] = dataclass_field(default=None)


# ============================================================
# CONNECTOR
# ============================================================


class DataConnector:
    """Lazy pyairtable connector with in-memory fallback."""

    def __init__(self) -> None:
        self._tables: Dict[Tuple[str, str], TableHandle] = {}
        self._lock = threading.Lock()

    def _table(self, table_name: str) -> TableHandle:
        cfg = settings()
        base = cfg.AIRTABLE_BASE_ID if cfg.airtable_enabled else None
        key = (base or "memory", table_name)
        with self._lock:
            if key in self._tables:
                return self._tables[key]

            if base:
                try:
                    table = Api(cfg.AIRTABLE_API_KEY).table(base, table_name)
                    handle = TableHandle(table, False, base, table_name)
                    self._tables[key] = handle
                    return handle
                except Exception:
                    logger.warning("Falling back to in-memory table for %s", table_name, exc_info=True)

            handle = TableHandle(InMemoryTable(table_name), True, base, table_name)
            self._tables[key] = handle
            return handle

    def properties(self) -> TableHandle:
        return self._table(PROPERTIES_TABLE.name())

    def tenants(self) -> TableHandle:
        return self._table(TENANTS_TABLE.name())

    def messages(self) -> TableHandle:
        return self._table(MESSAGES_TABLE.name())


CONNECTOR = DataConnector()


# ============================================================
# LOW LEVEL HELPERS
# ============================================================


def _compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in (payload or {}).items() if v not in (None, "", [], {}, ())}


def _ensure_record_list(value: Any) -> List[str]:
    if value in (None, "", [], (), {}):
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict):
        record_id = value.get("id")
        return [record_id] if record_id else []
    if isinstance(value, (list, tuple, set)):
        result: List[str] = []
        for item in value:
            if isinstance(item, str):
                result.append(item)
            elif isinstance(item, dict) and item.get("id"):
                result.append(item["id"])
        return result
    return [str(value)]


def _first_link(value: Any) -> Optional[str]:
    links = _ensure_record_list(value)
    return links[0] if links else None


def _log_airtable_exception(handle: TableHandle, exc: Exception, action: str) -> None:
    payload: Dict[str, Any] = {"action": action, "error": str(exc), "timestamp": iso_now()}
    response = getattr(exc, "response", None)
    if response is not None:
        status = getattr(response, "status_code", "unknown")
        body = getattr(response, "text", repr(response))
        payload.update({"status": status, "body": body})
        logger.error("Airtable %s failed [%s] status=%s body=%s", action, handle.table_name, status, body)
    else:
        logger.error("Airtable %s failed [%s]: %s", action, handle.table_name, exc)
    handle.last_error = payload
    if DEBUG:
        traceback.print_exc()


# ============================================================
# SAFE WRAPPERS
# ============================================================

_TRANSIENT = (requests.exceptions.ConnectionError, ConnectionResetError)


def _safe_all(handle: TableHandle, **kwargs) -> List[Dict[str, Any]]:
    try:
        return list(retry(lambda: handle.table.all(**kwargs), retries=2, base_delay=0.5, exceptions=_TRANSIENT, logger=logger))
    except Exception as exc:
        _log_airtable_exception(handle, exc, "all")
        raise StoreError(f"Could not read {handle.table_name}: {exc}") from exc


def _safe_get(handle: TableHandle, record_id: str) -> Optional[Dict[str, Any]]:
    if not record_id:
        return None
    try:
        return handle.table.get(record_id)
    except requests.exceptions.HTTPError as exc:
        if getattr(exc.response, "status_code", None) == 404:
            return None
        _log_airtable_exception(handle, exc, "get")
        raise StoreError(f"Could not read {handle.table_name}/{record_id}: {exc}") from exc
    except Exception as exc:
        _log_airtable_exception(handle, exc, "get")
        raise StoreError(f"Could not read {handle.table_name}/{record_id}: {exc}") from exc


def _safe_create(handle: TableHandle, fields: Dict[str, Any]) -> Dict[str, Any]:
    body = _compact(fields)
    try:
        return retry(lambda: handle.table.create(body), retries=2, base_delay=0.6, exceptions=_TRANSIENT, logger=logger)
    except Exception as exc:
        _log_airtable_exception(handle, exc, "create")
        raise StoreError(f"Could not write to {handle.table_name}: {exc}") from exc


def _safe_update(handle: TableHandle, record_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return retry(
            lambda: handle.table.update(record_id, fields),
            retries=2,
            base_delay=0.6,
            exceptions=_TRANSIENT,
            logger=logger,
        )
    except Exception as exc:
        _log_airtable_exception(handle, exc, "update")
        raise StoreError(f"Could not update {handle.table_name}/{record_id}: {exc}") from exc


# ============================================================
# RECORD <-> MODEL
# ============================================================


def _enum_or(enum_cls, value: Any, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _property_from_record(record: Dict[str, Any]) -> Property:
    f = record.get("fields", {}) or {}
    pf = properties_field_map()
    return Property(
        id=record["id"],
        name=f.get(pf["NAME"], ""),
        address=f.get(pf["ADDRESS"], ""),
        owner_user_id=f.get(pf["OWNER_USER_ID"]),
        created_at=f.get(pf["CREATED_AT"]) or record.get("createdTime"),
    )


def _tenant_from_record(record: Dict[str, Any]) -> Tenant:
    f = record.get("fields", {}) or {}
    tf = tenants_field_map()
    return Tenant(
        id=record["id"],
        name=f.get(tf["NAME"], ""),
        unit_number=f.get(tf["UNIT_NUMBER"], ""),
        email=f.get(tf["EMAIL"]),
        phone=f.get(tf["PHONE"]),
        property_id=_first_link(f.get(tf["PROPERTY_LINK"])),
        created_at=f.get(tf["CREATED_AT"]) or record.get("createdTime"),
    )


def _load_metadata(channel: Channel, raw: Any) -> MessageMetadata:
    if isinstance(raw, str) and raw.strip():
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Unreadable message metadata; using an empty %s variant", channel.value)
            raw = {}
    return metadata_from_dict(channel, raw if isinstance(raw, dict) else {})


def _message_from_record(record: Dict[str, Any]) -> Message:
    f = record.get("fields", {}) or {}
    mf = messages_field_map()
    channel = _enum_or(Channel, f.get(mf["CHANNEL"]), Channel.SMS)
    return Message(
        id=record["id"],
        tenant_id=_first_link(f.get(mf["TENANT_LINK"])) or "",
        content=f.get(mf["CONTENT"], ""),
        original_content=f.get(mf["ORIGINAL_CONTENT"]) or f.get(mf["CONTENT"], ""),
        channel=channel,
        urgency=_enum_or(Urgency, f.get(mf["URGENCY"]), Urgency.MEDIUM),
        metadata=_load_metadata(channel, f.get(mf["METADATA"])),
        status=_enum_or(MessageStatus, f.get(mf["STATUS"]), MessageStatus.OPEN),
        category=f.get(mf["CATEGORY"]),
        summary=f.get(mf["SUMMARY"]),
        ai_response=f.get(mf["AI_RESPONSE"]),
        response_content=f.get(mf["RESPONSE_CONTENT"]),
        responded_at=f.get(mf["RESPONDED_AT"]),
        assigned_to=f.get(mf["ASSIGNED_TO"]),
        created_at=f.get(mf["CREATED_AT"]) or record.get("createdTime"),
        classification_source=_enum_or(ResultSource, f.get(mf["CLASSIFICATION_SOURCE"]), ResultSource.AI),
        response_source=_enum_or(ResultSource, f.get(mf["RESPONSE_SOURCE"]), ResultSource.AI),
        delivery_error=f.get(mf["DELIVERY_ERROR"]),
    )


# Message attribute → MESSAGES_TABLE field key
_MESSAGE_COLUMNS = {
    "status": "STATUS",
    "urgency": "URGENCY",
    "category": "CATEGORY",
    "summary": "SUMMARY",
    "ai_response": "AI_RESPONSE",
    "response_content": "RESPONSE_CONTENT",
    "responded_at": "RESPONDED_AT",
    "assigned_to": "ASSIGNED_TO",
    "delivery_error": "DELIVERY_ERROR",
    "metadata": "METADATA",
}


def _column_value(attr: str, value: Any, channel: Channel) -> Any:
    if value is None:
        return None
    if attr == "status":
        return coerce_enum(MessageStatus, value, "status").value
    if attr == "urgency":
        return coerce_enum(Urgency, value, "urgency").value
    if attr == "metadata":
        if isinstance(value, DisplayContext):
            if value.channel != channel:
                raise InvalidPayload(f"Metadata for {value.channel.value} cannot be stored on a {channel.value} message")
            return json.dumps(value.to_dict())
        if isinstance(value, Mapping):
            return json.dumps(metadata_from_dict(channel, value).to_dict())
        raise InvalidPayload("metadata must be an object")
    return str(value)


def _sort_key(created_at: Optional[str]) -> datetime:
    return parse_iso(created_at) or datetime.min.replace(tzinfo=timezone.utc)


# ============================================================
# REPOSITORY
# ============================================================


class IntakeRepository:
    """Reads and writes properties, tenants and messages; ids are minted by the backend."""

    def __init__(self, connector: Optional[DataConnector] = None) -> None:
        self.connector = connector or CONNECTOR
        self._phone_index: Dict[str, str] = {}
        self._email_index: Dict[str, str] = {}
        self._default_property_id: Optional[str] = None
        self._placeholder_lock = threading.Lock()

    # Properties
    def get_property(self, property_id: str) -> Optional[Property]:
        record = _safe_get(self.connector.properties(), property_id)
        return _property_from_record(record) if record else None

    def list_properties(self) -> List[Property]:
        props = [_property_from_record(r) for r in _safe_all(self.connector.properties())]
        return sorted(props, key=lambda p: _sort_key(p.created_at))

    def create_property(self, name: str, address: str, owner_user_id: Optional[str] = None) -> Property:
        name = (name or "").strip()
        address = (address or "").strip()
        if not name or not address:
            raise InvalidPayload("Property name and address are required")
        pf = properties_field_map()
        record = _safe_create(
            self.connector.properties(),
            {
                pf["NAME"]: name,
                pf["ADDRESS"]: address,
                pf["OWNER_USER_ID"]: owner_user_id,
                pf["CREATED_AT"]: iso_now(),
            },
        )
        logger.info("🏠 Created property %s (%s)", record["id"], name)
        return _property_from_record(record)

    def ensure_default_property(self) -> Property:
        """Return the property placeholder tenants are attached to, creating it on first use."""
        if self._default_property_id:
            existing = self.get_property(self._default_property_id)
            if existing:
                return existing
        cfg = settings()
        handle = self.connector.properties()
        matches = _safe_all(handle, formula=_equals_formula(PROPERTIES_TABLE.field_name("NAME"), cfg.DEFAULT_PROPERTY_NAME), max_records=1)
        prop = _property_from_record(matches[0]) if matches else self.create_property(cfg.DEFAULT_PROPERTY_NAME, cfg.DEFAULT_PROPERTY_ADDRESS)
        self._default_property_id = prop.id
        return prop

    # Tenants
    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        record = _safe_get(self.connector.tenants(), tenant_id)
        return _tenant_from_record(record) if record else None

    def list_tenants(self) -> List[Tenant]:
        tenants = [_tenant_from_record(r) for r in _safe_all(self.connector.tenants())]
        return sorted(tenants, key=lambda t: _sort_key(t.created_at))

    def _refresh_contact_index(self) -> None:
        for tenant in (_tenant_from_record(r) for r in _safe_all(self.connector.tenants())):
            phone = normalize_phone(tenant.phone, settings().DEFAULT_COUNTRY_CODE)
            if phone:
                self._phone_index.setdefault(phone, tenant.id)
            email = _fold_email(tenant.email)
            if email:
                self._email_index.setdefault(email, tenant.id)

    def find_tenant_by_phone(self, phone: str) -> Optional[Tenant]:
        normalized = normalize_phone(phone, settings().DEFAULT_COUNTRY_CODE)
        if not normalized:
            return None
        tenant = self._indexed(self._phone_index, normalized)
        if tenant:
            return tenant
        matches = _safe_all(self.connector.tenants(), formula=_equals_formula(TENANTS_TABLE.field_name("PHONE"), normalized), max_records=1)
        if matches:
            self._phone_index[normalized] = matches[0]["id"]
            return _tenant_from_record(matches[0])
        # Legacy rows may hold unnormalized numbers.
        self._refresh_contact_index()
        return self._indexed(self._phone_index, normalized)

    def find_tenant_by_email(self, email: str) -> Optional[Tenant]:
        folded = _fold_email(email)
        if not folded:
            return None
        tenant = self._indexed(self._email_index, folded)
        if tenant:
            return tenant
        self._refresh_contact_index()
        return self._indexed(self._email_index, folded)

    def _indexed(self, index: Dict[str, str], key: str) -> Optional[Tenant]:
        tenant_id = index.get(key)
        if not tenant_id:
            return None
        tenant = self.get_tenant(tenant_id)
        if tenant is None:
            index.pop(key, None)
        return tenant

    def create_tenant(
        self,
        name: str,
        unit_number: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        property_id: Optional[str] = None,
    ) -> Tenant:
        name = (name or "").strip()
        unit_number = (unit_number or "").strip()
        if not name or not unit_number:
            raise InvalidPayload("Tenant name and unit number are required")
        if property_id and self.get_property(property_id) is None:
            raise NotFoundError(f"Property {property_id} not found")
        return self._insert_tenant(name, unit_number, email=email, phone=phone, property_id=property_id)

    def create_placeholder_tenant(self, phone: Optional[str] = None, email: Optional[str] = None) -> Tenant:
        """
        Create (or return) the stand-in tenant for an unrecognized contact.

        The lookup is repeated under the lock so concurrent messages from the
        same unseen contact resolve to one placeholder.
        """
        if not phone and not email:
            raise InvalidPayload("A phone number or email address is required for a placeholder tenant")
        with self._placeholder_lock:
            existing = (self.find_tenant_by_phone(phone) if phone else None) or (
                self.find_tenant_by_email(email) if email else None
            )
            if existing:
                return existing
            prop = self.ensure_default_property()
            tenant = self._insert_tenant(
                PLACEHOLDER_TENANT_NAME,
                f"{PLACEHOLDER_UNIT_PREFIX}{int(time.time())}",
                email=email,
                phone=phone,
                property_id=prop.id,
            )
        logger.info("👤 Placeholder tenant %s created for %s", tenant.id, phone or email)
        return tenant

    def _insert_tenant(
        self,
        name: str,
        unit_number: str,
        *,
        email: Optional[str],
        phone: Optional[str],
        property_id: Optional[str],
    ) -> Tenant:
        tf = tenants_field_map()
        normalized_phone = normalize_phone(phone, settings().DEFAULT_COUNTRY_CODE) if phone else None
        clean_email = (email or "").strip() or None
        record = _safe_create(
            self.connector.tenants(),
            {
                tf["NAME"]: name,
                tf["UNIT_NUMBER"]: unit_number,
                tf["EMAIL"]: clean_email,
                tf["PHONE"]: normalized_phone,
                tf["PROPERTY_LINK"]: _ensure_record_list(property_id),
                tf["CREATED_AT"]: iso_now(),
            },
        )
        if normalized_phone:
            self._phone_index[normalized_phone] = record["id"]
        if clean_email:
            self._email_index[_fold_email(clean_email)] = record["id"]
        return _tenant_from_record(record)

    def tenant_ids_for_property(self, property_id: str) -> Set[str]:
        return {t.id for t in self.list_tenants() if t.property_id == property_id}

    # Messages
    def create_message(
        self,
        *,
        tenant_id: str,
        content: str,
        original_content: str,
        channel: Channel,
        urgency: Urgency,
        metadata: MessageMetadata,
        category: Optional[str] = None,
        summary: Optional[str] = None,
        ai_response: Optional[str] = None,
        status: MessageStatus = MessageStatus.OPEN,
        classification_source: ResultSource = ResultSource.AI,
        response_source: ResultSource = ResultSource.AI,
    ) -> Message:
        if metadata.channel != channel:
            raise InvalidPayload(f"Metadata for {metadata.channel.value} cannot be stored on a {channel.value} message")
        mf = messages_field_map()
        record = _safe_create(
            self.connector.messages(),
            {
                mf["TENANT_LINK"]: _ensure_record_list(tenant_id),
                mf["CONTENT"]: content,
                mf["ORIGINAL_CONTENT"]: original_content,
                mf["CHANNEL"]: channel.value,
                mf["URGENCY"]: urgency.value,
                mf["CATEGORY"]: category,
                mf["SUMMARY"]: summary,
                mf["AI_RESPONSE"]: ai_response,
                mf["STATUS"]: status.value,
                mf["METADATA"]: json.dumps(metadata.to_dict()),
                mf["CLASSIFICATION_SOURCE"]: classification_source.value,
                mf["RESPONSE_SOURCE"]: response_source.value,
                mf["CREATED_AT"]: iso_now(),
            },
        )
        return _message_from_record(record)

    def get_message(self, message_id: str) -> Optional[Message]:
        record = _safe_get(self.connector.messages(), message_id)
        return _message_from_record(record) if record else None

    def list_messages(self, message_filter: Optional[MessageFilter] = None) -> List[Message]:
        message_filter = message_filter or MessageFilter()
        property_tenants = (
            self.tenant_ids_for_property(message_filter.property_id) if message_filter.property_id else None
        )
        messages = [
            m
            for m in (_message_from_record(r) for r in _safe_all(self.connector.messages()))
            if message_filter.matches(m, property_tenants)
        ]
        newest_first = message_filter.sort_order == SortOrder.NEWEST
        return sorted(messages, key=lambda m: _sort_key(m.created_at), reverse=newest_first)

    def update_message(self, message_id: str, changes: Mapping[str, Any]) -> Message:
        """Apply a partial update; unknown attributes and bad enum values raise InvalidPayload."""
        unknown = sorted(set(changes) - Message.UPDATABLE)
        if unknown:
            raise InvalidPayload(f"Cannot update message attribute(s): {', '.join(unknown)}")
        current = self.get_message(message_id)
        if current is None:
            raise NotFoundError(f"Message {message_id} not found")
        if not changes:
            return current
        mf = messages_field_map()
        fields = {
            mf[_MESSAGE_COLUMNS[attr]]: _column_value(attr, value, current.channel)
            for attr, value in changes.items()
        }
        record = _safe_update(self.connector.messages(), message_id, fields)
        return _message_from_record(record)

    def message_stats(self, now: Optional[datetime] = None) -> MessageStats:
        now = now or utc_now()
        since = now - timedelta(hours=24)
        messages = self.list_messages()
        active = [m for m in messages if m.status != MessageStatus.RESOLVED]
        resolved_recent = [
            m
            for m in messages
            if m.status == MessageStatus.RESOLVED and (parse_iso(m.created_at) or since) > since
        ]
        return MessageStats(
            active=len(active),
            emergency=sum(1 for m in active if m.urgency == Urgency.EMERGENCY),
            pending=sum(1 for m in messages if m.status == MessageStatus.OPEN),
            resolved=len(resolved_recent),
        )

    def clear_caches(self) -> None:
        self._phone_index.clear()
        self._email_index.clear()
        self._default_property_id = None


def _fold_email(email: Optional[str]) -> Optional[str]:
    folded = (email or "").strip().casefold()
    return folded or None


REPOSITORY = IntakeRepository()


# ============================================================
# PUBLIC HELPERS
# ============================================================


def reset_state():
    with CONNECTOR._lock:
        CONNECTOR._tables.clear()
    REPOSITORY.clear_caches()
    logger.info("🧹 Datastore state and caches cleared.")
