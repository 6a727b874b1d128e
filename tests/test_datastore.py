import threading
from datetime import datetime, timedelta, timezone

import pytest

from propdesk.airtable_schema import MESSAGES_TABLE, Channel, MessageStatus, SortOrder, Urgency
from propdesk.datastore import CONNECTOR, REPOSITORY, InMemoryTable, reset_state
from propdesk.errors import InvalidPayload, NotFoundError
from propdesk.models import MessageFilter, SmsMetadata, metadata_from_dict


def _message(tenant, *, urgency=Urgency.MEDIUM, status=MessageStatus.OPEN, channel=Channel.SMS, category="plumbing", content="Leaky tap"):
    return REPOSITORY.create_message(
        tenant_id=tenant.id,
        content=content,
        original_content=content,
        channel=channel,
        urgency=urgency,
        category=category,
        metadata=metadata_from_dict(channel, {"tenantName": tenant.name}),
        status=status,
    )


def _set_created(message_id, when):
    CONNECTOR.messages().table.update(message_id, {MESSAGES_TABLE.field_name("CREATED_AT"): when.isoformat()})


# ---------------------------------------------------------------------------
# In-memory table
# ---------------------------------------------------------------------------


def test_in_memory_table_formula_and_max_records():
    table = InMemoryTable("Tenants")
    table.create({"Phone": "+14045550100", "Name": "Jane"})
    table.create({"Phone": "+14045550101", "Name": "Sam"})

    assert [r["fields"]["Name"] for r in table.all(formula="{Phone}='+14045550101'")] == ["Sam"]
    assert len(table.all(max_records=1)) == 1
    with pytest.raises(KeyError):
        table.update("rec_missing", {"Name": "x"})


def test_connector_uses_in_memory_tables_without_credentials():
    assert CONNECTOR.messages().in_memory is True


# ---------------------------------------------------------------------------
# Tenants & properties
# ---------------------------------------------------------------------------


def test_find_tenant_by_phone_normalizes_input(jane):
    assert REPOSITORY.find_tenant_by_phone("(404) 555-0100").id == jane.id
    assert REPOSITORY.find_tenant_by_phone("+14045550199") is None


def test_find_tenant_by_email_is_case_insensitive(jane):
    assert REPOSITORY.find_tenant_by_email("  JANE@X.com ").id == jane.id
    assert REPOSITORY.find_tenant_by_email("nobody@x.com") is None


def test_lookup_survives_cache_reset(jane):
    reset_state()
    # Tables are rebuilt empty after a reset; the cached index must not leak stale ids.
    assert REPOSITORY.find_tenant_by_phone("+14045550100") is None


def test_create_tenant_validates_required_fields(maple):
    with pytest.raises(InvalidPayload):
        REPOSITORY.create_tenant("", "4B", property_id=maple.id)
    with pytest.raises(InvalidPayload):
        REPOSITORY.create_tenant("Jane", "  ", property_id=maple.id)


def test_create_tenant_unknown_property():
    with pytest.raises(NotFoundError):
        REPOSITORY.create_tenant("Jane", "4B", property_id="rec_404")


def test_create_property_requires_name_and_address():
    with pytest.raises(InvalidPayload):
        REPOSITORY.create_property("Maple Court", "")


def test_placeholder_tenant_created_once_per_phone():
    first = REPOSITORY.create_placeholder_tenant(phone="404-555-0009")
    second = REPOSITORY.create_placeholder_tenant(phone="+14045550009")

    assert first.id == second.id
    assert first.name == "Unknown Tenant"
    assert first.unit_number.startswith("TEMP-")
    assert first.phone == "+14045550009"
    assert REPOSITORY.get_property(first.property_id).name == "Unassigned Property"


def test_placeholder_creation_is_atomic_under_concurrency():
    results = []
    barrier = threading.Barrier(6)

    def worker():
        barrier.wait()
        results.append(REPOSITORY.create_placeholder_tenant(phone="+14045550077").id)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(set(results)) == 1
    assert len([t for t in REPOSITORY.list_tenants() if t.phone == "+14045550077"]) == 1


def test_placeholders_share_one_default_property():
    a = REPOSITORY.create_placeholder_tenant(phone="+14045550001")
    b = REPOSITORY.create_placeholder_tenant(email="new@x.com")

    assert a.property_id == b.property_id
    assert len(REPOSITORY.list_properties()) == 1


def test_placeholder_requires_contact():
    with pytest.raises(InvalidPayload):
        REPOSITORY.create_placeholder_tenant()


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


def test_message_round_trip(jane):
    created = _message(jane, content="The sink is leaking")
    fetched = REPOSITORY.get_message(created.id)

    assert fetched.content == "The sink is leaking"
    assert fetched.channel == Channel.SMS
    assert fetched.tenant_id == jane.id
    assert isinstance(fetched.metadata, SmsMetadata)
    assert fetched.metadata.tenant_name == "Jane Doe"
    assert REPOSITORY.get_message("rec_404") is None


def test_create_message_rejects_mismatched_metadata(jane):
    with pytest.raises(InvalidPayload):
        REPOSITORY.create_message(
            tenant_id=jane.id,
            content="x",
            original_content="x",
            channel=Channel.EMAIL,
            urgency=Urgency.LOW,
            metadata=SmsMetadata(phone="+14045550100"),
        )


def test_filters_compose_as_intersection(jane):
    _message(jane, urgency=Urgency.EMERGENCY, status=MessageStatus.OPEN)
    _message(jane, urgency=Urgency.EMERGENCY, status=MessageStatus.RESOLVED)
    _message(jane, urgency=Urgency.LOW, status=MessageStatus.OPEN)

    by_urgency = {m.id for m in REPOSITORY.list_messages(MessageFilter(urgency=Urgency.EMERGENCY))}
    by_status = {m.id for m in REPOSITORY.list_messages(MessageFilter(status=MessageStatus.OPEN))}
    combined = {
        m.id
        for m in REPOSITORY.list_messages(MessageFilter(urgency=Urgency.EMERGENCY, status=MessageStatus.OPEN))
    }

    assert combined == by_urgency & by_status
    assert len(combined) == 1


def test_property_filter_follows_tenant_foreign_key(jane, maple):
    other_prop = REPOSITORY.create_property("Oak Plaza", "1 Oak St")
    sam = REPOSITORY.create_tenant("Sam", "1A", phone="+14045550200", property_id=other_prop.id)
    mine = _message(jane)
    _message(sam)

    assert [m.id for m in REPOSITORY.list_messages(MessageFilter(property_id=maple.id))] == [mine.id]


def test_sort_order(jane):
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    ids = []
    for offset in (2, 0, 1):
        msg = _message(jane)
        _set_created(msg.id, base + timedelta(hours=offset))
        ids.append(msg.id)

    newest = REPOSITORY.list_messages(MessageFilter(sort_order=SortOrder.NEWEST))
    oldest = REPOSITORY.list_messages(MessageFilter(sort_order=SortOrder.OLDEST))

    assert [m.id for m in newest] == [ids[0], ids[2], ids[1]]
    assert [m.id for m in oldest] == [ids[1], ids[2], ids[0]]
    stamps = [m.created_at for m in newest]
    assert stamps == sorted(stamps, reverse=True)


def test_update_message_touches_only_named_fields(jane):
    msg = _message(jane, urgency=Urgency.HIGH, category="hvac")
    updated = REPOSITORY.update_message(msg.id, {"status": "escalated_vendor"})

    assert updated.status == MessageStatus.ESCALATED_VENDOR
    assert updated.urgency == Urgency.HIGH
    assert updated.category == "hvac"
    assert updated.content == msg.content
    assert updated.created_at == msg.created_at


def test_update_message_validation(jane):
    msg = _message(jane)
    with pytest.raises(InvalidPayload):
        REPOSITORY.update_message(msg.id, {"status": "closed"})
    with pytest.raises(InvalidPayload):
        REPOSITORY.update_message(msg.id, {"content": "rewritten"})
    with pytest.raises(NotFoundError):
        REPOSITORY.update_message("rec_404", {"status": "resolved"})


def test_message_stats(jane):
    now = datetime(2024, 5, 2, 12, tzinfo=timezone.utc)
    open_emergency = _message(jane, urgency=Urgency.EMERGENCY)
    in_progress = _message(jane, status=MessageStatus.IN_PROGRESS)
    resolved_recent = _message(jane, urgency=Urgency.EMERGENCY, status=MessageStatus.RESOLVED)
    resolved_old = _message(jane, status=MessageStatus.RESOLVED)
    _set_created(open_emergency.id, now - timedelta(hours=1))
    _set_created(in_progress.id, now - timedelta(hours=2))
    _set_created(resolved_recent.id, now - timedelta(hours=3))
    _set_created(resolved_old.id, now - timedelta(days=3))

    stats = REPOSITORY.message_stats(now=now)

    assert stats.active == 2
    assert stats.emergency == 1
    assert stats.pending == 1
    assert stats.resolved == 1
