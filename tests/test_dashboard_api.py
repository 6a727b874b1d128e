import pytest
from fastapi.testclient import TestClient

from propdesk import twilio_sender
from propdesk.airtable_schema import Channel, MessageStatus, Urgency
from propdesk.datastore import REPOSITORY
from propdesk.main import app
from propdesk.models import EmailMetadata, SmsMetadata
from propdesk.twilio_sender import ERROR_HINTS, TwilioError


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def sms_message(jane):
    return REPOSITORY.create_message(
        tenant_id=jane.id,
        content="Heater broken",
        original_content="Heater broken",
        channel=Channel.SMS,
        urgency=Urgency.HIGH,
        category="hvac",
        summary="No heat.",
        ai_response="A technician is scheduled for today.",
        metadata=SmsMetadata(tenant_name=jane.name, phone=jane.phone),
    )


@pytest.fixture
def email_message(jane):
    return REPOSITORY.create_message(
        tenant_id=jane.id,
        content="When?",
        original_content="Subject: Pool hours\n\nWhen?",
        channel=Channel.EMAIL,
        urgency=Urgency.LOW,
        metadata=EmailMetadata(email="jane@x.com", subject="Pool hours"),
    )


def _unverified(*_a, **_k):
    raise TwilioError("Twilio HTTP 400: unverified", status_code=400, code=21608)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


def test_list_messages_with_filters(client, sms_message, email_message, maple):
    r = client.get("/api/messages", params={"channel": "email"})
    assert r.status_code == 200
    assert [m["id"] for m in r.json()] == [email_message.id]

    r = client.get("/api/messages", params={"propertyId": maple.id, "urgency": "high"})
    assert [m["id"] for m in r.json()] == [sms_message.id]
    assert r.json()[0]["metadata"]["channel"] == "sms"


def test_list_messages_rejects_bad_filter(client):
    r = client.get("/api/messages", params={"urgency": "critical"})
    assert r.status_code == 400


def test_message_stats(client, sms_message, email_message):
    r = client.get("/api/messages/stats")
    assert r.json() == {"active": 2, "emergency": 0, "pending": 2, "resolved": 0}


def test_get_message(client, sms_message):
    r = client.get(f"/api/messages/{sms_message.id}")
    assert r.status_code == 200
    assert r.json()["content"] == "Heater broken"
    assert client.get("/api/messages/rec_404").status_code == 404


def test_respond_with_ai_draft_resolves_and_sends(client, outbox, sms_message):
    r = client.post("/api/messages/respond", json={"messageId": sms_message.id, "useAiResponse": True})

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "resolved"
    assert body["responseContent"] == "A technician is scheduled for today."
    assert body["respondedAt"]
    assert outbox["sms"] == [("+14045550100", "A technician is scheduled for today.")]


def test_respond_by_email_uses_reply_subject(client, outbox, email_message):
    r = client.post("/api/messages/respond", json={"messageId": email_message.id, "responseContent": "9am to 5pm."})

    assert r.status_code == 200
    assert outbox["email"] == [("jane@x.com", "RE: Pool hours", "9am to 5pm.")]


@pytest.mark.parametrize(
    "payload",
    [{}, {"messageId": "rec_1"}, {"messageId": "rec_1", "responseContent": "   "}],
)
def test_respond_requires_id_and_text(client, sms_message, payload):
    assert client.post("/api/messages/respond", json=payload).status_code == 400


def test_respond_unknown_message_is_404(client):
    r = client.post("/api/messages/respond", json={"messageId": "rec_404", "responseContent": "Hi"})
    assert r.status_code == 404


def test_respond_delivery_failure_is_502(client, monkeypatch, sms_message):
    monkeypatch.setattr(twilio_sender, "send_sms", _unverified)

    r = client.post("/api/messages/respond", json={"messageId": sms_message.id, "responseContent": "On it"})

    assert r.status_code == 502
    body = r.json()
    assert body["success"] is False
    assert body["code"] == 21608
    assert body["hint"] == ERROR_HINTS[21608]
    assert body["messageId"] == sms_message.id
    stored = REPOSITORY.get_message(sms_message.id)
    assert stored.response_content == "On it"
    assert "21608" in stored.delivery_error


def test_assign_sets_owner_and_in_progress(client, sms_message):
    r = client.post("/api/messages/assign", json={"messageId": sms_message.id, "userId": "user_7"})

    assert r.status_code == 200
    assert r.json()["assignedTo"] == "user_7"
    assert r.json()["status"] == "in_progress"
    assert client.post("/api/messages/assign", json={"messageId": sms_message.id}).status_code == 400
    assert client.post("/api/messages/assign", json={"messageId": "rec_404", "userId": "u"}).status_code == 404


def test_resolve(client, sms_message):
    r = client.post(f"/api/messages/{sms_message.id}/resolve")
    assert r.json()["status"] == "resolved"
    assert client.post("/api/messages/rec_404/resolve").status_code == 404


def test_status_update_leaves_other_fields(client, sms_message):
    r = client.post(f"/api/messages/{sms_message.id}/status", json={"status": "escalated_vendor"})

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == MessageStatus.ESCALATED_VENDOR.value
    assert body["urgency"] == "high"
    assert body["category"] == "hvac"
    assert body["aiResponse"] == sms_message.ai_response
    assert body["responseContent"] is None


def test_status_update_validation(client, sms_message):
    assert client.post(f"/api/messages/{sms_message.id}/status", json={"status": "closed"}).status_code == 400
    assert client.post(f"/api/messages/{sms_message.id}/status", json={}).status_code == 400
    assert client.post("/api/messages/rec_404/status", json={"status": "open"}).status_code == 404


# ---------------------------------------------------------------------------
# Properties & tenants
# ---------------------------------------------------------------------------


def test_properties(client):
    r = client.post("/api/properties", json={"name": "Oak Plaza", "address": "1 Oak St"})
    assert r.status_code == 201
    assert r.json()["name"] == "Oak Plaza"
    assert [p["name"] for p in client.get("/api/properties").json()] == ["Oak Plaza"]
    assert client.post("/api/properties", json={"name": "No address"}).status_code == 400


def test_create_tenant(client, maple):
    r = client.post(
        "/api/tenants",
        json={"name": "Sam Lee", "unitNumber": "2C", "phone": "404 555 0123", "propertyId": maple.id},
    )

    assert r.status_code == 201
    body = r.json()
    assert body["phone"] == "+14045550123"
    assert body["propertyId"] == maple.id
    assert body["placeholder"] is False


def test_create_tenant_errors(client, maple):
    assert client.post("/api/tenants", json={"name": "Sam"}).status_code == 400
    r = client.post("/api/tenants", json={"name": "Sam", "unitNumber": "2C", "propertyId": "rec_404"})
    assert r.status_code == 404


def test_tenant_detail_includes_messages(client, jane, sms_message):
    r = client.get(f"/api/tenants/{jane.id}")

    assert r.status_code == 200
    assert r.json()["name"] == "Jane Doe"
    assert [m["id"] for m in r.json()["messages"]] == [sms_message.id]
    assert client.get("/api/tenants/rec_404").status_code == 404
    assert [t["id"] for t in client.get("/api/tenants").json()] == [jane.id]


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


def test_test_sms_success(client, outbox):
    r = client.post("/api/test-sms", json={"phoneNumber": "+14045550100", "message": "ping"})

    assert r.status_code == 200
    assert r.json()["success"] is True
    assert r.json()["sid"] == "SM_test_1"


def test_test_sms_failure_returns_vendor_payload(client, monkeypatch):
    monkeypatch.setattr(twilio_sender, "send_sms", _unverified)

    r = client.post("/api/test-sms", json={"phoneNumber": "+14045550100", "message": "ping"})

    assert r.status_code == 502
    assert r.json() == {
        "success": False,
        "message": "Twilio HTTP 400: unverified",
        "code": 21608,
        "status": 400,
        "hint": ERROR_HINTS[21608],
    }


def test_test_sms_requires_fields(client):
    assert client.post("/api/test-sms", json={"phoneNumber": "+14045550100"}).status_code == 400
