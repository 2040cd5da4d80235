import pytest
from fastapi.testclient import TestClient

from medreminder.core.config import settings
from medreminder.db.session import get_db
from medreminder.main import build_runtime, create_app
from medreminder.reminders.dispatcher import NotificationDispatcher
from tests.conftest import RecordingChannel


@pytest.fixture
def channels():
    return RecordingChannel("push"), RecordingChannel("email")


@pytest.fixture
def client(session_factory, channels):
    app = create_app()
    push, email = channels
    build_runtime(app, dispatcher=NotificationDispatcher(push=push, email=email), session_factory=session_factory)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c


def _schedule(client, **overrides):
    body = {
        "userId": "user-1",
        "medicationId": "med-1",
        "medicationName": "Metformin",
        "dosage": "500mg",
        "reminderTimes": ["08:00", "20:00"],
    }
    body.update(overrides)
    return client.post("/reminders", json=body)


def test_schedule_reminders(client):
    r = _schedule(client, reminderTimes=["08:00", "25:00", "20:00"])
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["times"] == ["08:00", "20:00"]
    assert data["dropped"] == 1
    assert data["message"] == "Scheduled 2 reminders for Metformin"

    records = client.get("/reminders", params={"medicationId": "med-1"}).json()
    assert [rec["time"] for rec in records] == ["08:00", "20:00"]
    assert records[0]["medicationName"] == "Metformin"
    assert records[0]["totalSent"] == 0


def test_schedule_replaces_existing_records(client):
    _schedule(client)
    _schedule(client, reminderTimes=["09:00"])
    records = client.get("/reminders", params={"userId": "user-1"}).json()
    assert [rec["time"] for rec in records] == ["09:00"]


def test_schedule_rejects_missing_fields(client):
    r = client.post("/reminders", json={"medicationId": "med-1", "reminderTimes": ["08:00"]})
    assert r.status_code == 400
    assert r.json()["detail"] == "Missing required fields"


def test_schedule_rejects_when_no_time_is_valid(client):
    r = _schedule(client, reminderTimes=["24:00", "noon"])
    assert r.status_code == 400
    assert r.json()["detail"] == "No valid reminder times provided"


def test_cancel_reminders_is_idempotent(client):
    _schedule(client)
    first = client.request("DELETE", "/reminders", json={"medicationId": "med-1"})
    second = client.request("DELETE", "/reminders", json={"medicationId": "med-1"})
    assert first.json() == {"success": True, "deleted": 2}
    assert second.status_code == 200
    assert second.json()["deleted"] == 0


def test_push_endpoint(client, channels):
    push, _ = channels
    r = client.post("/notify/push", json={"token": "tok", "title": "Hi", "body": "There"})
    assert r.status_code == 200
    assert r.json() == {"success": True, "response": "push-1", "error": None}
    assert push.sent[0][:3] == ("tok", "Hi", "There")


def test_push_endpoint_validation_and_errors(client, channels):
    push, _ = channels
    assert client.post("/notify/push", json={"title": "Hi", "body": "There"}).status_code == 400
    push.behaviour = "unconfigured"
    assert client.post("/notify/push", json={"token": "t", "title": "Hi", "body": "x"}).status_code == 503
    push.behaviour = "broken"
    assert client.post("/notify/push", json={"token": "t", "title": "Hi", "body": "x"}).status_code == 500


def test_email_endpoint(client, channels):
    _, email = channels
    r = client.post(
        "/notify/email",
        json={"to": "asha@example.com", "subject": "Reminder", "message": "Take it", "medicationName": "Metformin"},
    )
    assert r.status_code == 200
    assert r.json()["recipient"] == "asha@example.com"
    assert email.sent[0][3]["medication_name"] == "Metformin"


@pytest.mark.parametrize("address", ["asha@example", "asha example.com", "@example.com"])
def test_email_endpoint_rejects_bad_addresses(client, address):
    r = client.post("/notify/email", json={"to": address, "subject": "s", "message": "m"})
    assert r.status_code == 400


def test_email_endpoint_unconfigured(client, channels):
    _, email = channels
    email.behaviour = "unconfigured"
    r = client.post("/notify/email", json={"to": "a@example.com", "subject": "s", "message": "m"})
    assert r.status_code == 503


def test_email_health(client):
    data = client.get("/notify/email").json()
    assert data["status"] == "active"
    assert "configured" in data


def test_register_device(client):
    r = client.post("/devices", json={"userId": "user-1", "platform": "ios", "fcmToken": "abc"})
    assert r.status_code == 200
    assert r.json()["fcmToken"] == "abc"
    bad = client.post("/devices", json={"userId": "user-1", "platform": "symbian", "fcmToken": "abc"})
    assert bad.status_code == 422


def test_save_and_delete_medication(client, channels):
    push, email = channels
    client.post("/devices", json={"userId": "user-1", "platform": "android", "fcmToken": "device-tok"})
    body = {
        "medication": {
            "id": "ignored",
            "userId": "user-1",
            "name": "Metformin",
            "dosage": "500mg",
            "reminderTimes": ["08:00", "20:00"],
        },
        "contact": {"email": "asha@example.com", "name": "Asha"},
    }
    r = client.put("/medications/med-9", json=body)
    assert r.status_code == 200
    data = r.json()
    assert data["medicationId"] == "med-9"
    assert data["persisted"] is True
    assert data["activeSlots"] == 2
    assert data["confirmation"]["ok"] is True
    # Confirmation went to the registered device
    assert push.sent[-1][0] == "device-tok"
    assert push.sent[-1][1] == "Medication Saved"

    health = client.get("/health").json()
    assert health["activeSlots"] == 2

    r = client.delete("/medications/med-9")
    assert r.status_code == 200
    data = r.json()
    assert data["timersCancelled"] == 2
    assert data["recordsDeleted"] == 2
    assert client.get("/health").json()["activeSlots"] == 0


def test_save_medication_without_valid_times(client):
    body = {"medication": {"id": "m", "userId": "user-1", "name": "X", "reminderTimes": ["99:99"]}}
    r = client.put("/medications/med-1", json=body)
    assert r.status_code == 400
    assert r.json()["detail"] == "No valid reminder times provided"


def test_lifecycle_events(client):
    assert client.post("/lifecycle", json={"state": "hidden"}).json()["resynchronized"] is False
    assert client.post("/lifecycle", json={"state": "visible"}).json()["resynchronized"] is False
    focus = client.post("/lifecycle", json={"state": "focus"}).json()
    assert focus["scheduled"] is True
    assert client.post("/lifecycle", json={"state": "asleep"}).status_code == 422


def test_api_key_required_when_enabled(client, monkeypatch):
    monkeypatch.setattr(settings, "REQUIRE_API_KEY", True)
    monkeypatch.setattr(settings, "VALID_API_KEYS", ["secret"])
    assert client.get("/reminders").status_code == 401
    assert client.get("/reminders", headers={"X-API-Key": "secret"}).status_code == 200
    assert client.get("/reminders", headers={"Authorization": "Bearer secret"}).status_code == 200
    assert client.get("/health").status_code == 200


def test_medication_actions_succeed_with_push_unconfigured(client, channels):
    push, email = channels
    push.behaviour = "unconfigured"
    body = {
        "medication": {"id": "m", "userId": "user-1", "name": "Metformin", "reminderTimes": ["08:00"]},
        "contact": {"email": "asha@example.com"},
    }
    saved = client.put("/medications/med-3", json=body)
    assert saved.status_code == 200
    confirmation = saved.json()["confirmation"]
    assert confirmation["push"]["status"] == "degraded"
    assert confirmation["email"]["status"] == "sent"
    assert confirmation["ok"] is True

    deleted = client.delete("/medications/med-3")
    assert deleted.status_code == 200
    confirmation = deleted.json()["confirmation"]
    assert confirmation["push"]["status"] == "degraded"
    assert confirmation["email"]["status"] == "sent"
    assert confirmation["ok"] is True
    assert len(email.sent) == 2
