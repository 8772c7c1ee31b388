import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from admin.app import create_app
from admin.http_server import serve
from admin.schemas import RuntimeControl
from world.habits import HabitReminderSync
from world.offset_watcher import OffsetWatcher
from world.reminder import ReminderRegistry

TOKEN = "secret"
HEADERS = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def control(dispatcher):
    registry = ReminderRegistry(dispatcher)
    sync = HabitReminderSync(registry, device_zone_provider=lambda: "UTC")
    watcher = OffsetWatcher(sync.current_zone, sync.reschedule_all)
    return RuntimeControl(
        shutdown_event=asyncio.Event(),
        restart_event=asyncio.Event(),
        started_at=time.time(),
        sync=sync,
        watcher=watcher,
        auth_token=TOKEN,
    )


@pytest.fixture
def client(control):
    with TestClient(create_app(control)) as c:
        yield c


def test_health_needs_no_auth(client):
    assert client.get("/healthz").text == "ok"
    body = client.get("/api/v1/health").json()
    assert body["status"] == "ok"
    assert body["pending_reminders"] == 0
    assert body["admin_auth_enabled"] is True


def test_auth_is_required(client):
    assert client.get("/api/v1/reminders").status_code == 401
    assert client.get("/api/v1/reminders", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.get("/api/v1/reminders", headers={"X-Habitbell-Token": TOKEN}).status_code == 200
    assert client.get("/api/v1/reminders", headers={"Authorization": f"bearer {TOKEN}"}).status_code == 200
    assert client.get("/api/v1/reminders", headers={"Authorization": TOKEN}).status_code == 401


def test_unconfigured_token_disables_api(control):
    control.auth_token = ""
    with TestClient(create_app(control)) as c:
        assert c.get("/api/v1/reminders", headers=HEADERS).status_code == 503


def test_replace_habits_schedules_and_lists(client):
    resp = client.put("/api/v1/habits", headers=HEADERS, json=[
        {"id": "a", "name": "Read", "reminder_enabled": True, "reminder_time": "07:30", "timezone": "Asia/Tokyo"},
        {"id": "b", "name": "Walk", "reminder_enabled": False},
    ])
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "scheduled": ["a"], "skipped": ["b"]}

    reminders = client.get("/api/v1/reminders", headers=HEADERS).json()
    assert reminders["total"] == 1
    assert reminders["items"][0]["habit_id"] == "a"
    assert reminders["items"][0]["local_time"] == "07:30"
    assert reminders["items"][0]["fire_at_local"].endswith("07:30")

    habits = client.get("/api/v1/habits", headers=HEADERS).json()
    assert [h["id"] for h in habits["items"]] == ["a", "b"]


def test_invalid_payload_is_rejected(client):
    resp = client.put("/api/v1/habits/a", headers=HEADERS, json={"id": "a", "name": "Read", "reminder_time": "7:30pm"})
    assert resp.status_code == 422
    resp = client.put("/api/v1/habits/a", headers=HEADERS, json={"id": "a", "name": "Read", "timezone": "Mars/Base"})
    assert resp.status_code == 422
    resp = client.put("/api/v1/habits/a", headers=HEADERS, json={"id": "b", "name": "Read"})
    assert resp.status_code == 400


def test_upsert_delete_and_snooze(client, control):
    habit = {"id": "a", "name": "Read", "reminder_enabled": True, "reminder_time": "21:00"}
    assert client.put("/api/v1/habits/a", headers=HEADERS, json=habit).json()["scheduled"] is True
    assert control.sync.registry.pending("a") is not None

    resp = client.post("/api/v1/habits/a/snooze", headers=HEADERS, json={"minutes": 30})
    assert resp.status_code == 200
    assert control.sync.registry.pending("a") is None
    assert client.get("/api/v1/habits", headers=HEADERS).json()["items"][0]["snoozed"] is True

    assert client.post("/api/v1/habits/a/snooze", headers=HEADERS, json={"minutes": 0}).status_code == 422
    assert client.post("/api/v1/habits/zzz/snooze", headers=HEADERS, json={"minutes": 5}).status_code == 404

    resp = client.delete("/api/v1/habits/a/snooze", headers=HEADERS)
    assert resp.json()["scheduled"] is True
    assert control.sync.registry.pending("a") is not None

    assert client.delete("/api/v1/habits/a", headers=HEADERS).status_code == 200
    assert client.delete("/api/v1/habits/a", headers=HEADERS).status_code == 404
    assert control.sync.registry.pending_count() == 0


def test_profile_update_moves_reminders(client, control):
    client.put("/api/v1/habits/a", headers=HEADERS, json={"id": "a", "name": "Read", "reminder_enabled": True, "reminder_time": "08:00"})

    resp = client.put("/api/v1/profile", headers=HEADERS, json={"timezone": "America/Chicago", "timezone_manual": True})
    assert resp.status_code == 200
    assert resp.json()["effective_timezone"] == "America/Chicago"
    assert control.sync.registry.pending("a").spec.timezone == "America/Chicago"

    profile = client.get("/api/v1/profile", headers=HEADERS).json()
    assert profile["timezone"] == "America/Chicago"
    assert profile["timezone_manual"] is True

    assert client.put("/api/v1/profile", headers=HEADERS, json={"timezone": "Nowhere"}).status_code == 422


def test_timezones_and_visibility(client):
    body = client.get("/api/v1/timezones", headers=HEADERS).json()
    assert body["device"] == "UTC"
    assert body["effective"] == "UTC"
    assert "Europe/London" in body["zones"]

    first = client.post("/api/v1/visibility", headers=HEADERS).json()
    assert first["offset_changed"] is False
    assert first["armed"] is True
    assert first["zone"] == "UTC"


def test_metrics(client):
    body = client.get("/api/v1/metrics", headers=HEADERS).json()
    assert "reminder_scheduled_count" in body["runtime"]
    assert body["components"]["offset_watcher"]["armed"] is False


def test_sign_out_clears_reminders(client, control):
    client.put("/api/v1/habits/a", headers=HEADERS, json={"id": "a", "name": "Read", "reminder_enabled": True, "reminder_time": "08:00"})
    assert client.post("/api/v1/session/sign-out", headers=HEADERS).json() == {"ok": True}
    assert control.sync.registry.pending_count() == 0
    assert control.sync.habits == {}


def test_shutdown_and_restart(client, control):
    resp = client.post("/api/v1/admin/shutdown", headers=HEADERS, json={"reason": "maintenance"})
    assert resp.json()["action"] == "shutdown"
    assert control.shutdown_event.is_set()
    assert not control.restart_event.is_set()

    client.post("/api/v1/admin/restart", headers=HEADERS, json={})
    assert control.restart_event.is_set()


@pytest.mark.asyncio
async def test_disabled_http_server_waits_for_shutdown(control):
    task = asyncio.create_task(serve(control, port=0))
    await asyncio.sleep(0.01)
    assert not task.done()

    control.shutdown_event.set()
    await asyncio.wait_for(task, timeout=1)
