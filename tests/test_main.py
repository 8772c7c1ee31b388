import json

import pytest

import main
from config import settings
from world.habits import HabitReminderSync
from world.reminder import ReminderRegistry


@pytest.fixture
def sync(clock, dispatcher):
    registry = ReminderRegistry(dispatcher, clock=clock)
    yield HabitReminderSync(registry, device_zone_provider=lambda: "UTC", clock=clock)
    registry.cancel_all()


@pytest.mark.asyncio
async def test_load_seed_file(tmp_path, sync):
    seed = tmp_path / "habits.json"
    seed.write_text(json.dumps({
        "profile": {"timezone": "Europe/Rome", "timezone_manual": True, "email": "me@example.com"},
        "habits": [
            {"id": "a", "name": "Journal", "reminder_enabled": True, "reminder_time": "22:00"},
            {"id": "b", "name": "Floss", "reminder_enabled": False},
        ],
    }), encoding="utf-8")

    main._load_seed(sync, seed)

    assert sync.current_zone() == "Europe/Rome"
    assert set(sync.habits) == {"a", "b"}
    timer = sync.registry.pending("a")
    assert timer.spec.timezone == "Europe/Rome"
    assert timer.spec.channels.email_address == "me@example.com"


@pytest.mark.asyncio
async def test_missing_or_broken_seed_is_ignored(tmp_path, sync):
    main._load_seed(sync, tmp_path / "missing.json")
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    main._load_seed(sync, broken)

    assert sync.habits == {}
    assert sync.registry.pending_count() == 0


def test_parse_int_falls_back_on_bad_values(monkeypatch):
    monkeypatch.setenv("HABITBELL_TEST_INT", "abc")
    assert settings._parse_int("HABITBELL_TEST_INT", 7) == 7
    monkeypatch.setenv("HABITBELL_TEST_INT", "0")
    assert settings._parse_int("HABITBELL_TEST_INT", 7, minimum=1) == 7
    monkeypatch.setenv("HABITBELL_TEST_INT", "42")
    assert settings._parse_int("HABITBELL_TEST_INT", 7, minimum=1) == 42
    monkeypatch.delenv("HABITBELL_TEST_INT")
    assert settings._parse_int("HABITBELL_TEST_INT", 7) == 7


def test_parse_bool(monkeypatch):
    monkeypatch.setenv("HABITBELL_TEST_BOOL", "Yes")
    assert settings._parse_bool("HABITBELL_TEST_BOOL") is True
    monkeypatch.setenv("HABITBELL_TEST_BOOL", "off")
    assert settings._parse_bool("HABITBELL_TEST_BOOL", True) is False
    monkeypatch.delenv("HABITBELL_TEST_BOOL")
    assert settings._parse_bool("HABITBELL_TEST_BOOL", True) is True
