import asyncio
from datetime import timedelta

import pytest

from conftest import RecordingDispatcher, utc
from datamodel import ReminderChannels, ReminderSpec, TimeOfDay
from world.reminder import ReminderRegistry, TimerState
from world.resolver import ResolutionError


def make_spec(habit_id, zone="UTC", hhmm="09:00"):
    return ReminderSpec(habit_id, f"habit {habit_id}", TimeOfDay.parse(hhmm), zone, ReminderChannels())


@pytest.mark.asyncio
async def test_schedule_arms_single_timer(clock, dispatcher):
    registry = ReminderRegistry(dispatcher, clock=clock)
    timer = registry.schedule("h1", "Drink water", "09:00", "America/New_York")

    assert registry.pending_count() == 1
    assert registry.pending("h1") is timer
    # 2024-06-01 08:00Z is 04:00 EDT, 09:00 EDT is 13:00Z the same day
    assert timer.fire_at == utc(2024, 6, 1, 13, 0)
    assert dispatcher.calls == []
    registry.cancel_all()


@pytest.mark.asyncio
async def test_schedule_twice_replaces_instead_of_stacking(clock, dispatcher):
    registry = ReminderRegistry(dispatcher, clock=clock)
    first = registry.schedule("h1", "Read", "09:00", "UTC")
    second = registry.schedule("h1", "Read", "10:00", "UTC")

    assert registry.pending_count() == 1
    assert first.state is TimerState.CANCELLED
    assert registry.pending("h1") is second
    assert second.fire_at == utc(2024, 6, 1, 10, 0)
    registry.cancel_all()


@pytest.mark.asyncio
async def test_cancel_is_idempotent(clock, dispatcher):
    registry = ReminderRegistry(dispatcher, clock=clock)
    registry.schedule("h1", "Read", "09:00", "UTC")

    assert registry.cancel("h1") is True
    assert registry.cancel("h1") is False
    assert registry.cancel("never-scheduled") is False
    assert registry.pending("h1") is None
    assert registry.pending_count() == 0


@pytest.mark.asyncio
async def test_cancel_all_returns_to_fresh_state(clock, dispatcher):
    registry = ReminderRegistry(dispatcher, clock=clock)
    for i in range(3):
        registry.schedule(f"h{i}", "x", "09:00", "UTC")

    assert registry.cancel_all() == 3
    assert registry.pending_count() == 0
    assert registry.snapshot() == []
    assert registry.cancel_all() == 0


@pytest.mark.asyncio
async def test_schedule_all_skips_invalid_zone(clock, dispatcher):
    registry = ReminderRegistry(dispatcher, clock=clock)
    specs = [make_spec("h1"), make_spec("h2", zone="Mars/Olympus_Mons"), make_spec("h3", zone="Asia/Tokyo")]

    scheduled = registry.schedule_all(specs)

    assert scheduled == ["h1", "h3"]
    assert registry.pending("h1") is not None
    assert registry.pending("h2") is None
    assert registry.pending("h3") is not None
    registry.cancel_all()


@pytest.mark.asyncio
async def test_schedule_with_bad_zone_raises_and_drops_old_timer(clock, dispatcher):
    registry = ReminderRegistry(dispatcher, clock=clock)
    registry.schedule("h1", "x", "09:00", "UTC")

    with pytest.raises(ResolutionError):
        registry.schedule("h1", "x", "09:00", "Nowhere/Land")
    assert registry.pending("h1") is None


@pytest.mark.asyncio
async def test_fire_dispatches_once_and_rearms_next_day(clock, dispatcher):
    clock.now = utc(2024, 6, 1, 8, 59, 59, 950000)
    registry = ReminderRegistry(dispatcher, clock=clock)
    registry.schedule("h1", "Stretch", "09:00", "UTC", ReminderChannels(browser=True))

    await asyncio.sleep(0.2)
    await registry.wait_idle()

    assert len(dispatcher.calls) == 1
    assert dispatcher.calls[0].habit_name == "Stretch"
    timer = registry.pending("h1")
    assert timer is not None
    assert timer.fire_at == utc(2024, 6, 2, 9, 0)
    assert timer.fire_count == 1
    registry.cancel_all()


@pytest.mark.parametrize("dispatcher", [RecordingDispatcher(result=False), RecordingDispatcher(error=RuntimeError("smtp down"))])
@pytest.mark.asyncio
async def test_failed_dispatch_still_rearms(clock, dispatcher):
    clock.now = utc(2024, 6, 1, 8, 59, 59, 950000)
    registry = ReminderRegistry(dispatcher, clock=clock)
    registry.schedule("h1", "Stretch", "09:00", "UTC")

    await asyncio.sleep(0.2)
    await registry.wait_idle()

    assert len(dispatcher.calls) == 1
    assert registry.pending("h1").fire_at == utc(2024, 6, 2, 9, 0)
    registry.cancel_all()


@pytest.mark.asyncio
async def test_cancel_during_inflight_dispatch_stops_the_chain(clock, dispatcher):
    clock.now = utc(2024, 6, 1, 8, 59, 59, 950000)
    dispatcher.gate = asyncio.Event()
    registry = ReminderRegistry(dispatcher, clock=clock)
    registry.schedule("h1", "Stretch", "09:00", "UTC")

    await asyncio.sleep(0.2)
    assert len(dispatcher.calls) == 1
    assert registry.pending("h1") is None

    registry.cancel_all()
    dispatcher.gate.set()
    await registry.wait_idle()

    assert registry.pending_count() == 0
    assert registry.snapshot() == []


@pytest.mark.asyncio
async def test_cancel_before_fire_prevents_dispatch(clock, dispatcher):
    clock.now = utc(2024, 6, 1, 8, 59, 59, 950000)
    registry = ReminderRegistry(dispatcher, clock=clock)
    registry.schedule("h1", "Stretch", "09:00", "UTC")
    registry.cancel("h1")

    await asyncio.sleep(0.2)
    await registry.wait_idle()

    assert dispatcher.calls == []


@pytest.mark.asyncio
async def test_reschedule_during_dispatch_keeps_new_timer(clock, dispatcher):
    clock.now = utc(2024, 6, 1, 8, 59, 59, 950000)
    dispatcher.gate = asyncio.Event()
    registry = ReminderRegistry(dispatcher, clock=clock)
    registry.schedule("h1", "Stretch", "09:00", "UTC")

    await asyncio.sleep(0.2)
    replacement = registry.schedule("h1", "Stretch", "18:00", "UTC")
    dispatcher.gate.set()
    await registry.wait_idle()

    assert registry.pending("h1") is replacement
    assert replacement.fire_at == utc(2024, 6, 1, 18, 0)
    registry.cancel_all()


@pytest.mark.asyncio
async def test_non_recurring_registry_forgets_fired_timer(clock, dispatcher):
    clock.now = utc(2024, 6, 1, 8, 59, 59, 950000)
    registry = ReminderRegistry(dispatcher, clock=clock, recurring=False)
    registry.schedule("h1", "Stretch", "09:00", "UTC")

    await asyncio.sleep(0.2)
    await registry.wait_idle()

    assert len(dispatcher.calls) == 1
    assert registry.pending_count() == 0
    assert registry.snapshot() == []


@pytest.mark.asyncio
async def test_late_wakeup_does_not_double_fire(clock, dispatcher):
    clock.now = utc(2024, 6, 1, 8, 59, 59, 950000)
    registry = ReminderRegistry(dispatcher, clock=clock)
    registry.schedule("h1", "Stretch", "09:00", "UTC")

    clock.advance(hours=2)
    await asyncio.sleep(0.2)
    await registry.wait_idle()

    assert len(dispatcher.calls) == 1
    assert registry.pending("h1").fire_at == utc(2024, 6, 2, 9, 0)
    registry.cancel_all()


@pytest.mark.asyncio
async def test_snapshot_reports_local_and_utc_times(clock, dispatcher):
    registry = ReminderRegistry(dispatcher, clock=clock)
    registry.schedule("h1", "Meditate", "21:30", "Asia/Kolkata", ReminderChannels(browser=False, email=True))

    (item,) = registry.snapshot()
    assert item["habit_id"] == "h1"
    assert item["local_time"] == "21:30"
    assert item["fire_at_utc"] == "2024-06-01T16:00:00Z"
    assert item["fire_at_local"] == "2024-06-01 21:30"
    assert item["state"] == "armed"
    assert item["email"] is True and item["browser"] is False
    registry.cancel_all()


@pytest.mark.asyncio
async def test_fire_at_is_relative_to_injected_clock(clock, dispatcher):
    registry = ReminderRegistry(dispatcher, clock=clock)
    timer = registry.schedule("h1", "x", "09:00", "UTC")
    assert timer.fire_at - clock() == timedelta(hours=1)
    registry.cancel_all()
