from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingDispatcher:
    def __init__(self, result: bool = True, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls = []
        self.gate = None

    async def dispatch(self, reminder) -> bool:
        self.calls.append(reminder)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return FakeClock(utc(2024, 6, 1, 8, 0))


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()
