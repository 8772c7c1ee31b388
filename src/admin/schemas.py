from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

from config.settings import ADMIN_AUTH_TOKEN
from datamodel import HabitRecord, UserProfile
from utils import is_valid_timezone
from world.habits import HabitReminderSync
from world.offset_watcher import OffsetWatcher

_TIME_24_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


@dataclass
class RuntimeControl:
    shutdown_event: asyncio.Event
    restart_event: asyncio.Event
    started_at: float
    sync: HabitReminderSync
    watcher: OffsetWatcher
    auth_token: str = ADMIN_AUTH_TOKEN


class ShutdownRequest(BaseModel):
    reason: str = Field(default="manual")


class SnoozeRequest(BaseModel):
    minutes: int = Field(default=60, gt=0, le=7 * 24 * 60)


class ProfilePayload(BaseModel):
    timezone: str | None = None
    timezone_manual: bool = False
    email: str | None = None

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, v: str | None) -> str | None:
        if v is not None and not is_valid_timezone(v):
            raise ValueError(f"无法识别的时区: {v}")
        return v

    def to_profile(self) -> UserProfile:
        return UserProfile(timezone=self.timezone, timezone_manual=self.timezone_manual, email=self.email)


class HabitPayload(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    reminder_enabled: bool = False
    reminder_time: str | None = None
    timezone: str | None = None
    browser_channel_enabled: bool = True
    email_channel_enabled: bool = False
    email_address: str | None = None
    snoozed_until: datetime | None = None

    @field_validator("reminder_time")
    @classmethod
    def _check_reminder_time(cls, v: str | None) -> str | None:
        if v is not None and not _TIME_24_RE.match(v):
            raise ValueError(f"reminder_time 必须为 HH:MM: {v}")
        return v

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, v: str | None) -> str | None:
        if v is not None and not is_valid_timezone(v):
            raise ValueError(f"无法识别的时区: {v}")
        return v

    @field_validator("snoozed_until")
    @classmethod
    def _assume_utc(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def to_record(self) -> HabitRecord:
        return HabitRecord(**self.model_dump())


class SeedFile(BaseModel):
    """启动时读取的种子文件: {"profile": {...}, "habits": [...]}"""
    profile: ProfilePayload = Field(default_factory=ProfilePayload)
    habits: list[HabitPayload] = Field(default_factory=list)
