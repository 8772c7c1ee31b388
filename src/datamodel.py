from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

__all__ = [
    "TimeOfDay", "Time12Hour",
    "ReminderChannels", "ReminderSpec", "ReminderMessage",
    "NotificationPermission",
    "HabitRecord", "UserProfile",
]

# ----------------- 时间数据模型 ----------------
@dataclass(frozen=True)
class TimeOfDay:
    """本地墙钟时间，只精确到分钟"""
    hour: int
    minute: int

    def __post_init__(self):
        if not isinstance(self.hour, int) or not 0 <= self.hour <= 23:
            raise ValueError(f"hour 超出范围 0..23: {self.hour!r}")
        if not isinstance(self.minute, int) or not 0 <= self.minute <= 59:
            raise ValueError(f"minute 超出范围 0..59: {self.minute!r}")

    @classmethod
    def parse(cls, text: str) -> "TimeOfDay":
        # 格式: "HH:MM"
        hour_str, sep, minute_str = text.strip().partition(":")
        if not sep or not hour_str.isdigit() or not minute_str.isdigit():
            raise ValueError(f"非法的 24 小时制时间: {text!r}")
        return cls(int(hour_str), int(minute_str))

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclass
class Time12Hour:
    hour: int  # 1-12
    minute: int  # 0-59
    is_am: bool


# ----------------- 提醒数据模型 ----------------
@dataclass
class ReminderChannels:
    browser: bool = True  # 推送通知(本服务中为 Telegram)
    email: bool = False
    email_address: Optional[str] = None


@dataclass
class ReminderSpec:
    habit_id: str
    habit_name: str
    local_time: TimeOfDay
    timezone: str  # IANA时区字符串，例如 "America/New_York"
    channels: ReminderChannels = field(default_factory=ReminderChannels)


@dataclass
class ReminderMessage:
    title: str
    body: str


class NotificationPermission(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    DEFAULT = "default"


# ----------------- 习惯与用户数据模型 ----------------
@dataclass
class HabitRecord:
    id: str
    name: str
    reminder_enabled: bool = False
    reminder_time: Optional[str] = None  # 格式: "HH:MM"
    timezone: Optional[str] = None  # 为空时使用用户的有效时区
    browser_channel_enabled: bool = True
    email_channel_enabled: bool = False
    email_address: Optional[str] = None
    snoozed_until: Optional[datetime] = None  # 带时区的 UTC 时间


@dataclass
class UserProfile:
    timezone: Optional[str] = None
    timezone_manual: bool = False
    email: Optional[str] = None
