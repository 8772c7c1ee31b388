"""时间格式与时区工具

24 小时制字符串 "HH:MM" 与 12 小时制 Time12Hour 之间的转换，
以及设备时区探测、时区偏移、可选时区列表等辅助函数。
"""

import os
import re
from datetime import datetime, timezone
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pytz

from datamodel import Time12Hour, TimeOfDay
from world.resolver import instant_on_day

__all__ = ["now_utc", "utc_to_user_local_min",
           "to_12_hour", "to_24_hour", "parse_time_to_12_hour", "format_12_hour_time",
           "is_valid_time_12_hour", "current_time_12_hour",
           "is_valid_timezone", "get_device_timezone", "get_zone_offset_minutes",
           "format_time_in_zone", "get_all_timezones"]

_TIME_24_RE = re.compile(r"^\d{1,2}:\d{2}$")
_TIME_12_RE = re.compile(r"^(\d{1,2}):(\d{2})\s*(AM|PM)$", re.IGNORECASE)

_FALLBACK_TIMEZONES = [
    "UTC",
    "Etc/GMT",
    "Europe/London",
    "Europe/Paris",
    "Asia/Kolkata",
    "Asia/Tokyo",
    "Asia/Singapore",
    "Asia/Dubai",
    "America/New_York",
    "America/Chicago",
    "America/Denver",
    "America/Los_Angeles",
    "America/Sao_Paulo",
    "Australia/Sydney",
]


def now_utc() -> datetime:
    """获取当前 UTC 时间"""
    return datetime.now(timezone.utc)


def utc_to_user_local_min(utc_dt: datetime, user_tz: str) -> str:
    if utc_dt.tzinfo is None:
        utc_dt = utc_dt.replace(tzinfo=timezone.utc)
    local_dt = utc_dt.astimezone(ZoneInfo(user_tz))
    return local_dt.strftime("%Y-%m-%d %H:%M")


# ---- 12/24 小时制转换 ----

def to_12_hour(time24: str) -> Time12Hour:
    """"HH:MM" -> Time12Hour, 调用方保证输入格式正确"""
    hour_str, minute_str = time24.split(":")
    hour24 = int(hour_str)
    minute = int(minute_str)

    hour12 = 12 if hour24 == 0 else hour24 - 12 if hour24 > 12 else hour24
    return Time12Hour(hour=hour12, minute=minute, is_am=hour24 < 12)


def to_24_hour(time12: Time12Hour) -> str:
    hour24 = time12.hour
    if time12.hour == 12:
        hour24 = 0 if time12.is_am else 12
    elif not time12.is_am:
        hour24 += 12
    return f"{hour24:02d}:{time12.minute:02d}"


def parse_time_to_12_hour(time_string: str) -> Time12Hour:
    """同时接受 "14:30" 与 "2:30 PM"，无法识别时回退到 9:00 AM"""
    text = time_string.strip()
    if _TIME_24_RE.match(text):
        parsed = to_12_hour(text)
        if is_valid_time_12_hour(parsed):
            return parsed
    else:
        match = _TIME_12_RE.match(text)
        if match:
            parsed = Time12Hour(
                hour=int(match.group(1)),
                minute=int(match.group(2)),
                is_am=match.group(3).upper() == "AM",
            )
            if is_valid_time_12_hour(parsed):
                return parsed
    return Time12Hour(hour=9, minute=0, is_am=True)


def format_12_hour_time(time12: Time12Hour) -> str:
    return f"{time12.hour}:{time12.minute:02d} {'AM' if time12.is_am else 'PM'}"


def is_valid_time_12_hour(time12: Time12Hour) -> bool:
    return (
        isinstance(time12.hour, int) and 1 <= time12.hour <= 12
        and isinstance(time12.minute, int) and 0 <= time12.minute <= 59
        and isinstance(time12.is_am, bool)
    )


def current_time_12_hour(now: datetime | None = None, zone: str | None = None) -> Time12Hour:
    now = now or now_utc()
    if zone:
        now = now.astimezone(ZoneInfo(zone))
    return to_12_hour(f"{now.hour}:{now.minute}")


# ---- 时区 ----

def is_valid_timezone(zone: str | None) -> bool:
    if not zone or not isinstance(zone, str):
        return False
    try:
        ZoneInfo(zone)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def _zone_from_localtime_link(path: Path = Path("/etc/localtime")) -> str | None:
    # /etc/localtime -> /usr/share/zoneinfo/Asia/Shanghai
    try:
        target = str(path.resolve())
    except OSError:
        return None
    _, sep, name = target.partition("zoneinfo/")
    if sep and is_valid_timezone(name):
        return name
    return None


def get_device_timezone(configured: str | None = None) -> str:
    """设备时区: 显式配置 > TZ 环境变量 > /etc/localtime > UTC"""
    for candidate in (configured, os.getenv("TZ", "").lstrip(":")):
        if is_valid_timezone(candidate):
            return candidate
    return _zone_from_localtime_link() or "UTC"


def get_zone_offset_minutes(zone: str, at: datetime | None = None) -> int:
    """zone 在 at 时刻(默认当前)相对 UTC 的偏移分钟数，用于检测 DST 切换"""
    at = at or now_utc()
    offset = at.astimezone(ZoneInfo(zone)).utcoffset()
    return int(offset.total_seconds() // 60)


def format_time_in_zone(time_hhmm: str, zone: str, now: datetime | None = None) -> str:
    """zone 中当天(按 now)该墙钟时间实际出现的时刻, 12 小时制显示, 例如 "9:05 PM"

    落在 DST 空档里的时间显示为切换瞬间(与提醒实际触发的时刻一致)，
    例如 America/New_York 2024-03-10 的 "02:30" 显示为 "3:00 AM"。
    """
    tz = ZoneInfo(zone)
    day = (now or now_utc()).astimezone(tz).date()
    instant = instant_on_day(TimeOfDay.parse(time_hhmm), zone, day)
    return format_12_hour_time(to_12_hour(instant.astimezone(tz).strftime("%H:%M")))


def get_all_timezones() -> list[str]:
    zones = list(pytz.common_timezones)
    return zones or list(_FALLBACK_TIMEZONES)
