"""本地时间 -> 下一个 UTC 时刻

给定墙钟时间 "HH:MM" 与 IANA 时区，计算严格晚于参考时刻的下一个 UTC 时刻。
偏移量按目标本地日期时间解析(而不是参考时刻)，以正确跨越 DST 边界。

- 不存在的本地时间(春季拨快的空档): 取空档结束后的第一个有效时刻，即切换瞬间。
  例: America/New_York 2024-03-10 02:30 -> 03:00 EDT (07:00Z)
- 重复的本地时间(秋季拨慢): 取较早的一次(fold=0)，每个本地日只触发一次。
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from datamodel import TimeOfDay, UserProfile

__all__ = ["ResolutionError", "load_zone", "instant_on_day", "next_instant_in_zone", "effective_zone"]

_MAX_DAYS_AHEAD = 7
_ONE_SECOND = timedelta(seconds=1)


class ResolutionError(ValueError):
    """时区无法识别，或在可接受的范围内找不到目标时刻"""


def load_zone(zone: str) -> ZoneInfo:
    if not zone or not isinstance(zone, str):
        raise ResolutionError(f"时区为空: {zone!r}")
    try:
        return ZoneInfo(zone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ResolutionError(f"无法识别的时区: {zone!r}") from e


def _transition_instant(tz: tzinfo, before: datetime, after: datetime) -> datetime:
    """二分查找 before 与 after 之间偏移变为 after 一侧偏移的第一秒"""
    target_offset = after.astimezone(tz).utcoffset()
    lo, hi = before, after
    while hi - lo > _ONE_SECOND:
        mid = lo + timedelta(seconds=(hi - lo).total_seconds() // 2)
        if mid.astimezone(tz).utcoffset() == target_offset:
            hi = mid
        else:
            lo = mid
    return hi


def _resolve_local(day: date, local_time: TimeOfDay, tz: tzinfo) -> datetime:
    """把 tz 中 day 当天的 local_time 换算为 UTC"""
    naive = datetime.combine(day, time(local_time.hour, local_time.minute))
    earlier = naive.replace(tzinfo=tz, fold=0).astimezone(timezone.utc)

    # 往返一致说明本地时间存在(重复时间时 fold=0 即较早的一次)
    if earlier.astimezone(tz).replace(tzinfo=None) == naive:
        return earlier

    # 空档: fold=0 按切换前偏移解析(落在切换之后)，fold=1 按切换后偏移解析(落在切换之前)
    later = naive.replace(tzinfo=tz, fold=1).astimezone(timezone.utc)
    lo, hi = min(earlier, later), max(earlier, later)
    return _transition_instant(tz, lo, hi)


def instant_on_day(local_time: TimeOfDay, zone: str, day: date) -> datetime:
    """zone 中 day 当天 local_time 实际对应的 UTC 时刻(空档/重复时间规则同上)"""
    return _resolve_local(day, local_time, load_zone(zone))


def next_instant_in_zone(local_time: TimeOfDay, zone: str, reference_now: datetime) -> datetime:
    """返回严格晚于 reference_now 的、zone 墙钟显示 local_time 的最早 UTC 时刻"""
    tz = load_zone(zone)
    if reference_now.tzinfo is None:
        reference_now = reference_now.replace(tzinfo=timezone.utc)
    reference_now = reference_now.astimezone(timezone.utc)

    day = reference_now.astimezone(tz).date()
    for _ in range(_MAX_DAYS_AHEAD):
        candidate = _resolve_local(day, local_time, tz)
        if candidate > reference_now:
            return candidate
        day += timedelta(days=1)

    raise ResolutionError(f"{_MAX_DAYS_AHEAD} 天内找不到 {zone} 的 {local_time}")


def effective_zone(profile: UserProfile | None, device_zone: str) -> str:
    """手动覆盖时使用用户设置的时区，否则使用设备时区"""
    if profile is not None and profile.timezone_manual and profile.timezone:
        return profile.timezone
    return device_zone
