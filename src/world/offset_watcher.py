"""时区偏移变化检测

定时(默认每小时)以及"可见性恢复"时重新计算有效时区的 UTC 偏移，
与上次记录的偏移比较; 不一致说明跨过了 DST 边界或用户改了时区，
此时全部提醒需要按新偏移重新安排。

第一次检查只记录基线，不触发重新安排。

事件循环的定时器基于单调时钟，主机挂起后唤醒时墙钟会比单调时钟多走一段，
已装填的定时器会整体推迟，run() 检测到这种跳变时也会强制重新安排。
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Callable

from events import bus, E
from logger import logger
from utils import get_zone_offset_minutes, now_utc

__all__ = ["OffsetWatcher"]


class OffsetWatcher:
    def __init__(
        self,
        zone_provider: Callable[[], str],
        on_change: Callable[[], object],
        *,
        interval_seconds: float = 3600,
        clock: Callable[[], datetime] = now_utc,
        clock_jump_tolerance_seconds: float = 120,
    ) -> None:
        self.zone_provider = zone_provider
        self.on_change = on_change
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.clock_jump_tolerance_seconds = clock_jump_tolerance_seconds
        self.last_known_offset: int | None = None
        self.last_zone: str | None = None
        self.last_check_at: datetime | None = None

    @property
    def armed(self) -> bool:
        return self.last_known_offset is not None

    def get_status(self) -> dict[str, object]:
        return {
            "armed": self.armed,
            "zone": self.last_zone,
            "last_known_offset_minutes": self.last_known_offset,
            "last_check_at_utc": self.last_check_at.isoformat() if self.last_check_at else None,
            "interval_seconds": self.interval_seconds,
        }

    def check(self) -> bool:
        """检查一次偏移，检测到变化并触发重新安排时返回 True"""
        now = self.clock()
        try:
            zone = self.zone_provider()
            offset = get_zone_offset_minutes(zone, now)
        except Exception as e:
            logger.error(f"获取有效时区偏移失败: {e}", exc_info=e)
            return False

        self.last_check_at = now
        previous = self.last_known_offset
        self.last_zone = zone

        if previous is None:
            self.last_known_offset = offset
            logger.info(f"时区偏移基线: zone={zone}, offset={offset}min")
            return False
        if offset == previous:
            return False

        self.last_known_offset = offset
        logger.info(f"检测到时区偏移变化: zone={zone}, {previous}min -> {offset}min, 重新安排全部提醒")
        bus.emit(E.TIMEZONE_OFFSET_CHANGED, zone=zone, previous=previous, current=offset)
        self._trigger_reschedule()
        return True

    def notify_visibility_regained(self) -> bool:
        logger.debug("客户端恢复可见，立即检查时区偏移")
        return self.check()

    def _trigger_reschedule(self) -> None:
        try:
            self.on_change()
        except Exception as e:
            logger.error(f"重新安排全部提醒失败: {e}", exc_info=e)

    async def run(self, shutdown_event: asyncio.Event) -> None:
        logger.info(f"时区偏移检测已启动, 间隔 {self.interval_seconds}s")
        self.check()

        while not shutdown_event.is_set():
            wall_before, mono_before = time.time(), time.monotonic()
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            if shutdown_event.is_set():
                break

            skew = (time.time() - wall_before) - (time.monotonic() - mono_before)
            changed = self.check()
            if abs(skew) > self.clock_jump_tolerance_seconds and not changed:
                logger.warning(f"检测到墙钟跳变 {skew:.0f}s (挂起恢复或系统校时)，重新安排全部提醒")
                self._trigger_reschedule()

        logger.info("时区偏移检测已关闭")
