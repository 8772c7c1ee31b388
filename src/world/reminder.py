"""
每个习惯最多一个待触发的单次定时器。

触发流程: 定时器到点 -> 校验未被取消/替换 -> 派发一次 -> 若仍未被取消则 reschedule() 到下一天。
间隔不是常量(跨 DST 时会差一小时)，所以从不使用周期定时器。

注意: cancel/cancel_all 不会打断正在进行的派发，只会阻止其后的重新调度。
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Iterable, Protocol

from datamodel import ReminderChannels, ReminderSpec, TimeOfDay
from events import bus, E
from logger import logger
from utils import now_utc, utc_to_user_local_min
from world.resolver import ResolutionError, next_instant_in_zone

__all__ = ["ReminderDispatcherLike", "TimerState", "PendingTimer", "ReminderRegistry"]


class ReminderDispatcherLike(Protocol):
    def dispatch(self, reminder: ReminderSpec) -> Awaitable[bool]: ...


class TimerState(str, Enum):
    ARMED = "armed"
    FIRING = "firing"
    CANCELLED = "cancelled"


class PendingTimer:
    def __init__(self, spec: ReminderSpec, fire_at: datetime) -> None:
        self.spec = spec
        self.fire_at = fire_at
        self.state = TimerState.ARMED
        self.fire_count = 0
        self._handle: asyncio.TimerHandle | None = None

    @property
    def habit_id(self) -> str:
        return self.spec.habit_id

    @property
    def is_cancelled(self) -> bool:
        return self.state is TimerState.CANCELLED

    def arm(self, loop: asyncio.AbstractEventLoop, now: datetime, callback: Callable[["PendingTimer"], None]) -> None:
        delay = max(0.0, (self.fire_at - now).total_seconds())
        self._handle = loop.call_later(delay, callback, self)
        self.state = TimerState.ARMED
        logger.trace(f"定时器已装填: habit_id={self.habit_id}, fire_at={self.fire_at.isoformat()}, delay={delay:.1f}s")

    def disarm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def cancel(self) -> None:
        self.disarm()
        self.state = TimerState.CANCELLED

    def reschedule(self, loop: asyncio.AbstractEventLoop, now: datetime, callback: Callable[["PendingTimer"], None]) -> datetime:
        """按同一本地时间/时区装填下一次; 参考时刻不早于上次触发时刻，避免提前唤醒造成重复触发"""
        reference = max(now, self.fire_at)
        self.fire_at = next_instant_in_zone(self.spec.local_time, self.spec.timezone, reference)
        self.arm(loop, now, callback)
        return self.fire_at

    def to_dict(self) -> dict:
        return {
            "habit_id": self.habit_id,
            "habit_name": self.spec.habit_name,
            "local_time": str(self.spec.local_time),
            "timezone": self.spec.timezone,
            "fire_at_utc": self.fire_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "fire_at_local": utc_to_user_local_min(self.fire_at, self.spec.timezone),
            "state": self.state.value,
            "fire_count": self.fire_count,
            "browser": self.spec.channels.browser,
            "email": self.spec.channels.email,
        }


class ReminderRegistry:
    """习惯提醒注册表，由组合根显式构造并注入给需要的组件"""

    def __init__(
        self,
        dispatcher: ReminderDispatcherLike,
        *,
        clock: Callable[[], datetime] = now_utc,
        loop: asyncio.AbstractEventLoop | None = None,
        recurring: bool = True,
    ) -> None:
        self.dispatcher = dispatcher
        self.clock = clock
        self.recurring = recurring
        self._loop = loop
        self._timers: dict[str, PendingTimer] = {}
        self._inflight: set[asyncio.Task[None]] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def schedule(
        self,
        habit_id: str,
        title: str,
        local_time: TimeOfDay | str,
        zone: str,
        channels: ReminderChannels | None = None,
    ) -> PendingTimer:
        """为 habit_id 安排提醒，已有的定时器会被替换; 时区非法时抛出 ResolutionError"""
        self.cancel(habit_id)

        if isinstance(local_time, str):
            local_time = TimeOfDay.parse(local_time)
        spec = ReminderSpec(
            habit_id=habit_id,
            habit_name=title,
            local_time=local_time,
            timezone=zone,
            channels=channels or ReminderChannels(),
        )

        now = self.clock()
        timer = PendingTimer(spec, next_instant_in_zone(local_time, zone, now))
        timer.arm(self._get_loop(), now, self._on_timer)
        self._timers[habit_id] = timer

        logger.info(
            f"已安排提醒: habit_id={habit_id}, title={title}, "
            f"at={utc_to_user_local_min(timer.fire_at, zone)} ({zone})"
        )
        bus.emit(E.REMINDER_SCHEDULED, habit_id=habit_id, fire_at=timer.fire_at)
        return timer

    def schedule_all(self, specs: Iterable[ReminderSpec]) -> list[str]:
        """逐个安排，单个习惯失败只记录日志，不影响其它习惯"""
        scheduled: list[str] = []
        for spec in specs:
            try:
                self.schedule(spec.habit_id, spec.habit_name, spec.local_time, spec.timezone, spec.channels)
            except ValueError as e:
                logger.warning(f"跳过习惯 {spec.habit_id} 的提醒: {e}")
                continue
            scheduled.append(spec.habit_id)
        return scheduled

    def cancel(self, habit_id: str) -> bool:
        timer = self._timers.pop(habit_id, None)
        if timer is None:
            return False
        timer.cancel()
        logger.debug(f"已取消提醒: habit_id={habit_id}")
        bus.emit(E.REMINDER_CANCELLED, habit_id=habit_id)
        return True

    def cancel_all(self) -> int:
        count = 0
        for habit_id in list(self._timers):
            if self.cancel(habit_id):
                count += 1
        if count:
            logger.info(f"已取消全部提醒，共 {count} 个")
        return count

    def pending(self, habit_id: str) -> PendingTimer | None:
        timer = self._timers.get(habit_id)
        if timer is None or timer.state is not TimerState.ARMED:
            return None
        return timer

    def pending_count(self) -> int:
        return sum(1 for t in self._timers.values() if t.state is TimerState.ARMED)

    def snapshot(self) -> list[dict]:
        return [t.to_dict() for t in sorted(self._timers.values(), key=lambda t: t.fire_at)]

    async def wait_idle(self) -> None:
        """等待所有进行中的派发结束"""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def _on_timer(self, timer: PendingTimer) -> None:
        # 已被取消或已被新的 schedule 替换
        if timer.is_cancelled or self._timers.get(timer.habit_id) is not timer:
            return

        timer.disarm()
        timer.state = TimerState.FIRING
        timer.fire_count += 1
        logger.info(f"提醒触发: habit_id={timer.habit_id}, title={timer.spec.habit_name}")
        bus.emit(E.REMINDER_TRIGGERED, reminder=timer.spec)

        task = self._get_loop().create_task(self._dispatch_then_reschedule(timer), name=f"reminder-{timer.habit_id}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _dispatch_then_reschedule(self, timer: PendingTimer) -> None:
        try:
            sent = await self.dispatcher.dispatch(timer.spec)
        except Exception as e:
            logger.error(f"提醒派发异常: habit_id={timer.habit_id}: {e}", exc_info=e)
            sent = False
        if not sent:
            logger.warning(f"提醒未成功送达: habit_id={timer.habit_id}，下一次照常安排")

        # 派发期间可能已被 cancel / cancel_all / 新的 schedule 替换
        if timer.is_cancelled or self._timers.get(timer.habit_id) is not timer:
            return
        if not self.recurring:
            self._timers.pop(timer.habit_id, None)
            return

        try:
            fire_at = timer.reschedule(self._get_loop(), self.clock(), self._on_timer)
        except ResolutionError as e:
            logger.error(f"重新安排提醒失败: habit_id={timer.habit_id}: {e}")
            self._timers.pop(timer.habit_id, None)
            return
        logger.info(
            f"已安排下一次提醒: habit_id={timer.habit_id}, "
            f"at={utc_to_user_local_min(fire_at, timer.spec.timezone)} ({timer.spec.timezone})"
        )
