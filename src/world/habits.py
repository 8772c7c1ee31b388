"""习惯列表 -> 提醒注册表

习惯列表与用户资料由外部(管理 API / 启动种子文件)提供，这里只读不写业务数据，
负责在列表或设置变化、贪睡/取消贪睡、退出登录时调用注册表。

提醒按天重复，不区分习惯的自定义活跃日。
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Iterable

from datamodel import HabitRecord, ReminderChannels, ReminderSpec, TimeOfDay, UserProfile
from logger import logger
from utils import get_device_timezone, now_utc
from world.reminder import ReminderRegistry
from world.resolver import effective_zone

__all__ = ["HabitReminderSync"]


class HabitReminderSync:
    def __init__(
        self,
        registry: ReminderRegistry,
        *,
        device_zone_provider: Callable[[], str] = get_device_timezone,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.registry = registry
        self.device_zone_provider = device_zone_provider
        self.clock = clock
        self.profile = UserProfile()
        self.habits: dict[str, HabitRecord] = {}
        self._resume_handles: dict[str, asyncio.TimerHandle] = {}

    # ---- 时区 ----

    def current_zone(self) -> str:
        return effective_zone(self.profile, self.device_zone_provider())

    def habit_zone(self, habit: HabitRecord) -> str:
        return habit.timezone or self.current_zone()

    # ---- 单个习惯 ----

    def is_snoozed(self, habit: HabitRecord, now: datetime | None = None) -> bool:
        if habit.snoozed_until is None:
            return False
        return habit.snoozed_until > (now or self.clock())

    def build_spec(self, habit: HabitRecord) -> ReminderSpec | None:
        """不需要提醒的习惯返回 None; 时间格式错误抛出 ValueError"""
        if not habit.reminder_enabled or not habit.reminder_time:
            return None
        return ReminderSpec(
            habit_id=habit.id,
            habit_name=habit.name,
            local_time=TimeOfDay.parse(habit.reminder_time),
            timezone=self.habit_zone(habit),
            channels=ReminderChannels(
                browser=habit.browser_channel_enabled,
                email=habit.email_channel_enabled,
                email_address=habit.email_address or self.profile.email,
            ),
        )

    def schedule_habit(self, habit: HabitRecord) -> bool:
        """按习惯当前设置安排或取消提醒，返回是否已安排"""
        try:
            spec = self.build_spec(habit)
        except ValueError:
            self._cancel_resume(habit.id)
            self.registry.cancel(habit.id)
            raise
        if spec is None:
            self._cancel_resume(habit.id)
            self.registry.cancel(habit.id)
            return False
        if self.is_snoozed(habit):
            logger.debug(f"习惯 {habit.id} 处于贪睡状态，直到 {habit.snoozed_until.isoformat()}")
            self.registry.cancel(habit.id)
            # 外部传入的贪睡同样需要在到期时恢复
            self._arm_resume(habit.id, (habit.snoozed_until - self.clock()).total_seconds())
            return False
        self._cancel_resume(habit.id)
        self.registry.schedule(spec.habit_id, spec.habit_name, spec.local_time, spec.timezone, spec.channels)
        return True

    # ---- 批量 ----

    def reschedule_all(self) -> dict[str, list[str]]:
        """按当前习惯列表重新安排全部提醒，单个习惯失败不影响其它习惯"""
        scheduled: list[str] = []
        skipped: list[str] = []
        for habit in list(self.habits.values()):
            try:
                ok = self.schedule_habit(habit)
            except ValueError as e:
                logger.warning(f"跳过习惯 {habit.id} ({habit.name}) 的提醒: {e}")
                ok = False
            (scheduled if ok else skipped).append(habit.id)

        logger.info(f"重新安排提醒完成: 已安排 {len(scheduled)} 个, 跳过 {len(skipped)} 个")
        return {"scheduled": scheduled, "skipped": skipped}

    def replace_habits(self, habits: Iterable[HabitRecord]) -> dict[str, list[str]]:
        new_habits = {h.id: h for h in habits}
        for habit_id in set(self.habits) - set(new_habits):
            self._drop_habit(habit_id)
        self.habits = new_habits
        return self.reschedule_all()

    def upsert_habit(self, habit: HabitRecord) -> bool:
        self.habits[habit.id] = habit
        try:
            return self.schedule_habit(habit)
        except ValueError as e:
            logger.warning(f"跳过习惯 {habit.id} ({habit.name}) 的提醒: {e}")
            return False

    def remove_habit(self, habit_id: str) -> bool:
        if habit_id not in self.habits:
            return False
        del self.habits[habit_id]
        self._drop_habit(habit_id)
        return True

    def update_profile(self, profile: UserProfile) -> dict[str, list[str]]:
        self.profile = profile
        logger.info(f"用户资料已更新, 有效时区: {self.current_zone()}")
        return self.reschedule_all()

    def sign_out(self) -> None:
        for handle in self._resume_handles.values():
            handle.cancel()
        self._resume_handles.clear()
        self.registry.cancel_all()
        self.habits.clear()
        self.profile = UserProfile()
        logger.info("已退出登录，全部提醒已取消")

    # ---- 贪睡 ----

    def snooze(self, habit_id: str, minutes: int) -> datetime:
        habit = self.habits.get(habit_id)
        if habit is None:
            raise KeyError(habit_id)
        if minutes <= 0:
            raise ValueError(f"贪睡时长必须为正数: {minutes}")

        habit.snoozed_until = self.clock() + timedelta(minutes=minutes)
        self.registry.cancel(habit_id)
        self._arm_resume(habit_id, minutes * 60)
        logger.info(f"习惯 {habit_id} 贪睡 {minutes} 分钟，直到 {habit.snoozed_until.isoformat()}")
        return habit.snoozed_until

    def unsnooze(self, habit_id: str) -> bool:
        habit = self.habits.get(habit_id)
        if habit is None:
            raise KeyError(habit_id)
        habit.snoozed_until = None
        self._cancel_resume(habit_id)
        logger.info(f"习惯 {habit_id} 已取消贪睡")
        return self.upsert_habit(habit)

    def _cancel_resume(self, habit_id: str) -> None:
        handle = self._resume_handles.pop(habit_id, None)
        if handle is not None:
            handle.cancel()

    def _arm_resume(self, habit_id: str, delay_seconds: float) -> None:
        self._cancel_resume(habit_id)
        loop = asyncio.get_running_loop()
        self._resume_handles[habit_id] = loop.call_later(delay_seconds, self._resume_after_snooze, habit_id)

    def _resume_after_snooze(self, habit_id: str) -> None:
        self._resume_handles.pop(habit_id, None)
        habit = self.habits.get(habit_id)
        if habit is None:
            return
        logger.info(f"习惯 {habit_id} 贪睡结束，恢复提醒")
        habit.snoozed_until = None
        self.upsert_habit(habit)

    def _drop_habit(self, habit_id: str) -> None:
        self._cancel_resume(habit_id)
        self.registry.cancel(habit_id)
