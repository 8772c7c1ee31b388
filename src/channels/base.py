"""提醒派发

ReminderDispatcher 是调度器唯一依赖的派发入口，按提醒上勾选的通道逐一发送。
通道不可用(未配置)或未授权时直接跳过并记录日志，发送异常被吞掉并返回 False:
提醒是尽力而为的功能，不能因为派发失败打断调度。
"""

from abc import ABC, abstractmethod
from typing import Iterable

from datamodel import NotificationPermission, ReminderMessage, ReminderSpec
from events import bus, E
from logger import logger
from metrics import runtime_metrics

__all__ = ["NotificationChannel", "ReminderDispatcher", "build_reminder_message"]


def build_reminder_message(reminder: ReminderSpec) -> ReminderMessage:
    return ReminderMessage(
        title=f"Time for your habit: {reminder.habit_name}",
        body=f"Don't forget to complete your habit \"{reminder.habit_name}\"",
    )


class NotificationChannel(ABC):
    name: str = "base"

    @abstractmethod
    def is_supported(self) -> bool:
        pass

    @abstractmethod
    def permission_state(self, reminder: ReminderSpec) -> NotificationPermission:
        pass

    @abstractmethod
    def wants(self, reminder: ReminderSpec) -> bool:
        """该提醒是否勾选了本通道"""
        pass

    @abstractmethod
    async def send(self, reminder: ReminderSpec, message: ReminderMessage) -> bool:
        pass


class ReminderDispatcher:
    def __init__(self, channels: Iterable[NotificationChannel]) -> None:
        self.channels = list(channels)

    def describe(self) -> list[dict]:
        return [
            {"name": ch.name, "supported": ch.is_supported()}
            for ch in self.channels
        ]

    async def dispatch(self, reminder: ReminderSpec) -> bool:
        """发送一次提醒，任一通道成功即返回 True"""
        message = build_reminder_message(reminder)
        sent_any = False

        for channel in self.channels:
            if not channel.wants(reminder):
                continue
            if not channel.is_supported():
                logger.debug(f"通道 {channel.name} 未配置，跳过提醒 habit_id={reminder.habit_id}")
                runtime_metrics.record_dispatch_skipped()
                continue
            permission = channel.permission_state(reminder)
            if permission is not NotificationPermission.GRANTED:
                logger.warning(f"通道 {channel.name} 未授权({permission.value})，跳过提醒 habit_id={reminder.habit_id}")
                runtime_metrics.record_dispatch_skipped()
                continue

            try:
                sent = await channel.send(reminder, message)
            except Exception as e:
                logger.error(f"通道 {channel.name} 发送提醒失败: habit_id={reminder.habit_id}: {e}", exc_info=e)
                sent = False

            bus.emit(E.REMINDER_SENT, reminder=reminder, channel=channel.name, sent=sent)
            sent_any = sent_any or sent

        return sent_any
