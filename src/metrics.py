"""
运行时指标，统计提醒的调度/触发/发送情况与时区偏移变化，供 Admin API 展示。
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from events import bus, E


@dataclass
class RuntimeMetrics:
    reminder_scheduled_count: int = 0
    reminder_cancelled_count: int = 0
    reminder_triggered_count: int = 0
    dispatch_sent_count: int = 0
    dispatch_failed_count: int = 0
    dispatch_skipped_count: int = 0
    offset_change_count: int = 0
    last_triggered_at: float | None = None

    def record_scheduled(self) -> None:
        self.reminder_scheduled_count += 1

    def record_cancelled(self) -> None:
        self.reminder_cancelled_count += 1

    def record_triggered(self) -> None:
        self.reminder_triggered_count += 1
        self.last_triggered_at = time.time()

    def record_dispatch(self, sent: bool) -> None:
        if sent:
            self.dispatch_sent_count += 1
        else:
            self.dispatch_failed_count += 1

    def record_dispatch_skipped(self) -> None:
        self.dispatch_skipped_count += 1

    def record_offset_change(self) -> None:
        self.offset_change_count += 1

    def snapshot(self) -> dict:
        return {
            "reminder_scheduled_count": self.reminder_scheduled_count,
            "reminder_cancelled_count": self.reminder_cancelled_count,
            "reminder_triggered_count": self.reminder_triggered_count,
            "dispatch_sent_count": self.dispatch_sent_count,
            "dispatch_failed_count": self.dispatch_failed_count,
            "dispatch_skipped_count": self.dispatch_skipped_count,
            "offset_change_count": self.offset_change_count,
            "last_triggered_at_epoch": self.last_triggered_at,
            "last_triggered_at_utc": (
                time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.last_triggered_at))
                if self.last_triggered_at is not None
                else None
            ),
        }


runtime_metrics = RuntimeMetrics()


@bus.on(E.REMINDER_SCHEDULED)
def _on_reminder_scheduled(**_) -> None:
    runtime_metrics.record_scheduled()


@bus.on(E.REMINDER_CANCELLED)
def _on_reminder_cancelled(**_) -> None:
    runtime_metrics.record_cancelled()


@bus.on(E.REMINDER_TRIGGERED)
def _on_reminder_triggered(**_) -> None:
    runtime_metrics.record_triggered()


@bus.on(E.REMINDER_SENT)
def _on_reminder_sent(sent: bool, **_) -> None:
    runtime_metrics.record_dispatch(sent)


@bus.on(E.TIMEZONE_OFFSET_CHANGED)
def _on_offset_changed(**_) -> None:
    runtime_metrics.record_offset_change()


__all__ = ["RuntimeMetrics", "runtime_metrics"]
