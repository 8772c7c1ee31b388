from logger import setup_logging, logger
from config.settings import *
setup_logging(
    log_level=LOG_LEVEL,
    log_file=LOG_FILE,
    console_level="INFO",
)

import asyncio
import json
import os
import signal
import sys
import time
from pathlib import Path

from admin.http_server import serve as serve_admin
from admin.schemas import RuntimeControl, SeedFile
from channels.base import ReminderDispatcher
from channels.email_smtp import SmtpEmailChannel
from channels.telegram_push import TelegramPushChannel
from utils import get_device_timezone
from world.habits import HabitReminderSync
from world.offset_watcher import OffsetWatcher
from world.reminder import ReminderRegistry

shutdown_event = asyncio.Event()
restart_event = asyncio.Event()

def signal_handler(sig, frame):
    """处理 SIGINT (Ctrl+C) / SIGTERM 信号"""
    logger.info("收到中断信号,正在依次关闭组件...")
    shutdown_event.set()


def _load_seed(sync: HabitReminderSync, path: Path) -> None:
    """读取启动种子文件(可选)，文件不存在时跳过"""
    if not path.exists():
        logger.info(f"未找到种子文件 {path}，等待通过管理 API 提供习惯列表")
        return
    try:
        seed = SeedFile.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except Exception as e:
        logger.error(f"种子文件 {path} 解析失败，忽略: {e}")
        return
    sync.profile = seed.profile.to_profile()
    result = sync.replace_habits(h.to_record() for h in seed.habits)
    logger.info(f"已从 {path} 载入 {len(seed.habits)} 个习惯, 安排提醒 {len(result['scheduled'])} 个")


async def main():
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    telegram_channel = TelegramPushChannel()
    dispatcher = ReminderDispatcher([telegram_channel, SmtpEmailChannel()])
    for ch in dispatcher.describe():
        if not ch["supported"]:
            logger.warning(f"通道 {ch['name']} 未配置，该通道的提醒将被跳过")

    registry = ReminderRegistry(dispatcher)
    sync = HabitReminderSync(registry, device_zone_provider=lambda: get_device_timezone(DEVICE_TIMEZONE))
    watcher = OffsetWatcher(
        sync.current_zone,
        sync.reschedule_all,
        interval_seconds=OFFSET_CHECK_INTERVAL_SECONDS,
        clock_jump_tolerance_seconds=CLOCK_JUMP_TOLERANCE_SECONDS,
    )
    logger.info(f"设备时区: {sync.device_zone_provider()}")

    _load_seed(sync, Path(HABITS_SEED_FILE))

    control = RuntimeControl(
        shutdown_event=shutdown_event,
        restart_event=restart_event,
        started_at=time.time(),
        sync=sync,
        watcher=watcher,
    )

    try:
        await asyncio.gather(
            watcher.run(shutdown_event),
            serve_admin(control),
        )
    finally:
        logger.info("关闭 Habitbell...")
        registry.cancel_all()
        await registry.wait_idle()
        await telegram_channel.close()
        if restart_event.is_set():
            logger.warning("检测到重启信号，正在重新拉起进程...")
            try:
                os.execv(sys.executable, [sys.executable, *sys.argv])
            except Exception as e:
                logger.error(f"重启失败: {e}", exc_info=e)
        logger.info("Habitbell 已关闭")


if __name__ == "__main__":
    logger.info("启动 Habitbell...")
    asyncio.run(main())
