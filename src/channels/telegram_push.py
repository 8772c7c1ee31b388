"""Telegram 推送通道(对应提醒上的 browser/推送 开关)"""

import telegram

from channels.base import NotificationChannel
from config.settings import PRIMARY_TELEGRAM_CHAT_ID, TELEGRAM_BOT_TOKEN
from datamodel import NotificationPermission, ReminderMessage, ReminderSpec
from logger import logger

__all__ = ["TelegramPushChannel"]


class TelegramPushChannel(NotificationChannel):
    name = "telegram"

    def __init__(self, token: str = TELEGRAM_BOT_TOKEN, chat_id: int = PRIMARY_TELEGRAM_CHAT_ID) -> None:
        self.token = token
        self.chat_id = chat_id
        self._bot: telegram.Bot | None = None

    def is_supported(self) -> bool:
        return bool(self.token)

    def permission_state(self, reminder: ReminderSpec) -> NotificationPermission:
        # 用户尚未与 Bot 建立会话(未配置 chat_id)时视为未授权
        if self.chat_id == 0:
            return NotificationPermission.DEFAULT
        return NotificationPermission.GRANTED

    def wants(self, reminder: ReminderSpec) -> bool:
        return reminder.channels.browser

    async def _get_bot(self) -> telegram.Bot:
        if self._bot is None:
            bot = telegram.Bot(self.token)
            await bot.initialize()
            self._bot = bot
        return self._bot

    async def send(self, reminder: ReminderSpec, message: ReminderMessage) -> bool:
        bot = await self._get_bot()
        try:
            await bot.send_message(chat_id=self.chat_id, text=f"{message.title}\n{message.body}")
        except telegram.error.TelegramError as e:
            logger.error(f"向 Telegram chat_id={self.chat_id} 发送提醒失败: {e}")
            return False
        logger.info(f"Telegram 提醒已发送: habit_id={reminder.habit_id}")
        return True

    async def close(self) -> None:
        if self._bot is not None:
            await self._bot.shutdown()
            self._bot = None
