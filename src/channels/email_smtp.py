"""SMTP 邮件通道

smtplib 是阻塞调用，放到线程里执行以免卡住事件循环。
"""

import asyncio
import smtplib
from email.message import EmailMessage

from channels.base import NotificationChannel
from config.settings import SMTP_FROM, SMTP_HOST, SMTP_PASSWORD, SMTP_PORT, SMTP_USE_TLS, SMTP_USERNAME
from datamodel import NotificationPermission, ReminderMessage, ReminderSpec
from logger import logger
from utils import format_12_hour_time, to_12_hour

__all__ = ["SmtpEmailChannel", "build_email"]


def build_email(reminder: ReminderSpec, message: ReminderMessage, sender: str) -> EmailMessage:
    reminder_time = format_12_hour_time(to_12_hour(str(reminder.local_time)))
    msg = EmailMessage()
    msg["Subject"] = f"Habit Reminder: {reminder.habit_name}"
    msg["From"] = sender
    msg["To"] = reminder.channels.email_address
    msg.set_content(
        f"{message.title}\n\n"
        f"{message.body} ({reminder_time}, {reminder.timezone}).\n"
        "Don't forget to stay on track with your goals!\n"
    )
    return msg


class SmtpEmailChannel(NotificationChannel):
    name = "email"

    def __init__(
        self,
        host: str = SMTP_HOST,
        port: int = SMTP_PORT,
        username: str = SMTP_USERNAME,
        password: str = SMTP_PASSWORD,
        use_tls: bool = SMTP_USE_TLS,
        sender: str = SMTP_FROM,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender

    def is_supported(self) -> bool:
        return bool(self.host)

    def permission_state(self, reminder: ReminderSpec) -> NotificationPermission:
        if not reminder.channels.email_address:
            return NotificationPermission.DENIED
        return NotificationPermission.GRANTED

    def wants(self, reminder: ReminderSpec) -> bool:
        return reminder.channels.email

    def _send_blocking(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)

    async def send(self, reminder: ReminderSpec, message: ReminderMessage) -> bool:
        msg = build_email(reminder, message, self.sender)
        try:
            await asyncio.to_thread(self._send_blocking, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"发送提醒邮件失败: habit_id={reminder.habit_id}, to={reminder.channels.email_address}: {e}")
            return False
        logger.info(f"提醒邮件已发送: habit_id={reminder.habit_id}")
        return True
