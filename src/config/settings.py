import os
from dotenv import load_dotenv
from logger import logger
load_dotenv()

__all__ = [
    "DEVICE_TIMEZONE",
    "OFFSET_CHECK_INTERVAL_SECONDS", "CLOCK_JUMP_TOLERANCE_SECONDS",
    "TELEGRAM_BOT_TOKEN", "PRIMARY_TELEGRAM_CHAT_ID",
    "SMTP_HOST", "SMTP_PORT", "SMTP_USERNAME", "SMTP_PASSWORD", "SMTP_USE_TLS", "SMTP_FROM",
    "ADMIN_HTTP_HOST", "ADMIN_HTTP_PORT", "ADMIN_AUTH_TOKEN",
    "LOG_FILE", "LOG_LEVEL", "HABITS_SEED_FILE",
]


def _parse_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on", "y")


def _parse_int(name: str, default: int, minimum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"{name} 非法: {raw!r}, 已回退到 {default}")
        return default
    if minimum is not None and value < minimum:
        logger.warning(f"{name} 过小: {value}, 已回退到 {default}")
        return default
    return value


# 时区
# 留空时按 TZ 环境变量 / 系统 /etc/localtime 推断设备时区
DEVICE_TIMEZONE = os.getenv("DEVICE_TIMEZONE", "").strip()

# 时区偏移检查(DST 切换、用户修改时区)
OFFSET_CHECK_INTERVAL_SECONDS = _parse_int("OFFSET_CHECK_INTERVAL_SECONDS", 3600, minimum=1)
CLOCK_JUMP_TOLERANCE_SECONDS = _parse_int("CLOCK_JUMP_TOLERANCE_SECONDS", 120, minimum=1)


# Telegram 推送通道
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
PRIMARY_TELEGRAM_CHAT_ID = _parse_int("PRIMARY_TELEGRAM_CHAT_ID", 0)
if TELEGRAM_BOT_TOKEN and PRIMARY_TELEGRAM_CHAT_ID == 0:
    logger.warning("已设置 TELEGRAM_BOT_TOKEN, 但未设置 PRIMARY_TELEGRAM_CHAT_ID, 推送提醒将不会发送")


# 邮件通道
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = _parse_int("SMTP_PORT", 587, minimum=1)
SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_USE_TLS = _parse_bool("SMTP_USE_TLS", True)
SMTP_FROM = os.getenv("SMTP_FROM", SMTP_USERNAME or "habitbell@localhost")


# Admin API
ADMIN_HTTP_HOST = os.getenv("ADMIN_HTTP_HOST", "127.0.0.1")
ADMIN_HTTP_PORT = _parse_int("ADMIN_HTTP_PORT", 18080, minimum=0)  # 0 禁用管理 API
ADMIN_AUTH_TOKEN = os.getenv("ADMIN_AUTH_TOKEN", "")


# 日志与启动数据
LOG_FILE = os.getenv("LOG_FILE", "logs/habitbell.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "TRACE").strip().upper()
HABITS_SEED_FILE = os.getenv("HABITS_SEED_FILE", "data/habits.json")
