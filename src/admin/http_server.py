from __future__ import annotations

import asyncio

import uvicorn
from config.settings import ADMIN_HTTP_HOST, ADMIN_HTTP_PORT, LOG_LEVEL
from logger import logger

from .app import create_app
from .schemas import RuntimeControl

# 低于 INFO 的级别不下放给 uvicorn，避免逐条记录 ASGI 消息
_UVICORN_LEVELS = {"WARNING": "warning", "ERROR": "error", "CRITICAL": "critical", "FATAL": "critical"}


async def _stop_on_shutdown(shutdown_event: asyncio.Event, server: uvicorn.Server) -> None:
    await shutdown_event.wait()
    logger.debug("收到关闭信号，通知 Admin HTTP 服务退出")
    server.should_exit = True


async def serve(
    control: RuntimeControl,
    host: str = ADMIN_HTTP_HOST,
    port: int = ADMIN_HTTP_PORT,
) -> None:
    """在当前事件循环中运行管理 API，直到 shutdown_event 被设置

    port 为 0 时不监听，只等待关闭信号(提醒调度照常工作)。
    """
    if port == 0:
        logger.warning("ADMIN_HTTP_PORT=0，管理 API 已禁用")
        await control.shutdown_event.wait()
        return

    config = uvicorn.Config(
        create_app(control),
        host=host,
        port=port,
        log_level=_UVICORN_LEVELS.get(LOG_LEVEL.upper(), "info"),
        access_log=False,
    )
    server = uvicorn.Server(config)
    # 信号由 main.py 统一处理
    server.install_signal_handlers = lambda: None

    stopper = asyncio.create_task(_stop_on_shutdown(control.shutdown_event, server))
    logger.info(f"管理 API 监听于 http://{host}:{port}")
    try:
        await server.serve()
    finally:
        stopper.cancel()
        try:
            await stopper
        except asyncio.CancelledError:
            pass
        logger.info("管理 API 已关闭")
