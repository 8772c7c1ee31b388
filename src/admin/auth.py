from __future__ import annotations

import hmac

from config.settings import ADMIN_AUTH_TOKEN
from fastapi import HTTPException, Request
from logger import logger


class AdminTokenGuard:
    """管理 API 的共享令牌校验

    支持 `Authorization: Bearer <token>` 或 `X-Habitbell-Token: <token>`。
    未配置令牌时整个管理 API 返回 503，健康检查除外。
    """

    header_name = "X-Habitbell-Token"

    def __init__(self, token: str = ADMIN_AUTH_TOKEN) -> None:
        self.token = token
        if not token:
            logger.warning("未配置 ADMIN_AUTH_TOKEN，管理 API 将不可访问")

    @property
    def enabled(self) -> bool:
        return bool(self.token)

    def presented(self, request: Request) -> tuple[str, str] | None:
        """返回 (来源, 令牌)，请求未携带令牌时返回 None"""
        scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return "bearer", credentials.strip()
        header_token = request.headers.get(self.header_name, "").strip()
        if header_token:
            return "header", header_token
        return None

    async def __call__(self, request: Request) -> dict[str, str]:
        if not self.enabled:
            raise HTTPException(status_code=503, detail="ADMIN_AUTH_TOKEN 未配置")

        presented = self.presented(request)
        if presented is None:
            raise HTTPException(status_code=401, detail="缺少管理令牌")
        source, token = presented
        if not hmac.compare_digest(token.encode(), self.token.encode()):
            logger.warning(f"管理令牌校验失败: client={request.client.host if request.client else '-'}")
            raise HTTPException(status_code=401, detail="未授权")
        return {"auth": source, "user": "admin-token"}
