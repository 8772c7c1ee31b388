from __future__ import annotations

import asyncio
import time
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse

from logger import logger
from metrics import runtime_metrics
from utils import get_all_timezones

from .auth import AdminTokenGuard
from .schemas import HabitPayload, ProfilePayload, RuntimeControl, ShutdownRequest, SnoozeRequest


def create_app(control: RuntimeControl) -> FastAPI:
    app = FastAPI(title="Habitbell Admin API", version="1.0.0")
    sync = control.sync
    watcher = control.watcher

    auth = AdminTokenGuard(control.auth_token)

    def health_payload() -> dict[str, Any]:
        return {
            "status": "ok",
            "now_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "uptime_seconds": max(0.0, time.time() - control.started_at),
            "pending_reminders": sync.registry.pending_count(),
            "shutdown_requested": control.shutdown_event.is_set(),
            "restart_requested": control.restart_event.is_set(),
            "admin_auth_enabled": auth.enabled,
        }

    @app.get("/healthz", include_in_schema=False)
    async def healthz() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.get("/api/v1/health")
    async def api_health() -> dict[str, Any]:
        return health_payload()

    @app.get("/api/v1/metrics")
    async def get_metrics(request: Request) -> dict[str, Any]:
        await auth(request)
        dispatcher = sync.registry.dispatcher
        channels = dispatcher.describe() if hasattr(dispatcher, "describe") else []
        return {
            "runtime": runtime_metrics.snapshot(),
            "components": {
                "offset_watcher": watcher.get_status(),
                "channels": channels,
            },
            "active_tasks": len(asyncio.all_tasks()),
        }

    @app.get("/api/v1/reminders")
    async def get_reminders(request: Request) -> dict[str, Any]:
        await auth(request)
        items = sync.registry.snapshot()
        return {"items": items, "total": len(items)}

    @app.get("/api/v1/timezones")
    async def get_timezones(request: Request) -> dict[str, Any]:
        await auth(request)
        return {
            "device": sync.device_zone_provider(),
            "effective": sync.current_zone(),
            "zones": get_all_timezones(),
        }

    @app.get("/api/v1/profile")
    async def get_profile(request: Request) -> dict[str, Any]:
        await auth(request)
        return {
            "timezone": sync.profile.timezone,
            "timezone_manual": sync.profile.timezone_manual,
            "email": sync.profile.email,
            "effective_timezone": sync.current_zone(),
        }

    @app.put("/api/v1/profile")
    async def put_profile(payload: ProfilePayload, request: Request) -> dict[str, Any]:
        await auth(request)
        result = sync.update_profile(payload.to_profile())
        return {"ok": True, "effective_timezone": sync.current_zone(), **result}

    @app.get("/api/v1/habits")
    async def get_habits(request: Request) -> dict[str, Any]:
        await auth(request)
        items = [
            {
                "id": h.id,
                "name": h.name,
                "reminder_enabled": h.reminder_enabled,
                "reminder_time": h.reminder_time,
                "timezone": h.timezone,
                "snoozed": sync.is_snoozed(h),
                "snoozed_until": h.snoozed_until.isoformat() if h.snoozed_until else None,
            }
            for h in sync.habits.values()
        ]
        return {"items": items, "total": len(items)}

    @app.put("/api/v1/habits")
    async def replace_habits(payload: list[HabitPayload], request: Request) -> dict[str, Any]:
        await auth(request)
        result = sync.replace_habits(p.to_record() for p in payload)
        return {"ok": True, **result}

    @app.put("/api/v1/habits/{habit_id}")
    async def upsert_habit(habit_id: str, payload: HabitPayload, request: Request) -> dict[str, Any]:
        await auth(request)
        if payload.id != habit_id:
            raise HTTPException(status_code=400, detail="路径与请求体中的习惯 ID 不一致")
        scheduled = sync.upsert_habit(payload.to_record())
        return {"ok": True, "habit_id": habit_id, "scheduled": scheduled}

    @app.delete("/api/v1/habits/{habit_id}")
    async def delete_habit(habit_id: str, request: Request) -> dict[str, Any]:
        await auth(request)
        if not sync.remove_habit(habit_id):
            raise HTTPException(status_code=404, detail="习惯不存在")
        return {"ok": True, "habit_id": habit_id}

    @app.post("/api/v1/habits/{habit_id}/snooze")
    async def snooze_habit(habit_id: str, payload: SnoozeRequest, request: Request) -> dict[str, Any]:
        await auth(request)
        try:
            until = sync.snooze(habit_id, payload.minutes)
        except KeyError:
            raise HTTPException(status_code=404, detail="习惯不存在")
        return {"ok": True, "habit_id": habit_id, "snoozed_until": until.isoformat()}

    @app.delete("/api/v1/habits/{habit_id}/snooze")
    async def unsnooze_habit(habit_id: str, request: Request) -> dict[str, Any]:
        await auth(request)
        try:
            scheduled = sync.unsnooze(habit_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="习惯不存在")
        return {"ok": True, "habit_id": habit_id, "scheduled": scheduled}

    @app.post("/api/v1/visibility")
    async def visibility_regained(request: Request) -> dict[str, Any]:
        await auth(request)
        changed = watcher.notify_visibility_regained()
        return {"ok": True, "offset_changed": changed, **watcher.get_status()}

    @app.post("/api/v1/session/sign-out")
    async def sign_out(request: Request) -> dict[str, Any]:
        await auth(request)
        sync.sign_out()
        return {"ok": True}

    @app.post("/api/v1/admin/restart")
    async def admin_restart(payload: ShutdownRequest, request: Request) -> dict[str, Any]:
        auth_info = await auth(request)
        logger.warning(f"收到远程重启请求: by={auth_info['user']}, reason={payload.reason}")
        control.restart_event.set()
        control.shutdown_event.set()
        return {"ok": True, "action": "restart", "reason": payload.reason}

    @app.post("/api/v1/admin/shutdown")
    async def admin_shutdown(payload: ShutdownRequest, request: Request) -> dict[str, Any]:
        auth_info = await auth(request)
        logger.warning(f"收到远程关闭请求: by={auth_info['user']}, reason={payload.reason}")
        control.shutdown_event.set()
        return {"ok": True, "action": "shutdown", "reason": payload.reason}

    return app
