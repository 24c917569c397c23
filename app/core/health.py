from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from app.core.settings import settings
from app.db.session import engine
from app.services.storage.service import check_storage

APP_VERSION = "1.0.0"


async def _check_db() -> dict[str, str]:
    try:
        async with engine.connect() as conn:  # type: AsyncConnection
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:  # pragma: no cover - exercised in runtime
        return {"status": "error", "error": str(exc)}


async def _check_storage() -> dict[str, Any]:
    return await check_storage()


def _overall_status(checks: dict[str, dict[str, Any]]) -> tuple[str, bool]:
    ready = all(check.get("status") == "ok" for check in checks.values())
    return ("ok" if ready else "degraded", ready)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


async def live_payload() -> dict[str, str]:
    return {
        "status": "ok",
        "timestamp": _timestamp(),
    }


async def ready_payload() -> dict[str, Any]:
    checks = {
        "database": await _check_db(),
        "storage": await _check_storage(),
    }
    overall, ready = _overall_status(checks)
    return {
        "status": overall,
        "ready": ready,
        "environment": settings.environment,
        "timestamp": _timestamp(),
        "checks": checks,
    }


async def health_payload() -> dict[str, Any]:
    services = {
        "database": await _check_db(),
        "storage": await _check_storage(),
    }
    overall, _ = _overall_status(services)
    return {
        "status": overall,
        "timestamp": _timestamp(),
        "services": services,
        "environment": settings.environment,
        "version": APP_VERSION,
    }
