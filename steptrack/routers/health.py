"""Liveness and readiness probe. Public, no auth."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request, Response

from steptrack.config import Settings, get_settings
from steptrack.services.database import get_pool
from steptrack.steps.base import utc_now

router = APIRouter(tags=["system"])
logger = logging.getLogger("steptrack.health")


async def _storage_reachable(settings: Settings) -> bool:
    if settings.storage_backend == "memory":
        return True
    try:
        async with get_pool().acquire() as conn:
            await conn.fetchval("SELECT 1")
    except Exception as exc:
        logger.warning("Storage probe failed: %s", exc)
        return False
    return True


@router.get("/health")
async def health_check(request: Request, response: Response) -> dict[str, Any]:
    """Report process, storage and sync-timer state.

    Answers 503 until the lifespan has wired the services, so a load
    balancer holds traffic during startup.
    """
    settings = get_settings()
    services = getattr(request.app.state, "services", None)
    storage_ok = await _storage_reachable(settings)

    if services is None:
        status = "starting"
        response.status_code = 503
    else:
        status = "healthy" if storage_ok else "degraded"

    next_run = services.scheduler.next_run_time() if services else None
    return {
        "status": status,
        "version": settings.app_version,
        "environment": settings.environment,
        "storage": {
            "backend": settings.storage_backend,
            "reachable": storage_ok,
        },
        "sync_timer": {
            "running": bool(services and services.scheduler.running),
            "next_run_time": next_run.isoformat() if next_run else None,
        },
        "timestamp": utc_now().isoformat(),
    }
