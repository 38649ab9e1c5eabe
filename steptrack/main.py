"""Steptrack API: FastAPI application entry point.

Run locally:
    uvicorn steptrack.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from steptrack.config import Settings, get_settings
from steptrack.dependencies import StepServices
from steptrack.routers import health, leaderboard, steps, sync, users
from steptrack.services.database import close_pool, init_pool
from steptrack.steps.providers import GoogleFitFetcher, GoogleTokenProvider
from steptrack.steps.reconciler import DailyRecordReconciler
from steptrack.steps.storage import MemoryStepStorage, PostgresStepStorage, StepStorage
from steptrack.steps.sync.orchestrator import FetchOrchestrator
from steptrack.steps.sync.scheduler import StepSyncScheduler

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("steptrack")


# ---------- Wiring ----------

def build_services(
    storage: StepStorage,
    http_client: httpx.AsyncClient | None = None,
) -> StepServices:
    """Assemble the sync core around a storage backend."""
    orchestrator = FetchOrchestrator(
        GoogleTokenProvider(http_client=http_client),
        GoogleFitFetcher(http_client=http_client),
        storage.users,
    )
    reconciler = DailyRecordReconciler(storage)
    scheduler = StepSyncScheduler(storage, orchestrator, reconciler)
    return StepServices(
        storage=storage,
        orchestrator=orchestrator,
        reconciler=reconciler,
        scheduler=scheduler,
    )


async def _open_storage(settings: Settings) -> StepStorage:
    if settings.storage_backend == "memory":
        logger.warning("Using in-memory step storage; data is lost on restart")
        return MemoryStepStorage()
    if settings.storage_backend != "postgres":
        raise ValueError(f"Unknown STORAGE_BACKEND {settings.storage_backend!r}")
    return PostgresStepStorage(await init_pool(settings))


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting Steptrack API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    storage = await _open_storage(settings)
    http_client = httpx.AsyncClient()
    services = build_services(storage, http_client)
    app.state.services = services

    if settings.scheduler_enabled:
        services.scheduler.start()
    else:
        logger.info("Daily step sync timer disabled (SCHEDULER_ENABLED=false)")

    try:
        yield
    finally:
        services.scheduler.stop()
        await http_client.aclose()
        if settings.storage_backend == "postgres":
            await close_pool()
        logger.info("Steptrack API shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Steptrack API",
        description=(
            "Daily step tracking with nightly Google Fit sync, "
            "manual entry, and a step leaderboard."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Error-Kind"],
    )

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(users.router, prefix=v1_prefix)
    app.include_router(steps.router, prefix=v1_prefix)
    app.include_router(sync.router, prefix=v1_prefix)
    app.include_router(leaderboard.router, prefix=v1_prefix)

    return app


app = create_app()
