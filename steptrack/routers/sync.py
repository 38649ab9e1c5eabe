"""Administrative sync triggers: whole batch run, one user, timer status."""

from __future__ import annotations

import dataclasses
import uuid
from typing import Any

from fastapi import APIRouter

from steptrack.dependencies import Services, http_error
from steptrack.models.base import ErrorDetail
from steptrack.models.steps import SyncSummaryRead, UserSyncResultRead
from steptrack.steps.errors import StepSyncError

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/run", response_model=SyncSummaryRead)
async def run_daily_sync(services: Services) -> SyncSummaryRead:
    """Run the nightly batch now (syncs yesterday for every connected user)."""
    summary = await services.scheduler.run_daily_sync()
    return SyncSummaryRead(
        succeeded=summary.succeeded,
        failed=summary.failed,
        started_at=summary.started_at,
        finished_at=summary.finished_at,
        results=[UserSyncResultRead(**dataclasses.asdict(r)) for r in summary.results],
    )


@router.post(
    "/users/{user_id}",
    response_model=UserSyncResultRead,
    responses={
        401: {"model": ErrorDetail},
        404: {"model": ErrorDetail},
        502: {"model": ErrorDetail},
    },
)
async def sync_one_user(user_id: uuid.UUID, services: Services) -> UserSyncResultRead:
    """Sync yesterday's steps for one user."""
    try:
        result = await services.scheduler.sync_one_user(user_id)
    except StepSyncError as exc:
        raise http_error(exc) from exc
    return UserSyncResultRead(**dataclasses.asdict(result))


@router.get("/status")
async def sync_status(services: Services) -> dict[str, Any]:
    next_run = services.scheduler.next_run_time()
    return {
        "running": services.scheduler.running,
        "next_run_time": next_run.isoformat() if next_run else None,
    }
