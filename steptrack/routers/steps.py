"""Step entry, step history, and manual "sync today" endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter

from steptrack.dependencies import Services, http_error
from steptrack.models.base import ErrorDetail
from steptrack.models.steps import StepEntryCreate, StepRecordRead
from steptrack.steps.errors import StepSyncError

router = APIRouter(prefix="/steps", tags=["steps"])


@router.post(
    "",
    response_model=StepRecordRead,
    status_code=201,
    responses={404: {"model": ErrorDetail}},
)
async def create_step_entry(body: StepEntryCreate, services: Services) -> StepRecordRead:
    """Record today's step count entered by hand (replaces today's value)."""
    try:
        record = await services.reconciler.record_manual_steps(body.user_id, body.steps)
    except StepSyncError as exc:
        raise http_error(exc) from exc
    return StepRecordRead.model_validate(record)


@router.get(
    "/{user_id}",
    response_model=list[StepRecordRead],
    responses={404: {"model": ErrorDetail}},
)
async def list_step_history(user_id: uuid.UUID, services: Services) -> list[StepRecordRead]:
    try:
        records = await services.reconciler.history(user_id)
    except StepSyncError as exc:
        raise http_error(exc) from exc
    return [StepRecordRead.model_validate(r) for r in records]


@router.put(
    "/sync/{user_id}",
    response_model=StepRecordRead,
    responses={
        401: {"model": ErrorDetail},
        404: {"model": ErrorDetail},
        502: {"model": ErrorDetail},
    },
)
async def sync_today_from_google_fit(
    user_id: uuid.UUID, services: Services
) -> StepRecordRead:
    """Pull today's steps from Google Fit into today's record."""
    try:
        record = await services.scheduler.sync_today(user_id)
    except StepSyncError as exc:
        raise http_error(exc) from exc
    return StepRecordRead.model_validate(record)
