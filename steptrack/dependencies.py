"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from steptrack.steps.errors import (
    Conflict,
    NoCredential,
    NotFound,
    SessionExpired,
    StepSyncError,
    TransientError,
)
from steptrack.steps.reconciler import DailyRecordReconciler
from steptrack.steps.storage.base import StepStorage
from steptrack.steps.sync.orchestrator import FetchOrchestrator
from steptrack.steps.sync.scheduler import StepSyncScheduler


@dataclass(frozen=True)
class StepServices:
    """The wired sync core, built once in the app lifespan."""

    storage: StepStorage
    orchestrator: FetchOrchestrator
    reconciler: DailyRecordReconciler
    scheduler: StepSyncScheduler


async def get_services(request: Request) -> StepServices:
    """Return the services stored on ``app.state`` by the lifespan."""
    services: StepServices | None = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return services


_STATUS_BY_ERROR: list[tuple[type[StepSyncError], int, str | None]] = [
    (NotFound, 404, None),
    (Conflict, 409, None),
    (SessionExpired, 401, "Session expired. Please log out and log in again."),
    (NoCredential, 401, "Google Fit is not connected. Please log in with Google."),
    (TransientError, 502, None),
]


def http_error(exc: StepSyncError) -> HTTPException:
    """Map a core error to the HTTP status shown to the client.

    The error kind travels in the ``X-Error-Kind`` header so clients can
    tell an expired session (prompt re-login) from a transient failure.
    """
    headers = {"X-Error-Kind": exc.kind}
    for error_type, status, message in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(
                status_code=status, detail=message or str(exc), headers=headers
            )
    return HTTPException(status_code=500, detail=str(exc), headers=headers)


# Annotated shortcut for route signatures
Services = Annotated[StepServices, Depends(get_services)]
