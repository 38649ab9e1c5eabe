"""User profile, Google account linking, and total repair endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, HTTPException

from steptrack.dependencies import Services, http_error
from steptrack.models.base import ErrorDetail
from steptrack.models.steps import GoogleAccountLink, UserCreate, UserRead
from steptrack.steps.accounts import link_google_account, provision_user
from steptrack.steps.base import OAuthTokens, User
from steptrack.steps.errors import StepSyncError

router = APIRouter(prefix="/users", tags=["users"])


def _to_read(user: User) -> UserRead:
    return UserRead(
        user_id=user.user_id,
        name=user.name,
        email=user.email,
        total_steps=user.total_steps,
        google_connected=user.has_refresh_token,
    )


@router.post(
    "",
    response_model=UserRead,
    status_code=201,
    responses={409: {"model": ErrorDetail}},
)
async def create_user(body: UserCreate, services: Services) -> UserRead:
    tokens = None
    if body.google_access_token:
        tokens = OAuthTokens(
            access_token=body.google_access_token,
            refresh_token=body.google_refresh_token,
        )
    try:
        user = await provision_user(services.storage.users, body.name, body.email, tokens)
    except StepSyncError as exc:
        raise http_error(exc) from exc
    return _to_read(user)


@router.get("/{user_id}", response_model=UserRead, responses={404: {"model": ErrorDetail}})
async def get_user(user_id: uuid.UUID, services: Services) -> UserRead:
    try:
        user = await services.storage.users.find_one(user_id)
    except StepSyncError as exc:
        raise http_error(exc) from exc
    return _to_read(user)


@router.post("/google", response_model=UserRead, responses={409: {"model": ErrorDetail}})
async def link_google(body: GoogleAccountLink, services: Services) -> UserRead:
    """Store the outcome of a Google login (called by the auth service)."""
    tokens = OAuthTokens(access_token=body.access_token, refresh_token=body.refresh_token)
    try:
        user = await link_google_account(
            services.storage.users,
            external_id=body.external_id,
            email=body.email,
            name=body.name,
            tokens=tokens,
        )
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _to_read(user)


@router.post(
    "/{user_id}/recompute-total",
    response_model=UserRead,
    responses={404: {"model": ErrorDetail}},
)
async def recompute_total(user_id: uuid.UUID, services: Services) -> UserRead:
    """Repair a drifted running total from the user's daily records."""
    try:
        user = await services.reconciler.repair_total(user_id)
    except StepSyncError as exc:
        raise http_error(exc) from exc
    return _to_read(user)
