"""Pydantic request/response schemas for steps, sync runs and the leaderboard."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from pydantic import Field

from steptrack.models.base import SteptrackBase


# ---------- Step records ----------

class StepEntryCreate(SteptrackBase):
    user_id: uuid.UUID
    steps: int = Field(ge=0, le=1_000_000)


class StepRecordRead(SteptrackBase):
    record_id: uuid.UUID
    user_id: uuid.UUID
    day: date
    steps: int
    updated_at: datetime


# ---------- Users ----------

class UserRead(SteptrackBase):
    """Public view of a user; credentials are never serialized."""

    user_id: uuid.UUID
    name: str
    email: str
    total_steps: int
    google_connected: bool = False


class LeaderboardEntry(SteptrackBase):
    rank: int
    user_id: uuid.UUID
    name: str
    total_steps: int


class UserCreate(SteptrackBase):
    """Explicit registration; Google tokens may be attached later by login."""

    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=320)
    google_access_token: str | None = None
    google_refresh_token: str | None = None


class GoogleAccountLink(SteptrackBase):
    """Result of a completed Google login, posted by the auth service."""

    external_id: str = Field(min_length=1)
    email: str = Field(min_length=3, max_length=320)
    name: str = Field(min_length=1, max_length=200)
    access_token: str = Field(min_length=1)
    refresh_token: str | None = None


# ---------- Sync ----------

class UserSyncResultRead(SteptrackBase):
    user_id: uuid.UUID
    status: str
    steps: int | None = None
    record_date: date | None = None
    error_kind: str | None = None
    error: str | None = None


class SyncSummaryRead(SteptrackBase):
    succeeded: int
    failed: int
    started_at: datetime
    finished_at: datetime | None = None
    results: list[UserSyncResultRead] = Field(default_factory=list)
