"""In-process step storage.

Used for tests, local development (``STORAGE_BACKEND=memory``) and as the
reference behaviour for the PostgreSQL backend.  Objects handed out are
copies; nothing changes in the store until it is saved.

Per-user transactions hold an ``asyncio.Lock`` for that user and restore
the user's total and records if the body raises.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import date
from typing import AsyncIterator
from uuid import UUID

from steptrack.steps.base import DailyStepRecord, User, utc_now
from steptrack.steps.errors import NotFound
from steptrack.steps.storage.base import StepRecordStore, StepStorage, UserDirectory

logger = logging.getLogger("steptrack.steps.storage.memory")


class _MemoryState:
    def __init__(self) -> None:
        self.users: dict[UUID, User] = {}
        self.records: dict[tuple[UUID, date], DailyStepRecord] = {}
        self.locks: defaultdict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)


class MemoryUserDirectory(UserDirectory):
    def __init__(self, state: _MemoryState) -> None:
        self._state = state

    def _get(self, user_id: UUID) -> User:
        user = self._state.users.get(user_id)
        if user is None:
            raise NotFound(f"User with ID {user_id} not found")
        return user

    async def find_one(self, user_id: UUID) -> User:
        return replace(self._get(user_id))

    async def find_by_email(self, email: str) -> User | None:
        for user in self._state.users.values():
            if user.email == email:
                return replace(user)
        return None

    async def find_by_external_id(self, external_id: str) -> User | None:
        for user in self._state.users.values():
            if user.external_id == external_id:
                return replace(user)
        return None

    async def find_users_with_refresh_credential(self) -> list[User]:
        return [replace(u) for u in self._state.users.values() if u.has_refresh_token]

    async def save(self, user: User) -> User:
        for other in self._state.users.values():
            if other.user_id == user.user_id:
                continue
            if other.email == user.email:
                raise ValueError(f"User with email {user.email} already exists")
            if user.external_id and other.external_id == user.external_id:
                raise ValueError("External account is linked to another user")

        stored = replace(user)
        existing = self._state.users.get(user.user_id)
        if existing is not None:
            stored.total_steps = existing.total_steps
        self._state.users[user.user_id] = stored
        return replace(stored)

    async def add_to_total(self, user_id: UUID, delta: int) -> User:
        user = self._get(user_id)
        user.total_steps += delta
        if user.total_steps < 0:
            logger.warning(
                "Total for user %s went negative (%d); run recompute_total",
                user_id, user.total_steps,
            )
        return replace(user)

    async def recompute_total(self, user_id: UUID) -> User:
        user = self._get(user_id)
        user.total_steps = sum(
            r.steps for (uid, _), r in self._state.records.items() if uid == user_id
        )
        return replace(user)

    async def leaderboard(self, limit: int = 100) -> list[User]:
        ranked = sorted(
            self._state.users.values(), key=lambda u: (-u.total_steps, u.name)
        )
        return [replace(u) for u in ranked[:limit]]


class MemoryStepRecordStore(StepRecordStore):
    def __init__(self, state: _MemoryState) -> None:
        self._state = state

    async def find_by_user_and_date(
        self, user_id: UUID, day: date
    ) -> DailyStepRecord | None:
        record = self._state.records.get((user_id, day))
        return replace(record) if record else None

    async def save(self, record: DailyStepRecord) -> DailyStepRecord:
        key = (record.user_id, record.day)
        existing = self._state.records.get(key)
        stored = replace(record, updated_at=utc_now())
        if existing is not None:
            stored.record_id = existing.record_id
        self._state.records[key] = stored
        return replace(stored)

    async def find_all_by_user(self, user_id: UUID) -> list[DailyStepRecord]:
        mine = [replace(r) for (uid, _), r in self._state.records.items() if uid == user_id]
        return sorted(mine, key=lambda r: r.day, reverse=True)


class MemoryStepStorage(StepStorage):
    """Dict-backed StepStorage with per-user locking and rollback."""

    def __init__(self) -> None:
        self._state = _MemoryState()
        self.users = MemoryUserDirectory(self._state)
        self.records = MemoryStepRecordStore(self._state)

    @asynccontextmanager
    async def transaction(self, user_id: UUID) -> AsyncIterator[MemoryStepStorage]:
        async with self._state.locks[user_id]:
            user = self._state.users.get(user_id)
            saved_total = user.total_steps if user else None
            saved_records = {
                key: replace(r)
                for key, r in self._state.records.items()
                if key[0] == user_id
            }
            try:
                yield self
            except BaseException:
                self._rollback(user_id, saved_total, saved_records)
                raise

    def _rollback(
        self,
        user_id: UUID,
        saved_total: int | None,
        saved_records: dict[tuple[UUID, date], DailyStepRecord],
    ) -> None:
        logger.warning("Rolling back step transaction for user %s", user_id)
        user = self._state.users.get(user_id)
        if user is not None and saved_total is not None:
            user.total_steps = saved_total
        for key in [k for k in self._state.records if k[0] == user_id]:
            if key not in saved_records:
                del self._state.records[key]
        self._state.records.update(saved_records)
