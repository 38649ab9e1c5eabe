"""PostgreSQL step storage on asyncpg.

Tables are described in ``schema.sql`` next to this module.  Uniqueness of
(user_id, day) is enforced by a UNIQUE constraint, and record writes are
idempotent ``INSERT ... ON CONFLICT DO UPDATE`` upserts.

A per-user transaction runs on one pooled connection and starts with
``SELECT ... FOR UPDATE`` on the user row, so concurrent reconciliations for
the same user queue behind each other while other users proceed.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator
from uuid import UUID

import asyncpg

from steptrack.steps.base import DailyStepRecord, User
from steptrack.steps.errors import NotFound
from steptrack.steps.storage.base import StepRecordStore, StepStorage, UserDirectory

logger = logging.getLogger("steptrack.steps.storage.postgres")

_USER_COLUMNS = [
    "user_id", "name", "email", "external_id", "access_token", "refresh_token", "total_steps",
]
_RECORD_COLUMNS = ["record_id", "user_id", "day", "steps"]

_LOCK_USER = "SELECT user_id FROM users WHERE user_id = $1 FOR UPDATE"


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
    returning: str | None = "*",
) -> str:
    """Build the INSERT ... ON CONFLICT statement behind user and day-record saves.

    A day record is keyed by ``(user_id, day)``, so saving the same day again
    rewrites its step count in place and keeps the original ``record_id``.
    Every rewrite bumps ``updated_at``.  Columns left out of ``update_columns``
    (``users.total_steps``, say) are written on insert only.

    Args:
        table:            Target table name.
        columns:          All columns to insert.
        conflict_columns: Columns that define the UNIQUE constraint.
        update_columns:   Columns to update on conflict (defaults to non-key columns).
        returning:        RETURNING clause body, or None to omit it.

    Returns:
        Parameterized SQL string.
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]

    placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        update_set = ", ".join(f"{col} = EXCLUDED.{col}" for col in update_columns)
        update_set += ", updated_at = NOW()"
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        do_clause = "DO NOTHING"

    query = (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )
    if returning:
        query += f" RETURNING {returning}"
    return query


# total_steps is inserted for new users but never overwritten by save()
_UPSERT_USER = build_upsert_query(
    "users",
    _USER_COLUMNS,
    ["user_id"],
    update_columns=["name", "email", "external_id", "access_token", "refresh_token"],
)
_UPSERT_RECORD = build_upsert_query(
    "step_records", _RECORD_COLUMNS, ["user_id", "day"], update_columns=["steps"]
)


def _row_to_user(row: Any) -> User:
    data = dict(row)
    return User(**{k: data[k] for k in _USER_COLUMNS})


def _row_to_record(row: Any) -> DailyStepRecord:
    data = dict(row)
    return DailyStepRecord(
        record_id=data["record_id"],
        user_id=data["user_id"],
        day=data["day"],
        steps=data["steps"],
        updated_at=data["updated_at"],
    )


class PostgresUserDirectory(UserDirectory):
    """UserDirectory over an asyncpg pool or a single (transactional) connection."""

    def __init__(self, conn: asyncpg.Pool | asyncpg.Connection) -> None:
        self._conn = conn

    async def find_one(self, user_id: UUID) -> User:
        row = await self._conn.fetchrow("SELECT * FROM users WHERE user_id = $1", user_id)
        if row is None:
            raise NotFound(f"User with ID {user_id} not found")
        return _row_to_user(row)

    async def find_by_email(self, email: str) -> User | None:
        row = await self._conn.fetchrow("SELECT * FROM users WHERE email = $1", email)
        return _row_to_user(row) if row else None

    async def find_by_external_id(self, external_id: str) -> User | None:
        row = await self._conn.fetchrow(
            "SELECT * FROM users WHERE external_id = $1", external_id
        )
        return _row_to_user(row) if row else None

    async def find_users_with_refresh_credential(self) -> list[User]:
        rows = await self._conn.fetch(
            "SELECT * FROM users "
            "WHERE refresh_token IS NOT NULL AND refresh_token <> '' "
            "ORDER BY name"
        )
        return [_row_to_user(r) for r in rows]

    async def save(self, user: User) -> User:
        try:
            row = await self._conn.fetchrow(
                _UPSERT_USER, *(getattr(user, c) for c in _USER_COLUMNS)
            )
        except asyncpg.UniqueViolationError as exc:
            raise ValueError(f"Email or external account already in use: {exc}") from exc
        return _row_to_user(row)

    async def add_to_total(self, user_id: UUID, delta: int) -> User:
        row = await self._conn.fetchrow(
            "UPDATE users SET total_steps = total_steps + $2, updated_at = NOW() "
            "WHERE user_id = $1 RETURNING *",
            user_id,
            delta,
        )
        if row is None:
            raise NotFound(f"User with ID {user_id} not found")
        user = _row_to_user(row)
        if user.total_steps < 0:
            logger.warning(
                "Total for user %s went negative (%d); run recompute_total",
                user_id, user.total_steps,
            )
        return user

    async def recompute_total(self, user_id: UUID) -> User:
        row = await self._conn.fetchrow(
            """
            UPDATE users
               SET total_steps = (
                       SELECT COALESCE(SUM(steps), 0) FROM step_records WHERE user_id = $1
                   ),
                   updated_at = NOW()
             WHERE user_id = $1
            RETURNING *
            """,
            user_id,
        )
        if row is None:
            raise NotFound(f"User with ID {user_id} not found")
        return _row_to_user(row)

    async def leaderboard(self, limit: int = 100) -> list[User]:
        rows = await self._conn.fetch(
            "SELECT * FROM users ORDER BY total_steps DESC, name ASC LIMIT $1", limit
        )
        return [_row_to_user(r) for r in rows]


class PostgresStepRecordStore(StepRecordStore):
    def __init__(self, conn: asyncpg.Pool | asyncpg.Connection) -> None:
        self._conn = conn

    async def find_by_user_and_date(
        self, user_id: UUID, day: date
    ) -> DailyStepRecord | None:
        row = await self._conn.fetchrow(
            "SELECT * FROM step_records WHERE user_id = $1 AND day = $2", user_id, day
        )
        return _row_to_record(row) if row else None

    async def save(self, record: DailyStepRecord) -> DailyStepRecord:
        row = await self._conn.fetchrow(
            _UPSERT_RECORD, *(getattr(record, c) for c in _RECORD_COLUMNS)
        )
        return _row_to_record(row)

    async def find_all_by_user(self, user_id: UUID) -> list[DailyStepRecord]:
        rows = await self._conn.fetch(
            "SELECT * FROM step_records WHERE user_id = $1 ORDER BY day DESC", user_id
        )
        return [_row_to_record(r) for r in rows]


class PostgresStepStorage(StepStorage):
    """StepStorage backed by an asyncpg pool.

    Usage::

        pool = await init_pool(settings)
        storage = PostgresStepStorage(pool)
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool
        self.users = PostgresUserDirectory(pool)
        self.records = PostgresStepRecordStore(pool)

    @asynccontextmanager
    async def transaction(self, user_id: UUID) -> AsyncIterator[StepStorage]:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(_LOCK_USER, user_id)
                yield _PostgresSession(conn)


class _PostgresSession(StepStorage):
    """Storage bound to one connection inside an open transaction."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn
        self.users = PostgresUserDirectory(conn)
        self.records = PostgresStepRecordStore(conn)

    @asynccontextmanager
    async def transaction(self, user_id: UUID) -> AsyncIterator[StepStorage]:
        await self._conn.execute(_LOCK_USER, user_id)
        yield self
