"""Daily step record reconciliation.

Every step count, whether typed in by the user or pulled from Google Fit,
lands here.  The reconciler upserts the (user, day) record and moves the
user's running total by the difference between the new and the previously
stored count, all inside one per-user storage transaction:

    new record       → total += steps
    existing record  → total += steps - existing.steps   (may be negative)

Recomputing the total from scratch is a separate, explicit repair
operation (``repair_total``); it is never run as part of a normal write.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, timedelta, tzinfo
from uuid import UUID

from steptrack.steps.base import DailyStepRecord, User
from steptrack.steps.config_loader import get_sync_config
from steptrack.steps.storage.base import StepStorage
from steptrack.steps.windows import local_today, normalize_day

logger = logging.getLogger("steptrack.steps.reconciler")


class DailyRecordReconciler:
    """Upsert per-day step records and keep running totals consistent.

    Usage::

        reconciler = DailyRecordReconciler(storage)
        await reconciler.upsert_daily_record(user_id, date(2026, 2, 23), 10241)
    """

    def __init__(self, storage: StepStorage, tz: tzinfo | None = None) -> None:
        """Initialize the reconciler.

        Args:
            storage: Backend providing users, records and per-user transactions.
            tz:      Zone defining calendar days (defaults to sync_config.yaml).
        """
        self._storage = storage
        self._tz = tz

    @property
    def tz(self) -> tzinfo:
        return self._tz or get_sync_config().schedule.tz

    async def upsert_daily_record(
        self, user_id: UUID, day: date | datetime, steps: int
    ) -> DailyStepRecord:
        """Create or update the user's record for ``day``.

        Repeating the same call is a no-op for the total; changing the count
        moves the total by the difference only.

        Args:
            user_id: Internal user UUID.
            day:     Calendar date, or any timestamp during that day.
            steps:   Non-negative step count for the whole day.

        Returns:
            The stored DailyStepRecord.

        Raises:
            ValueError: If ``steps`` is negative or not an integer.
            NotFound:   If the user does not exist.
        """
        if isinstance(steps, bool) or not isinstance(steps, int):
            raise ValueError(f"steps must be an integer, got {steps!r}")
        if steps < 0:
            raise ValueError(f"steps must be non-negative, got {steps}")

        record_day = normalize_day(day, self.tz)

        async with self._storage.transaction(user_id) as tx:
            await tx.users.find_one(user_id)
            existing = await tx.records.find_by_user_and_date(user_id, record_day)

            if existing is None:
                delta = steps
                record = DailyStepRecord(user_id=user_id, day=record_day, steps=steps)
            else:
                delta = steps - existing.steps
                record = replace(existing, steps=steps)

            saved = await tx.records.save(record)
            if delta:
                await tx.users.add_to_total(user_id, delta)

        logger.info(
            "Reconciled %d steps for user %s on %s (%s, delta %+d)",
            steps,
            user_id,
            record_day,
            "new" if existing is None else "update",
            delta,
        )
        return saved

    async def record_manual_steps(
        self, user_id: UUID, steps: int, now: datetime | None = None
    ) -> DailyStepRecord:
        """Manual entry always targets today."""
        return await self.upsert_daily_record(user_id, local_today(self.tz, now), steps)

    async def record_synced_steps(
        self, user_id: UUID, steps: int, now: datetime | None = None
    ) -> DailyStepRecord:
        """The nightly sync records the day that just finished.

        Pass the same ``now`` used for the fetch window so both agree on
        which day "yesterday" is.
        """
        yesterday = local_today(self.tz, now) - timedelta(days=1)
        return await self.upsert_daily_record(user_id, yesterday, steps)

    async def repair_total(self, user_id: UUID) -> User:
        """Recompute the user's total from their daily records.

        Use when incremental bookkeeping is suspected to have drifted.

        Raises:
            NotFound: If the user does not exist.
        """
        async with self._storage.transaction(user_id) as tx:
            before = await tx.users.find_one(user_id)
            user = await tx.users.recompute_total(user_id)

        if before.total_steps != user.total_steps:
            logger.warning(
                "Repaired drifted total for user %s: %d → %d",
                user_id,
                before.total_steps,
                user.total_steps,
            )
        else:
            logger.info("Total for user %s verified at %d", user_id, user.total_steps)
        return user

    async def history(self, user_id: UUID) -> list[DailyStepRecord]:
        """All of the user's records, newest first.

        Raises:
            NotFound: If the user does not exist.
        """
        await self._storage.users.find_one(user_id)
        return await self._storage.records.find_all_by_user(user_id)
