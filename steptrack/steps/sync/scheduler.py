"""Nightly Google Fit step sync.

Once a day, at the wall-clock time configured in ``sync_config.yaml``
(00:00 by default), the scheduler:

1. Selects every user holding a refresh token (others are skipped).
2. For each user, one at a time:
   a. fetches yesterday's steps through the FetchOrchestrator,
   b. reconciles them into yesterday's record.
3. Logs and counts each user's failure without stopping the run.
4. Returns a SyncSummary of succeeded vs failed users.

Users are processed sequentially: provider rate limits are per credential,
and one slow or failing user never affects the others' results.  Re-running
a day is safe because the reconciler upserts.
"""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from steptrack.steps.base import DailyStepRecord, SyncSummary, User, UserSyncResult, utc_now
from steptrack.steps.config_loader import ScheduleConfig, get_sync_config
from steptrack.steps.errors import NoCredential, SessionExpired, StepSyncError
from steptrack.steps.reconciler import DailyRecordReconciler
from steptrack.steps.storage.base import StepStorage
from steptrack.steps.sync.orchestrator import FetchOrchestrator

logger = logging.getLogger("steptrack.steps.sync.scheduler")


class StepSyncScheduler:
    """Run the daily step sync on a cron trigger, or on demand.

    One long-lived instance per process, started and stopped explicitly::

        scheduler = StepSyncScheduler(storage, orchestrator, reconciler)
        scheduler.start()          # inside a running event loop
        ...
        scheduler.stop()

    ``run_daily_sync`` and ``sync_one_user`` work whether or not the
    timer is running.
    """

    JOB_ID = "daily_step_sync"

    def __init__(
        self,
        storage: StepStorage,
        orchestrator: FetchOrchestrator,
        reconciler: DailyRecordReconciler,
        schedule: ScheduleConfig | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            storage:      Source of eligible users.
            orchestrator: Fetches steps with auto refresh.
            reconciler:   Writes records and totals.
            schedule:     Trigger time and zone (defaults to sync_config.yaml).
        """
        self._storage = storage
        self._orchestrator = orchestrator
        self._reconciler = reconciler
        self._schedule = schedule or get_sync_config().schedule
        self._scheduler: AsyncIOScheduler | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Register the daily cron job and start the timer (idempotent)."""
        if self.running:
            logger.debug("StepSyncScheduler already running")
            return

        tz = self._schedule.tz
        scheduler = AsyncIOScheduler(timezone=tz)
        scheduler.add_job(
            self.run_daily_sync,
            trigger=CronTrigger(
                hour=self._schedule.hour, minute=self._schedule.minute, timezone=tz
            ),
            id=self.JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self._schedule.misfire_grace_seconds,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "StepSyncScheduler started: daily at %02d:%02d %s",
            self._schedule.hour,
            self._schedule.minute,
            self._schedule.timezone,
        )

    def stop(self) -> None:
        """Stop the timer; an in-flight run is not awaited (idempotent)."""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("StepSyncScheduler stopped")

    def next_run_time(self) -> datetime | None:
        if not self.running:
            return None
        job = self._scheduler.get_job(self.JOB_ID)
        return job.next_run_time if job else None

    # ------------------------------------------------------------------
    # Sync entry points
    # ------------------------------------------------------------------

    async def run_daily_sync(self) -> SyncSummary:
        """Sync yesterday's steps for every user with Google Fit connected.

        Returns:
            SyncSummary with one UserSyncResult per eligible user.
        """
        summary = SyncSummary()
        logger.info("Starting daily step sync for all users")

        users = await self._storage.users.find_users_with_refresh_credential()
        logger.info("Found %d users with Google Fit connected", len(users))
        if not users:
            logger.warning("No users with Google Fit to sync")

        for user in users:
            summary.results.append(await self._sync_isolated(user))

        summary.finished_at = utc_now()
        logger.info(
            "Daily step sync completed: %d succeeded, %d failed",
            summary.succeeded,
            summary.failed,
        )
        return summary

    async def sync_one_user(self, user_id: UUID) -> UserSyncResult:
        """Sync yesterday's steps for one user on demand.

        Errors propagate so the caller can tell the user why.

        Raises:
            NotFound:       Unknown user.
            NoCredential:   The user never connected Google Fit.
            SessionExpired: The user must log in again.
            TransientError: Provider or network failure.
        """
        user = await self._storage.users.find_one(user_id)
        if not user.has_refresh_token:
            raise NoCredential("User does not have Google Fit connected")
        logger.info("Manual sync for user %s", user.user_id)
        return await self._sync_user(user)

    async def sync_today(self, user_id: UUID) -> DailyStepRecord:
        """Pull today's steps so far into today's record (manual "sync now").

        Raises:
            NotFound:       Unknown user.
            SessionExpired: No usable Google credential.
            TransientError: Provider or network failure.
        """
        user = await self._storage.users.find_one(user_id)
        now = datetime.now(self._reconciler.tz)
        steps = await self._orchestrator.fetch_today(user, now)
        return await self._reconciler.record_manual_steps(user.user_id, steps, now)

    # ------------------------------------------------------------------
    # Per-user work
    # ------------------------------------------------------------------

    async def _sync_user(self, user: User) -> UserSyncResult:
        now = datetime.now(self._reconciler.tz)
        steps = await self._orchestrator.fetch_yesterday(user, now)
        logger.debug("Fetched %d steps for user %s", steps, user.user_id)
        record = await self._reconciler.record_synced_steps(user.user_id, steps, now)
        logger.info("Synced %d steps for user %s on %s", steps, user.user_id, record.day)
        return UserSyncResult(user_id=user.user_id, steps=steps, record_date=record.day)

    async def _sync_isolated(self, user: User) -> UserSyncResult:
        """Run ``_sync_user`` and turn any failure into a failed result."""
        try:
            return await self._sync_user(user)
        except SessionExpired as exc:
            logger.error(
                "Failed to sync steps for user %s (%s): %s; user must re-authenticate",
                user.user_id, exc.kind, exc,
            )
            return _failed(user, exc.kind, exc)
        except StepSyncError as exc:
            logger.error(
                "Failed to sync steps for user %s (%s): %s", user.user_id, exc.kind, exc
            )
            return _failed(user, exc.kind, exc)
        except Exception as exc:
            logger.exception("Unexpected error syncing steps for user %s", user.user_id)
            return _failed(user, "unexpected", exc)


def _failed(user: User, kind: str, exc: BaseException) -> UserSyncResult:
    return UserSyncResult(
        user_id=user.user_id, status="failed", error_kind=kind, error=str(exc)
    )
