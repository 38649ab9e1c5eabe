"""Resilient step fetch with a single refresh-and-retry on auth failure.

State machine for one call::

    IDLE ─► FETCHING ─┬─► SUCCESS
                      ├─► TRANSIENT_ERROR              (provider / network)
                      └─► REFRESHING ─┬─► SESSION_EXPIRED   (no refresh token,
                          (401)       │                      refresh denied)
                                      ├─► TRANSIENT_ERROR   (refreshed token
                                      │                      not saved)
                                      └─► RETRYING ─┬─► SUCCESS
                                                    ├─► TRANSIENT_ERROR
                                                    └─► SESSION_EXPIRED (401 again)

A 401 on the retry is terminal, so a call makes at most two fetches and
one refresh.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from enum import Enum

from steptrack.steps.base import StepDataFetcher, TokenProvider, User
from steptrack.steps.config_loader import get_sync_config
from steptrack.steps.errors import (
    FetchError,
    NoCredential,
    RefreshDenied,
    SessionExpired,
    StepSyncError,
    TransientError,
    Unauthorized,
)
from steptrack.steps.storage.base import UserDirectory
from steptrack.steps.windows import today_window, yesterday_window

logger = logging.getLogger("steptrack.steps.sync.orchestrator")


class FetchState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    REFRESHING = "refreshing"
    RETRYING = "retrying"
    SUCCESS = "success"
    SESSION_EXPIRED = "session_expired"
    TRANSIENT_ERROR = "transient_error"


_TERMINAL = {FetchState.SUCCESS, FetchState.SESSION_EXPIRED, FetchState.TRANSIENT_ERROR}


@dataclass
class FetchAttempt:
    """Trace of one orchestrated fetch.

    Attributes:
        user_id:   User being fetched for.
        state:     Current (finally: terminal) state.
        history:   Every state visited, in order, starting with IDLE.
        fetches:   Number of provider fetch calls made.
        refreshed: True if a new access token was obtained and saved.
        steps:     Step count on SUCCESS.
        error:     SessionExpired / TransientError on failure.
    """

    user_id: object
    state: FetchState = FetchState.IDLE
    history: list[FetchState] = field(default_factory=lambda: [FetchState.IDLE])
    fetches: int = 0
    refreshed: bool = False
    steps: int | None = None
    error: StepSyncError | None = None

    @property
    def done(self) -> bool:
        return self.state in _TERMINAL

    def advance(self, state: FetchState) -> None:
        if self.done:
            raise RuntimeError(f"Fetch already finished in state {self.state.value}")
        self.state = state
        self.history.append(state)

    def succeed(self, steps: int) -> FetchAttempt:
        self.steps = steps
        self.advance(FetchState.SUCCESS)
        return self

    def fail(self, error: StepSyncError, cause: BaseException | None = None) -> FetchAttempt:
        error.__cause__ = cause
        self.error = error
        if isinstance(error, SessionExpired):
            self.advance(FetchState.SESSION_EXPIRED)
        else:
            self.advance(FetchState.TRANSIENT_ERROR)
        return self


class FetchOrchestrator:
    """Fetch steps for a user, renewing the access token once if needed.

    Usage::

        orchestrator = FetchOrchestrator(GoogleTokenProvider(), GoogleFitFetcher(), storage.users)
        steps = await orchestrator.fetch_yesterday(user)
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        fetcher: StepDataFetcher,
        users: UserDirectory,
        tz: tzinfo | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            token_provider: Reads and refreshes access tokens.
            fetcher:        Provider step-count client.
            users:          Where refreshed credentials are persisted.
            tz:             Zone for the today / yesterday windows.
        """
        self._tokens = token_provider
        self._fetcher = fetcher
        self._users = users
        self._tz = tz

    @property
    def tz(self) -> tzinfo:
        return self._tz or get_sync_config().schedule.tz

    async def fetch_with_auto_refresh(
        self, user: User, start: datetime, end: datetime
    ) -> int:
        """Return the user's steps in ``[start, end)``.

        On success after a refresh, ``user`` carries the new access token and
        the same token has been saved to the user directory.

        Raises:
            SessionExpired: No usable credential; the user must log in again.
            TransientError: Provider or network failure, or the refreshed
                            token could not be saved.
        """
        attempt = await self.run(user, start, end)
        if attempt.error is not None:
            raise attempt.error
        return attempt.steps or 0

    async def fetch_today(self, user: User, now: datetime | None = None) -> int:
        """Steps from local midnight today until the next local midnight."""
        start, end = today_window(self.tz, now)
        return await self.fetch_with_auto_refresh(user, start, end)

    async def fetch_yesterday(self, user: User, now: datetime | None = None) -> int:
        """Steps for the whole of yesterday."""
        start, end = yesterday_window(self.tz, now)
        return await self.fetch_with_auto_refresh(user, start, end)

    async def run(self, user: User, start: datetime, end: datetime) -> FetchAttempt:
        """Drive the state machine to a terminal state and return its trace."""
        attempt = FetchAttempt(user_id=user.user_id)

        try:
            access_token = self._tokens.current_access_token(user)
        except NoCredential as exc:
            logger.warning("User %s has no access token", user.user_id)
            return attempt.fail(
                SessionExpired("No Google access token. Please log in again."), exc
            )

        attempt.advance(FetchState.FETCHING)
        while not attempt.done:
            try:
                attempt.fetches += 1
                steps = await self._fetcher.fetch_steps(access_token, start, end)
            except Unauthorized as exc:
                if attempt.state is FetchState.RETRYING:
                    logger.error(
                        "Fresh access token rejected for user %s; giving up",
                        user.user_id,
                    )
                    attempt.fail(
                        SessionExpired("Session expired. Please log out and log in again."),
                        exc,
                    )
                    break
                attempt.advance(FetchState.REFRESHING)
                renewed = await self._refresh(user, attempt, exc)
                if renewed is None:
                    break
                access_token = renewed
                attempt.advance(FetchState.RETRYING)
            except FetchError as exc:
                logger.warning(
                    "%s fetch failed for user %s (%s): %s",
                    self._fetcher.SOURCE_ID,
                    user.user_id,
                    exc.kind,
                    exc,
                )
                attempt.fail(TransientError(str(exc)), exc)
            else:
                attempt.succeed(steps)

        logger.debug(
            "Fetch for user %s: %s",
            user.user_id,
            " → ".join(s.value for s in attempt.history),
        )
        return attempt

    async def _refresh(
        self, user: User, attempt: FetchAttempt, unauthorized: Unauthorized
    ) -> str | None:
        """Obtain and persist a new access token, or fail the attempt."""
        if not user.has_refresh_token:
            logger.warning(
                "User %s has an expired access token and no refresh token", user.user_id
            )
            attempt.fail(
                SessionExpired("Session expired. Please log out and log in again."),
                unauthorized,
            )
            return None

        logger.info(
            "Attempting %s token refresh for user %s", self._tokens.SOURCE_ID, user.user_id
        )
        try:
            tokens = await self._tokens.refresh(user.refresh_token)
        except RefreshDenied as exc:
            logger.error("Failed to refresh token for user %s: %s", user.user_id, exc)
            attempt.fail(
                SessionExpired("Failed to refresh token. Please log in again."), exc
            )
            return None

        user.apply_tokens(tokens)
        try:
            await self._users.save(user)
        except Exception as exc:
            logger.exception(
                "Could not persist refreshed token for user %s", user.user_id
            )
            attempt.fail(
                TransientError(f"Failed to save refreshed credentials: {exc}"), exc
            )
            return None
        attempt.refreshed = True
        logger.info("Token refreshed successfully for user %s", user.user_id)
        return tokens.access_token
