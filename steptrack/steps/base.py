"""Base classes and canonical data models for the Steptrack sync core.

The provider interfaces (TokenProvider, StepDataFetcher) and the canonical
User / DailyStepRecord types defined here are shared by the storage
backends, the reconciler, the fetch orchestrator and the scheduler.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from uuid import UUID

from steptrack.steps.errors import NoCredential

logger = logging.getLogger("steptrack.steps")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# OAuth / Auth tokens
# ---------------------------------------------------------------------------


@dataclass
class OAuthTokens:
    """OAuth token pair returned after authentication or refresh.

    Attributes:
        access_token:  Bearer token for API calls.
        refresh_token: Long-lived token used to obtain a new access_token.
                       None when the provider did not issue a new one.
        expires_at:    UTC datetime when the access_token expires.
        token_type:    Token type, typically "Bearer".
        scope:         Granted OAuth scopes.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    scope: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Canonical models
# ---------------------------------------------------------------------------


@dataclass
class User:
    """A step-tracking user and their Google Fit credentials.

    Attributes:
        user_id:        Internal user UUID.
        name:           Display name.
        email:          Unique email address.
        external_id:    Google account id, unique when present.
        access_token:   Current Google access token.
        refresh_token:  Google refresh token; absent until the user grants
                        offline access.
        total_steps:    Running total across all daily records.
    """

    user_id: UUID
    name: str
    email: str
    external_id: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    total_steps: int = 0

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token)

    def apply_tokens(self, tokens: OAuthTokens) -> User:
        """Store freshly issued credentials on this user.

        The access token is always replaced.  The refresh token is only
        replaced when the provider issued a new one; an absent value never
        overwrites a stored refresh token.
        """
        self.access_token = tokens.access_token
        if tokens.refresh_token:
            self.refresh_token = tokens.refresh_token
        return self


@dataclass
class DailyStepRecord:
    """One user's step count for one calendar day.

    ``day`` carries no time of day; (user_id, day) is unique.
    """

    user_id: UUID
    day: date
    steps: int
    record_id: UUID = field(default_factory=uuid.uuid4)
    updated_at: datetime = field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Sync results
# ---------------------------------------------------------------------------


@dataclass
class UserSyncResult:
    """Outcome of syncing one user.

    Attributes:
        user_id:      Internal user UUID.
        status:       'success' or 'failed'.
        steps:        Steps written, when successful.
        record_date:  Calendar day the steps were recorded against.
        error_kind:   StepSyncError.kind (or 'unexpected') when failed.
        error:        Error message when failed.
    """

    user_id: UUID
    status: str = "success"
    steps: int | None = None
    record_date: date | None = None
    error_kind: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


@dataclass
class SyncSummary:
    """Result of one batch run over every eligible user."""

    results: list[UserSyncResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    def as_dict(self) -> dict[str, int]:
        return {"succeeded": self.succeeded, "failed": self.failed}


# ---------------------------------------------------------------------------
# Provider interfaces
# ---------------------------------------------------------------------------


class TokenProvider(ABC):
    """Reads and renews a user's access credential.

    Stateless with respect to storage: callers persist whatever
    ``refresh`` returns.
    """

    #: Provider slug used in log lines.
    SOURCE_ID: str = "unknown"

    def current_access_token(self, user: User) -> str:
        """Return the stored access token.

        Raises:
            NoCredential: If the user never completed external authorization.
        """
        if not user.access_token:
            raise NoCredential(f"User {user.user_id} has no access token")
        return user.access_token

    @abstractmethod
    async def refresh(self, refresh_token: str | None) -> OAuthTokens:
        """Exchange a refresh token for a new access token.

        Raises:
            RefreshDenied: If the token is absent or the provider rejects it.
        """


class StepDataFetcher(ABC):
    """Queries an external API for aggregate step counts."""

    SOURCE_ID: str = "unknown"

    @abstractmethod
    async def fetch_steps(
        self, access_token: str, start: datetime, end: datetime
    ) -> int:
        """Return the total steps in ``[start, end)``.

        Raises:
            Unauthorized:  The access token is no longer valid.
            ProviderError: Any other non-2xx provider answer.
            NetworkError:  Timeout or transport failure.
        """

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _safe_int(value: object) -> int:
        """Coerce a value to int, treating anything unusable as zero."""
        if value is None or isinstance(value, bool):
            return 0
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-integer step value: %r", value)
            return 0
