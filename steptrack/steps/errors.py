"""Typed failures raised by the step sync and reconciliation core.

Propagation rules:
    Unauthorized   — recovered inside the fetch orchestrator (one refresh + retry).
    SessionExpired — terminal credential failure; the user must log in again.
    TransientError — provider or network fault; the next run fills the gap.
    everything else propagates to the caller unchanged.

``kind`` is a stable label used in log lines, sync results and the
``X-Error-Kind`` response header.
"""

from __future__ import annotations


class StepSyncError(Exception):
    """Base class for every error raised by the steps core."""

    kind: str = "step_sync_error"


class NoCredential(StepSyncError):
    """The user never completed the external authorization flow."""

    kind = "no_credential"


class RefreshDenied(StepSyncError):
    """The refresh credential is absent, revoked, or the exchange failed."""

    kind = "refresh_denied"


class SessionExpired(StepSyncError):
    """Access could not be restored; the user must log out and log in again."""

    kind = "session_expired"


class TransientError(StepSyncError):
    """Network or provider fault unrelated to credentials."""

    kind = "transient_error"


class NotFound(StepSyncError):
    """Unknown user or record."""

    kind = "not_found"


class Conflict(StepSyncError):
    """A user with the same email already exists."""

    kind = "conflict"


# ---------------------------------------------------------------------------
# Fetcher-level failures (mapped by the orchestrator)
# ---------------------------------------------------------------------------


class FetchError(StepSyncError):
    """Base class for failures raised by the step data fetcher."""

    kind = "fetch_error"


class Unauthorized(FetchError):
    """The provider rejected the access credential (HTTP 401)."""

    kind = "unauthorized"


class ProviderError(FetchError):
    """The provider answered with a non-auth error status."""

    kind = "provider_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkError(FetchError):
    """Timeout, connection failure, or an undecodable response body."""

    kind = "network_error"
