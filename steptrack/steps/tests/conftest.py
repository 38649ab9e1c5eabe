"""Shared fixtures and fakes for the step sync core tests."""

from __future__ import annotations

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID
from zoneinfo import ZoneInfo

import httpx
import pytest

from steptrack.steps.base import OAuthTokens, StepDataFetcher, TokenProvider, User
from steptrack.steps.config_loader import ScheduleConfig, SyncConfig, load_sync_config
from steptrack.steps.reconciler import DailyRecordReconciler
from steptrack.steps.storage.memory import MemoryStepStorage
from steptrack.steps.sync.orchestrator import FetchOrchestrator

# Canonical test user ID
TEST_USER_ID = UUID("12345678-1234-5678-1234-567812345678")
TEST_DATE = date(2026, 2, 23)
UTC = ZoneInfo("UTC")
# Mid-morning on the day after TEST_DATE, so "yesterday" is TEST_DATE
TEST_NOW = datetime(2026, 2, 24, 9, 30, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class ScriptedFetcher(StepDataFetcher):
    """Step fetcher that plays back outcomes, keyed by access token.

    An outcome is an int (step count) or an exception instance to raise.
    A list of outcomes is consumed one call at a time.
    """

    SOURCE_ID = "scripted"

    def __init__(self, outcomes: dict[str, object] | None = None) -> None:
        self.outcomes = outcomes or {}
        self.calls: list[tuple[str, datetime, datetime]] = []

    async def fetch_steps(self, access_token: str, start: datetime, end: datetime) -> int:
        self.calls.append((access_token, start, end))
        outcome = self.outcomes.get(access_token, 0)
        if isinstance(outcome, list):
            outcome = outcome.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class StubTokenProvider(TokenProvider):
    """Token provider returning a fixed result (OAuthTokens or exception)."""

    SOURCE_ID = "stub"

    def __init__(self, result: OAuthTokens | BaseException | None = None) -> None:
        self.result = result or OAuthTokens(access_token="fresh-token")
        self.refresh_calls: list[str | None] = []

    async def refresh(self, refresh_token: str | None) -> OAuthTokens:
        self.refresh_calls.append(refresh_token)
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_user(
    user_id: UUID = TEST_USER_ID,
    *,
    name: str = "Test Walker",
    email: str | None = None,
    access_token: str | None = "stale-token",
    refresh_token: str | None = "refresh-1",
) -> User:
    return User(
        user_id=user_id,
        name=name,
        email=email or f"{user_id.hex}@example.com",
        access_token=access_token,
        refresh_token=refresh_token,
    )


async def add_user(storage: MemoryStepStorage, **kwargs) -> User:
    return await storage.users.save(make_user(**kwargs))


def json_response(status_code: int, payload: object = None, text: str | None = None) -> httpx.Response:
    """A real httpx.Response tied to a request, so raise_for_status works."""
    request = httpx.Request("POST", "https://example.test/endpoint")
    if text is not None:
        return httpx.Response(status_code, text=text, request=request)
    return httpx.Response(status_code, json=payload, request=request)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the real sync config for tests."""
    return load_sync_config()


@pytest.fixture
def utc_schedule() -> ScheduleConfig:
    return ScheduleConfig(hour=0, minute=0, timezone="UTC")


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def storage() -> MemoryStepStorage:
    return MemoryStepStorage()


@pytest.fixture
def reconciler(storage: MemoryStepStorage) -> DailyRecordReconciler:
    return DailyRecordReconciler(storage, tz=UTC)


@pytest.fixture
def fetcher() -> ScriptedFetcher:
    return ScriptedFetcher()


@pytest.fixture
def token_provider() -> StubTokenProvider:
    return StubTokenProvider()


@pytest.fixture
def orchestrator(
    storage: MemoryStepStorage, fetcher: ScriptedFetcher, token_provider: StubTokenProvider
) -> FetchOrchestrator:
    return FetchOrchestrator(token_provider, fetcher, storage.users, tz=UTC)


# ---------------------------------------------------------------------------
# Mock HTTP clients
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_httpx_client() -> MagicMock:
    """Mock httpx.AsyncClient for testing providers without real API calls."""
    client = MagicMock()
    client.post = AsyncMock(return_value=json_response(200, {}))
    return client
