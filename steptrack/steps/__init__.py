"""Steptrack step sync core.

This package keeps each user's daily step records and running total in
step with Google Fit, and with hand-entered counts.

Subpackages:
    providers/ — Google OAuth token refresh and Google Fit step fetching
    storage/   — User and daily-record persistence (memory, PostgreSQL)
    sync/      — Refresh-and-retry fetch orchestration, nightly scheduler

Core modules:
    base          — Domain dataclasses and the provider ABCs
    errors        — Sync error taxonomy
    reconciler    — Daily record upsert with running-total delta
    windows       — Local-day windows and date normalization
    accounts      — Link a Google login to a user
    config_loader — Load/validate/reload sync_config.yaml
"""

from steptrack.steps.base import (
    DailyStepRecord,
    OAuthTokens,
    StepDataFetcher,
    SyncSummary,
    TokenProvider,
    User,
    UserSyncResult,
)
from steptrack.steps.config_loader import SyncConfig, get_sync_config

__all__ = [
    "TokenProvider",
    "StepDataFetcher",
    "User",
    "DailyStepRecord",
    "OAuthTokens",
    "UserSyncResult",
    "SyncSummary",
    "SyncConfig",
    "get_sync_config",
]
