"""Load, validate, and hot-reload the Steptrack sync configuration.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk after an edit — no restart required (the running scheduler keeps its
trigger until it is restarted).

Usage::

    from steptrack.steps.config_loader import get_sync_config

    config = get_sync_config()
    config.schedule.tz                   # ZoneInfo('UTC')
    config.provider.http_timeout_seconds  # 30.0
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

logger = logging.getLogger("steptrack.steps.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class ScheduleConfig:
    """When the nightly batch fires and which zone defines a calendar day."""

    hour: int
    minute: int
    timezone: str
    misfire_grace_seconds: int = 3600

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass
class ProviderConfig:
    """External fitness provider endpoints and limits."""

    token_url: str
    aggregate_url: str
    data_type: str
    http_timeout_seconds: float


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    Attributes:
        version:   Config schema version string.
        schedule:  Nightly trigger time and calendar time zone.
        provider:  Provider endpoints and HTTP timeout.
    """

    version: str
    schedule: ScheduleConfig
    provider: ProviderConfig


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Collects every problem before failing so one edit can fix them all.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    def _int(section: dict, key: str, default: int, lo: int, hi: int, name: str) -> int:
        value = section.get(key, default)
        try:
            result = int(value)
        except (TypeError, ValueError):
            errors.append(f"{name}.{key} must be an integer, got {value!r}")
            return default
        if not (lo <= result <= hi):
            errors.append(f"{name}.{key} = {result} is out of range [{lo}, {hi}]")
        return result

    version = str(raw.get("version", "1.0"))

    # ── Schedule ──
    sched_raw: dict[str, Any] = raw.get("schedule") or {}
    tz_name = str(sched_raw.get("timezone", "UTC"))
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"schedule.timezone {tz_name!r} is not a known IANA zone")
    schedule = ScheduleConfig(
        hour=_int(sched_raw, "hour", 0, 0, 23, "schedule"),
        minute=_int(sched_raw, "minute", 0, 0, 59, "schedule"),
        timezone=tz_name,
        misfire_grace_seconds=_int(
            sched_raw, "misfire_grace_seconds", 3600, 0, 86400, "schedule"
        ),
    )

    # ── Provider ──
    prov_raw: dict[str, Any] = raw.get("provider") or {}
    if not prov_raw:
        errors.append("'provider' section is missing or empty")
    for key in ("token_url", "aggregate_url"):
        url = prov_raw.get(key)
        if prov_raw and not (isinstance(url, str) and url.startswith("https://")):
            errors.append(f"provider.{key} must be an https:// URL, got {url!r}")

    timeout_raw = prov_raw.get("http_timeout_seconds", 30)
    try:
        timeout = float(timeout_raw)
        if timeout <= 0:
            errors.append(f"provider.http_timeout_seconds must be > 0, got {timeout}")
    except (TypeError, ValueError):
        errors.append(
            f"provider.http_timeout_seconds must be a number, got {timeout_raw!r}"
        )
        timeout = 30.0

    provider = ProviderConfig(
        token_url=str(prov_raw.get("token_url", "")),
        aggregate_url=str(prov_raw.get("aggregate_url", "")),
        data_type=str(prov_raw.get("data_type", "com.google.step_count.delta")),
        http_timeout_seconds=timeout,
    )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(version=version, schedule=schedule, provider=provider)


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
