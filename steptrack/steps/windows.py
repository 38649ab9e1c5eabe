"""Calendar-day helpers: local-midnight normalization and aggregate windows.

A step record belongs to a calendar day in the configured time zone.  Any
timestamp observed during that day normalizes to the same ``date``, which
is the uniqueness key for DailyStepRecord together with the user id.

Aggregate windows are half-open ``[start, end)`` ranges of tz-aware
datetimes running from one local midnight to the next.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo

from steptrack.steps.config_loader import get_sync_config


def _zone(tz: tzinfo | None) -> tzinfo:
    return tz or get_sync_config().schedule.tz


def normalize_day(value: date | datetime, tz: tzinfo | None = None) -> date:
    """Strip the time of day, returning the local calendar date.

    Aware datetimes are converted into ``tz`` first; naive datetimes are
    taken to be local wall-clock time already.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(_zone(tz))
        return value.date()
    return value


def local_today(tz: tzinfo | None = None, now: datetime | None = None) -> date:
    """Return today's date in ``tz``."""
    zone = _zone(tz)
    current = now or datetime.now(zone)
    return normalize_day(current, zone)


def day_window(day: date, tz: tzinfo | None = None) -> tuple[datetime, datetime]:
    """Return ``(local midnight of day, local midnight of the next day)``.

    The window is 23 or 25 hours long across a DST change.
    """
    zone = _zone(tz)
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return start, end


def today_window(
    tz: tzinfo | None = None, now: datetime | None = None
) -> tuple[datetime, datetime]:
    """Window for the manual sync path: today so far."""
    return day_window(local_today(tz, now), tz)


def yesterday_window(
    tz: tzinfo | None = None, now: datetime | None = None
) -> tuple[datetime, datetime]:
    """Window for the nightly batch: the whole of yesterday."""
    return day_window(local_today(tz, now) - timedelta(days=1), tz)


def to_epoch_millis(value: datetime) -> int:
    """Epoch milliseconds for an aware (or UTC-naive) datetime."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)
