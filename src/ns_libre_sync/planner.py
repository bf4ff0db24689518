"""Cálculo de la ventana de tiempo a sincronizar."""

from __future__ import annotations

from datetime import datetime

from dateutil import tz
from dateutil.relativedelta import relativedelta

from ns_libre_sync.errors import ConfigError
from ns_libre_sync.model import RunMode, SyncCursor, TimeWindow, utc_now


def plan_window(
    mode: RunMode,
    cursor: SyncCursor,
    year: int | None = None,
    month: int | None = None,
    *,
    now: datetime | None = None,
) -> TimeWindow:
    """Compute the ``[start, end)`` interval for this run.

    Automatic runs continue from ``cursor.last`` up to ``now``, so each
    committed run's end is the next run's start. Manual runs cover one
    calendar month in UTC.

    Args:
        mode: Automatic or manual run.
        cursor: Persisted cursor (used in automatic mode only).
        year: Calendar year (manual mode).
        month: 0-indexed month, 0 = January (manual mode).
        now: Current instant; defaults to the UTC clock.

    Returns:
        The window to fetch.

    Raises:
        ConfigError: If manual mode lacks a valid year/month.
    """
    if mode is RunMode.AUTOMATIC:
        end = (now or utc_now()).astimezone(tz.UTC)
        # Cursor files keep milliseconds; the next run must start exactly here.
        end = end.replace(microsecond=end.microsecond // 1000 * 1000)
        return TimeWindow(start=cursor.last, end=end)

    if year is None or month is None:
        raise ConfigError("Manual mode requires a year and a month")
    if not 0 <= month <= 11:
        raise ConfigError(f"Month must be 0-11 (0 = January), got {month}")
    try:
        start = datetime(year, month + 1, 1, tzinfo=tz.UTC)
    except ValueError as exc:
        raise ConfigError(f"Invalid year: {year}") from exc
    return TimeWindow(start=start, end=start + relativedelta(months=1))
