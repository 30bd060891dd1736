"""
Date-Range Filter

Narrows a record collection (anything with a `date` attribute) to an
inclusive window, plus the helpers that resolve dashboard presets into
windows.

- filter_by_date: inclusive on both ends; a None bound is open
- filter_month_snapped: start rounded down to the 1st of its month first,
  so a monthly display keeps the whole partially-covered boundary month
- resolve_window: '30d' / '90d' / 'all' / custom start-end against an
  injectable `now`
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, TypeVar

from backend.models import DateRangePreset, DateWindow


T = TypeVar('T')

PRESET_DAYS = {
    DateRangePreset.LAST_30_DAYS: 30,
    DateRangePreset.LAST_90_DAYS: 90,
}


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC so every comparison is between aware values."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def month_start(moment: datetime) -> datetime:
    moment = as_utc(moment)
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def filter_by_date(
    records: Iterable[T],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[T]:
    """Records with start <= date <= end, in input order."""
    start = as_utc(start) if start is not None else None
    end = as_utc(end) if end is not None else None
    kept = []
    for record in records:
        moment = as_utc(record.date)
        if start is not None and moment < start:
            continue
        if end is not None and moment > end:
            continue
        kept.append(record)
    return kept


def filter_month_snapped(
    records: Iterable[T],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[T]:
    """
    Like filter_by_date, with `start` snapped to the 1st of its month.

    Used for monthly-bucketed displays: "last 90 days" from 2024-04-17
    keeps all of January rather than the tail from the 18th onward.
    """
    return filter_by_date(records, month_start(start) if start is not None else None, end)


def resolve_window(
    preset: DateRangePreset = DateRangePreset.LAST_90_DAYS,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> DateWindow:
    """
    Turn a preset (or custom bounds) into a concrete DateWindow.

    Raises:
        ValueError: custom range whose start is after its end
    """
    now = as_utc(now) if now is not None else datetime.now(timezone.utc)

    if preset == DateRangePreset.ALL:
        return DateWindow(start=None, end=None)

    if preset == DateRangePreset.CUSTOM:
        start = as_utc(start) if start is not None else None
        end = as_utc(end) if end is not None else None
        if start is not None and end is not None and start > end:
            raise ValueError("Date range start must not be after its end")
        return DateWindow(start=start, end=end)

    return DateWindow(start=now - timedelta(days=PRESET_DAYS[preset]), end=now)
