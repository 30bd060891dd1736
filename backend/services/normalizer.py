"""
Record Normalizer

Converts one raw source row (a delimited-text row, a workbook sheet row) into a
canonical Post, GrowthBucket or AudienceSnapshot with fixed fields and units.

Key Features:
- One case/separator-normalizing column lookup shared by every adapter
  ("Subject or Title", "subject-or-title" and "SUBJECT_OR_TITLE" all match)
- Alias tables per logical field, per record type
- Count parsing: thousands separators stripped, junk tokens -> 0
- Rate parsing: "NN.N%" text or bare floats; bare fractions <= 1 are scaled
  to 0-100, spreadsheet error markers (#DIV/0!) -> None
- Date parsing: spreadsheet serial day numbers (1900 epoch, leap-year quirk
  preserved) pinned to mid-day UTC, datetime objects, or free text
- Rows without a parseable date are dropped (never defaulted to epoch 0)

The API sync adapter works on JSON objects rather than rows and has its own
transform in api_sync.py; it reuses the scalar parsers from this module.
"""

import math
import re
from datetime import date as DateType, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import pandas as pd

from backend.models import AudienceSnapshot, GrowthBucket, Post, StatsSource


# =============================================================================
# CONSTANTS - Spreadsheet Date Epoch
# =============================================================================

# Days between the spreadsheet epoch and 1970-01-01. The spreadsheet format
# counts a 1900-02-29 that never existed; serials after it are offset by one
# and this constant already absorbs that.
SERIAL_UNIX_OFFSET_DAYS: int = 25569

UNIX_EPOCH: datetime = datetime(1970, 1, 1, tzinfo=timezone.utc)

MIDDAY: timedelta = timedelta(hours=12)

# Tokens a spreadsheet emits in place of a number
ERROR_TOKENS = frozenset({
    '#div/0!', '#n/a', '#value!', '#ref!', '#num!', '#name?', '#null!',
    'nan', 'n/a', '-', '--',
})

_SEPARATORS = re.compile(r'[\s-]+')


# =============================================================================
# CONSTANTS - Field Alias Tables
# =============================================================================

POST_FIELDS: Dict[str, Tuple[str, ...]] = {
    'date': ('date', 'publish_date', 'send_date'),
    'title': ('subject_or_title', 'subject', 'title'),
    'sent': ('sent', 'recipients'),
    'delivered': ('delivered',),
    'totalOpens': ('total_opens',),
    'uniqueOpens': ('unique_opens',),
    'openRate': ('open_rate',),
    'uniqueClicks': ('unique_clicks',),
    'ctr': ('click_through_rate', 'ctr'),
    'verifiedClicks': ('verified_unique_clicks', 'verified_clicks'),
    'verifiedCtr': ('verified_click_through_rate', 'verified_ctr'),
    'unsubscribed': ('unsubscribed', 'unsubscribes'),
    'unsubscribeRate': ('unsubscribe_rate',),
    'deliveryRate': ('delivery_rate',),
    'contentTags': ('content_tags', 'tags'),
    'postId': ('post_id', 'id'),
}

GROWTH_FIELDS: Dict[str, Tuple[str, ...]] = {
    'date': ('date', 'month'),
    'subscribed': ('subscribed', 'new_subscribers', 'new'),
    'unsubscribed': ('unsubscribed', 'unsubscribes'),
    'net': ('net', 'net_growth'),
}

AUDIENCE_FIELDS: Dict[str, Tuple[str, ...]] = {
    'date': ('date',),
    'activeSubscribers': ('active_subscribers', 'total_active_subscribers', 'subscribers'),
}

POST_COUNT_FIELDS: Tuple[str, ...] = (
    'sent', 'delivered', 'totalOpens', 'uniqueOpens',
    'uniqueClicks', 'verifiedClicks', 'unsubscribed',
)

POST_RATE_FIELDS: Tuple[str, ...] = (
    'openRate', 'ctr', 'verifiedCtr', 'unsubscribeRate', 'deliveryRate',
)


# =============================================================================
# Column Lookup
# =============================================================================


def normalize_column_name(name: Any) -> str:
    """Lowercase, trim, and collapse whitespace/hyphen runs to '_'."""
    if name is None:
        return ''
    return _SEPARATORS.sub('_', str(name).strip().lower())


class ColumnLookup:
    """
    Resolves logical fields to the actual keys of a set of rows.

    Built once per header row, so per-row lookups are dict hits.

    Example:
        >>> lookup = ColumnLookup(['Date', 'Subject or Title', 'Open Rate'])
        >>> lookup.key_for(POST_FIELDS['title'])
        'Subject or Title'
    """

    def __init__(self, headers: Iterable[Any]):
        self._by_normalized: Dict[str, Any] = {}
        for header in headers:
            # first header wins on duplicates
            self._by_normalized.setdefault(normalize_column_name(header), header)

    def key_for(self, aliases: Iterable[str]) -> Optional[Any]:
        for alias in aliases:
            key = self._by_normalized.get(normalize_column_name(alias))
            if key is not None:
                return key
        return None

    def has(self, aliases: Iterable[str]) -> bool:
        return self.key_for(aliases) is not None

    def get(self, row: Mapping[Any, Any], aliases: Iterable[str]) -> Any:
        key = self.key_for(aliases)
        if key is None:
            return None
        return row.get(key)


# =============================================================================
# Scalar Parsers
# =============================================================================


def is_missing(value: Any) -> bool:
    """True for None, NaN/NaT, and blank strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ''
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def parse_number(value: Any) -> Optional[float]:
    if is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(',', '')
        if text.lower() in ERROR_TOKENS:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def parse_count(value: Any) -> Optional[int]:
    """
    Parse an integer count, stripping thousands separators.

    Fractional values truncate toward zero. Returns None for blanks and
    non-numeric tokens; callers decide the default.
    """
    number = parse_number(value)
    if number is None:
        return None
    return int(number)


def parse_rate(value: Any) -> Optional[float]:
    """
    Parse a percentage into the 0-100 range.

    "68.2%" text is taken as already being a percentage. A bare number with
    magnitude <= 1 is a fraction and is multiplied by 100; anything larger
    is passed through unchanged.

    Example:
        >>> parse_rate(0.452)
        45.2
        >>> parse_rate('45.2%')
        45.2
        >>> parse_rate('#DIV/0!') is None
        True
    """
    if is_missing(value) or isinstance(value, bool):
        return None

    explicit_percent = isinstance(value, str) and value.strip().endswith('%')
    number = parse_number(value.strip().rstrip('%') if explicit_percent else value)
    if number is None:
        return None
    if explicit_percent or abs(number) > 1:
        return number
    return round(number * 100, 6)


def serial_to_datetime(serial: float) -> Optional[datetime]:
    """Convert a spreadsheet serial day number to a mid-day UTC datetime."""
    if serial <= 0:
        return None
    try:
        return UNIX_EPOCH + timedelta(days=serial - SERIAL_UNIX_OFFSET_DAYS) + MIDDAY
    except OverflowError:
        return None


def _pin_naive(moment: datetime) -> datetime:
    # Naive date-only values are pinned to mid-day UTC so no timezone moves
    # them onto a neighbouring calendar day.
    if moment.tzinfo is not None:
        return moment.astimezone(timezone.utc)
    if moment.time() == time(0, 0):
        moment = moment + MIDDAY
    return moment.replace(tzinfo=timezone.utc)


def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse a raw date cell into a timezone-aware UTC datetime.

    Accepts spreadsheet serial numbers (numeric or numeric text), datetime
    and date objects, pandas Timestamps, and free-text dates. Returns None
    when nothing usable is present.
    """
    if is_missing(value) or isinstance(value, bool):
        return None

    if isinstance(value, pd.Timestamp):
        return _pin_naive(value.to_pydatetime())
    if isinstance(value, datetime):
        return _pin_naive(value)
    if isinstance(value, DateType):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc) + MIDDAY

    if isinstance(value, (int, float)):
        number = float(value)
        if math.isnan(number) or math.isinf(number):
            return None
        return serial_to_datetime(number)

    text = str(value).strip()
    try:
        return serial_to_datetime(float(text))
    except ValueError:
        pass

    try:
        parsed = pd.to_datetime(text)
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(parsed):
        return None
    return _pin_naive(parsed.to_pydatetime())


def parse_text(value: Any) -> Optional[str]:
    if is_missing(value):
        return None
    return str(value).strip()


# =============================================================================
# Row Normalizers
# =============================================================================


def normalize_post(
    row: Mapping[Any, Any],
    lookup: ColumnLookup,
    stats_source: StatsSource = StatsSource.EXPORT,
) -> Optional[Post]:
    """
    Build a canonical Post from one raw row, or None if it has no usable date.

    Count fields default to 0 (negative values clamp to 0); rate fields
    default to None.
    """
    moment = parse_date(lookup.get(row, POST_FIELDS['date']))
    if moment is None:
        return None

    fields: Dict[str, Any] = {
        'date': moment,
        'title': parse_text(lookup.get(row, POST_FIELDS['title'])) or 'Untitled',
        'contentTags': parse_text(lookup.get(row, POST_FIELDS['contentTags'])),
        'postId': parse_text(lookup.get(row, POST_FIELDS['postId'])),
        'statsSource': stats_source,
    }
    for name in POST_COUNT_FIELDS:
        fields[name] = max(parse_count(lookup.get(row, POST_FIELDS[name])) or 0, 0)
    for name in POST_RATE_FIELDS:
        fields[name] = parse_rate(lookup.get(row, POST_FIELDS[name]))

    return Post(**fields)


def normalize_growth(row: Mapping[Any, Any], lookup: ColumnLookup) -> Optional[GrowthBucket]:
    """Build a GrowthBucket from one monthly-flow row."""
    moment = parse_date(lookup.get(row, GROWTH_FIELDS['date']))
    if moment is None:
        return None
    return GrowthBucket(
        date=moment,
        subscribed=parse_count(lookup.get(row, GROWTH_FIELDS['subscribed'])) or 0,
        unsubscribed=parse_count(lookup.get(row, GROWTH_FIELDS['unsubscribed'])) or 0,
        net=parse_count(lookup.get(row, GROWTH_FIELDS['net'])) or 0,
    )


def normalize_audience(row: Mapping[Any, Any], lookup: ColumnLookup) -> Optional[AudienceSnapshot]:
    """Build an AudienceSnapshot from one subscriber-count row."""
    moment = parse_date(lookup.get(row, AUDIENCE_FIELDS['date']))
    if moment is None:
        return None
    count = parse_count(lookup.get(row, AUDIENCE_FIELDS['activeSubscribers'])) or 0
    return AudienceSnapshot(date=moment, activeSubscribers=max(count, 0))
