"""
File Ingestion Service

This module implements the two file-based ingestion adapters and the `ingest`
facade shared by every entry point (upload endpoint, tests, the API sync
adapter's error path).

Adapters:
- Bulk text (bulkText): one header row plus one row per post. Quoted fields
  may contain the delimiter or embedded line breaks; cells are trimmed. The
  date column is required; without it the whole file is rejected.
- Multi-sheet workbook (multiSheet): sheets located by a case-insensitive
  alias table ("posts"/"campaigns", "subscriber monthly"/"growth",
  "current subscribers"/"audience"). A missing sheet is a warning naming the
  feature it disables, never a failure, as long as one sheet is present.

Adapters raise IngestionError subclasses. `ingest()` converts a raised
IngestionError into IngestionResult(success=False) with no partial rows, so
callers always receive the same tagged shape.
"""

import io
import logging
import zipfile
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from backend.core.exceptions import (
    EmptyInput,
    IngestionError,
    MissingRequiredColumn,
    UnparseableFile,
    UpstreamHTTPError,
)
from backend.models import (
    AudienceSnapshot,
    GrowthBucket,
    IngestionErrorDetail,
    IngestionResult,
    Post,
    SourceKind,
)
from backend.services.normalizer import (
    AUDIENCE_FIELDS,
    GROWTH_FIELDS,
    POST_FIELDS,
    ColumnLookup,
    normalize_audience,
    normalize_column_name,
    normalize_growth,
    normalize_post,
)

# Configure module logger
logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS - Sheet Aliases and Missing-Sheet Warnings
# =============================================================================

SHEET_ALIASES: Dict[str, Tuple[str, ...]] = {
    'posts': ('posts', 'post', 'campaigns', 'campaign'),
    'growth': ('subscriber monthly', 'subscribers monthly', 'monthly', 'growth'),
    'audience': ('current subscribers', 'active subscribers', 'subscribers', 'audience'),
}

MISSING_SHEET_WARNINGS: Dict[str, str] = {
    'posts': 'Missing "posts" tab: Campaign performance data unavailable',
    'growth': 'Missing "subscriber monthly" tab: Growth chart unavailable',
    'audience': 'Missing "current subscribers" tab: Hero metric unavailable',
}

# Optional bulk-text columns whose absence disables a visible metric
OPTIONAL_COLUMN_WARNINGS: Dict[str, str] = {
    'delivered': 'Missing "Delivered" column: open and delivery rates unavailable',
    'uniqueOpens': 'Missing "Unique Opens" column: weighted open rate and CTR unavailable',
    'uniqueClicks': 'Missing "Unique Clicks" column: click metrics unavailable',
}

UPLOAD_KINDS: Dict[str, SourceKind] = {
    '.csv': SourceKind.BULK_TEXT,
    '.txt': SourceKind.BULK_TEXT,
    '.xlsx': SourceKind.MULTI_SHEET,
    '.xls': SourceKind.MULTI_SHEET,
}

SheetRows = Union[pd.DataFrame, Sequence[Mapping[Any, Any]]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Bulk Text Adapter
# =============================================================================


def _decode(raw: Union[str, bytes]) -> str:
    if isinstance(raw, str):
        return raw
    try:
        # utf-8-sig drops the BOM some exporters prepend
        return raw.decode('utf-8-sig')
    except UnicodeDecodeError as e:
        raise UnparseableFile(f'not valid UTF-8 text ({e.reason})')


def parse_bulk_text(raw: Union[str, bytes]) -> IngestionResult:
    """
    Parse a delimited-text post export.

    Args:
        raw: File contents as text or UTF-8 bytes

    Returns:
        IngestionResult with kind=bulkText, posts sorted by date and
        growth/audience set to None

    Raises:
        EmptyInput: Fewer than one header line plus one data line
        MissingRequiredColumn: No date column in the header row
        UnparseableFile: Undecodable bytes or malformed quoting
    """
    text = _decode(raw)
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        raise EmptyInput('CSV file is empty or has no data rows')

    try:
        frame = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError:
        raise EmptyInput('CSV file is empty or has no data rows')
    except pd.errors.ParserError as e:
        raise UnparseableFile(str(e))

    frame.columns = [str(column).strip() for column in frame.columns]
    lookup = ColumnLookup(frame.columns)
    if not lookup.has(POST_FIELDS['date']):
        raise MissingRequiredColumn('Date')
    if frame.empty:
        raise EmptyInput('CSV file is empty or has no data rows')

    frame = frame.apply(lambda column: column.str.strip())

    warnings: List[str] = [
        message for field, message in OPTIONAL_COLUMN_WARNINGS.items()
        if not lookup.has(POST_FIELDS[field])
    ]

    posts, skipped = _normalize_rows(frame, lambda row: normalize_post(row, lookup))
    if skipped:
        warnings.append(f'{skipped} rows skipped: no parseable date')

    logger.info(f"Parsed {len(posts)} posts from bulk text ({skipped} skipped)")

    return IngestionResult(
        kind=SourceKind.BULK_TEXT,
        success=True,
        posts=posts,
        growth=None,
        audience=None,
        warnings=warnings,
        lastUpdated=_now(),
    )


# =============================================================================
# Multi-Sheet Adapter
# =============================================================================


def find_sheet(sheets: Mapping[str, SheetRows], aliases: Sequence[str]) -> Optional[SheetRows]:
    """
    Find a sheet by alias, matching names case- and separator-insensitively.

    Aliases are tried in order, so the first alias is preferred when a
    workbook contains several candidates.
    """
    by_name = {normalize_column_name(name): rows for name, rows in sheets.items()}
    for alias in aliases:
        rows = by_name.get(normalize_column_name(alias))
        if rows is not None:
            return rows
    return None


def _rows_of(sheet: SheetRows) -> List[Mapping[Any, Any]]:
    if isinstance(sheet, pd.DataFrame):
        return sheet.to_dict(orient='records')
    return list(sheet)


def _headers_of(sheet: SheetRows, rows: List[Mapping[Any, Any]]) -> List[Any]:
    if isinstance(sheet, pd.DataFrame):
        return list(sheet.columns)
    headers: Dict[Any, None] = {}
    for row in rows:
        headers.update(dict.fromkeys(row.keys()))
    return list(headers)


def _normalize_rows(sheet: SheetRows, convert: Callable[[Mapping[Any, Any]], Any]) -> Tuple[list, int]:
    """Convert every row, drop the undated ones, and sort by date."""
    records = []
    skipped = 0
    for row in _rows_of(sheet):
        record = convert(row)
        if record is None:
            skipped += 1
        else:
            records.append(record)
    records.sort(key=lambda record: record.date)
    return records, skipped


def _parse_sheet(sheet: SheetRows, fields: Dict[str, Tuple[str, ...]], convert, name: str, warnings: List[str]) -> list:
    rows = _rows_of(sheet)
    lookup = ColumnLookup(_headers_of(sheet, rows))
    if not lookup.has(fields['date']):
        warnings.append(f'Sheet "{name}" has no date column: its rows were ignored')
        return []
    records, skipped = _normalize_rows(rows, lambda row: convert(row, lookup))
    if skipped:
        warnings.append(f'{skipped} rows skipped in "{name}": no parseable date')
    return records


def parse_workbook_sheets(sheets: Mapping[str, SheetRows]) -> IngestionResult:
    """
    Parse an already-loaded workbook (sheet name -> DataFrame or row dicts).

    Raises:
        EmptyInput: None of the posts / growth / audience sheets is present
    """
    warnings: List[str] = []
    found = {
        logical: find_sheet(sheets, aliases)
        for logical, aliases in SHEET_ALIASES.items()
    }
    if all(sheet is None for sheet in found.values()):
        raise EmptyInput('Workbook contains no posts, growth or audience sheet')

    posts: List[Post] = []
    growth: Optional[List[GrowthBucket]] = None
    audience: Optional[List[AudienceSnapshot]] = None

    if found['posts'] is not None:
        posts = _parse_sheet(found['posts'], POST_FIELDS, normalize_post, 'posts', warnings)
        logger.info(f"Parsed {len(posts)} posts")
    else:
        warnings.append(MISSING_SHEET_WARNINGS['posts'])

    if found['growth'] is not None:
        growth = _parse_sheet(found['growth'], GROWTH_FIELDS, normalize_growth, 'growth', warnings)
        logger.info(f"Parsed {len(growth)} growth records")
    else:
        warnings.append(MISSING_SHEET_WARNINGS['growth'])

    if found['audience'] is not None:
        audience = _parse_sheet(found['audience'], AUDIENCE_FIELDS, normalize_audience, 'audience', warnings)
        logger.info(f"Parsed {len(audience)} audience records")
    else:
        warnings.append(MISSING_SHEET_WARNINGS['audience'])

    return IngestionResult(
        kind=SourceKind.MULTI_SHEET,
        success=True,
        posts=posts,
        growth=growth,
        audience=audience,
        warnings=warnings,
        lastUpdated=_now(),
    )


def parse_workbook(raw: Union[bytes, Mapping[str, SheetRows]]) -> IngestionResult:
    """
    Parse a workbook file (bytes) or a loaded workbook mapping.

    Raises:
        UnparseableFile: The bytes are not a readable workbook
        EmptyInput: No recognised sheet is present
    """
    if isinstance(raw, Mapping):
        return parse_workbook_sheets(raw)
    if not raw:
        raise EmptyInput('Workbook file is empty')
    try:
        sheets = pd.read_excel(io.BytesIO(raw), sheet_name=None)
    except (ValueError, KeyError, OSError, zipfile.BadZipFile) as e:
        raise UnparseableFile(str(e) or type(e).__name__)
    return parse_workbook_sheets(sheets)


# =============================================================================
# Facade
# =============================================================================


def failure_result(kind: SourceKind, error: IngestionError) -> IngestionResult:
    """Build the zero-row result reported for a terminal ingestion failure."""
    detail = IngestionErrorDetail(
        code=error.code,
        message=error.message,
        statusCode=error.status_code if isinstance(error, UpstreamHTTPError) else None,
    )
    return IngestionResult(
        kind=kind,
        success=False,
        posts=[],
        growth=None,
        audience=None,
        errors=[detail],
        lastUpdated=_now(),
    )


def ingest(kind: SourceKind, raw: Any) -> IngestionResult:
    """
    Run the file adapter for `kind` and return a uniform IngestionResult.

    Terminal failures are returned as success=False results, not raised.
    API sync is asynchronous and goes through api_sync.ingest_api.
    """
    parsers: Dict[SourceKind, Callable[[Any], IngestionResult]] = {
        SourceKind.BULK_TEXT: parse_bulk_text,
        SourceKind.MULTI_SHEET: parse_workbook,
    }
    if kind not in parsers:
        raise ValueError(f"No file adapter for source kind: {kind}")

    try:
        return parsers[kind](raw)
    except IngestionError as e:
        logger.error(f"Ingestion failed ({kind.value}): {e.code}: {e.message}")
        return failure_result(kind, e)


def kind_for_filename(filename: str) -> SourceKind:
    """
    Pick the adapter for an uploaded file by extension.

    Raises:
        UnparseableFile: Unsupported extension
    """
    name = (filename or '').lower()
    for extension, kind in UPLOAD_KINDS.items():
        if name.endswith(extension):
            return kind
    raise UnparseableFile(f'unsupported file type "{filename}" (expected .csv, .xlsx or .xls)')


def ingest_upload(filename: str, data: bytes) -> IngestionResult:
    """Ingest an uploaded file, choosing the adapter from its extension."""
    try:
        kind = kind_for_filename(filename)
    except UnparseableFile as e:
        logger.error(f"Rejected upload {filename!r}: {e.message}")
        return failure_result(SourceKind.BULK_TEXT, e)
    return ingest(kind, data)
