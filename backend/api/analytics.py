"""
FastAPI router module for the analytics pipeline.

Every route is scoped to one newsletter id and served by that newsletter's
AnalyticsSession (see backend/services/session.py).

Key Endpoints:
- POST /analytics/{newsletter}/import: Upload a .csv or .xlsx/.xls export
- POST /analytics/{newsletter}/sync?recentStats=: Pull from the upstream API
- PUT  /analytics/{newsletter}/window: Select the session's default window
- GET  /analytics/{newsletter}/summary: Weighted aggregate, deltas, sparklines,
  latest subscriber count
- GET  /analytics/{newsletter}/series: Bucketed metric series
- GET  /analytics/{newsletter}/growth, /audience: Month-snapped periods
- GET  /analytics/{newsletter}/insights: Baselines, trend, acceleration,
  anomalies, extremes, headline insight and highlights

Window Selection:
GET routes accept `range` (30d | 90d | all | custom, with `start`/`end` for
custom). Without `range` the session's selected window is used.

Error Mapping:
- Ingestion failures: 400 (EmptyInput, MissingRequiredColumn), 422
  (UnparseableFile), upstream status or 502 (UpstreamHTTPError)
- Unknown newsletter on sync: 400
- No data imported or synced yet: 404
- Custom range with start after end: 400
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, File, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field

from backend.api.errors import http_exception_for, http_exception_for_result
from backend.core.dependencies import (
    BeehiivClientDep,
    NewsletterRegistryDep,
    SessionRegistryDep,
    SettingsDep,
)
from backend.core.exceptions import IngestionError
from backend.models import (
    AudiencePeriod,
    DateRangePreset,
    DateWindow,
    Granularity,
    GrowthPeriod,
    IngestionResult,
    InsightsResponse,
    MetricName,
    MetricSeries,
    SourceKind,
    SummaryResponse,
)
from backend.services.date_filter import resolve_window
from backend.services.session import NoDataError


# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["analytics"])


# =============================================================================
# Local Pydantic Models
# =============================================================================

class IngestionSummary(BaseModel):
    """Outcome of an import or sync, without the record arrays."""
    newsletterId: str
    kind: SourceKind
    posts: int = Field(default=0, ge=0, description="Posts ingested")
    growth: Optional[int] = Field(default=None, description="Growth rows, None if not produced")
    audience: Optional[int] = Field(default=None, description="Audience rows, None if not produced")
    warnings: List[str] = Field(default_factory=list)
    lastUpdated: Optional[datetime] = None

    @classmethod
    def from_result(cls, newsletter_id: str, result: IngestionResult) -> 'IngestionSummary':
        return cls(
            newsletterId=newsletter_id,
            kind=result.kind,
            posts=len(result.posts),
            growth=len(result.growth) if result.growth is not None else None,
            audience=len(result.audience) if result.audience is not None else None,
            warnings=result.warnings,
            lastUpdated=result.lastUpdated,
        )


class WindowRequest(BaseModel):
    """Body of PUT /analytics/{newsletter}/window."""
    range: DateRangePreset = DateRangePreset.LAST_90_DAYS
    start: Optional[datetime] = None
    end: Optional[datetime] = None


# =============================================================================
# Helpers
# =============================================================================

def _window(
    preset: Optional[DateRangePreset],
    start: Optional[datetime],
    end: Optional[datetime],
) -> Optional[DateWindow]:
    """Resolve query parameters; None means "use the session window"."""
    if preset is None:
        return None
    try:
        return resolve_window(preset, start, end)
    except ValueError as e:
        raise HTTPException(status_code=400, detail={'error': str(e)})


def _no_data(newsletter: str, error: NoDataError) -> HTTPException:
    logger.info(f"No data for {newsletter}: {error}")
    return HTTPException(status_code=404, detail={'error': str(error)})


# =============================================================================
# Ingestion Endpoints
# =============================================================================

@router.post("/{newsletter}/import", response_model=IngestionSummary)
async def import_file(
    newsletter: str,
    sessions: SessionRegistryDep,
    file: UploadFile = File(..., description="CSV or XLSX export"),
) -> IngestionSummary:
    """
    Replace the newsletter's dataset with an uploaded export.

    `.csv` goes through the bulk-text adapter, `.xlsx`/`.xls` through the
    multi-sheet adapter. A failed import leaves the current dataset as is.
    """
    data = await file.read()
    session = await sessions.get(newsletter, create=True)
    result = await session.import_file(file.filename or '', data)
    if not result.success:
        raise http_exception_for_result(result)

    logger.info(f"Imported {file.filename} for {newsletter}: {len(result.posts)} posts")
    return IngestionSummary.from_result(newsletter, result)


@router.post("/{newsletter}/sync", response_model=IngestionSummary)
async def sync(
    newsletter: str,
    sessions: SessionRegistryDep,
    registry: NewsletterRegistryDep,
    client: BeehiivClientDep,
    settings: SettingsDep,
    recent_stats: Optional[int] = Query(
        None,
        alias="recentStats",
        ge=0,
        description="Posts to enrich with per-post stats (default RECENT_STATS_COUNT)",
    ),
) -> IngestionSummary:
    """
    Replace the newsletter's dataset with a fresh upstream sync.

    Raises:
        HTTPException 400: Unknown newsletter
        HTTPException 4xx/5xx: Upstream failure (502 when unreachable)
    """
    try:
        pub_id = await registry.resolve(newsletter)
    except IngestionError as e:
        logger.error(f"Sync rejected for {newsletter}: {e.message}")
        raise http_exception_for(e)

    count = recent_stats if recent_stats is not None else settings.recent_stats_count
    session = await sessions.get(newsletter, create=True)
    result = await session.sync(client, pub_id, count)
    if not result.success:
        raise http_exception_for_result(result)
    return IngestionSummary.from_result(newsletter, result)


@router.put("/{newsletter}/window", response_model=DateWindow)
async def select_window(
    newsletter: str,
    payload: WindowRequest,
    sessions: SessionRegistryDep,
) -> DateWindow:
    """Select the window used when GET routes are called without `range`."""
    session = await sessions.get(newsletter, create=True)
    try:
        return session.set_window(payload.range, payload.start, payload.end)
    except ValueError as e:
        raise HTTPException(status_code=400, detail={'error': str(e)})


# =============================================================================
# View Endpoints
# =============================================================================

@router.get("/{newsletter}/summary", response_model=SummaryResponse)
async def summary(
    newsletter: str,
    sessions: SessionRegistryDep,
    granularity: Granularity = Query(Granularity.MONTH, description="Sparkline bucket size"),
    preset: Optional[DateRangePreset] = Query(None, alias="range"),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
) -> SummaryResponse:
    window = _window(preset, start, end)
    session = await sessions.get(newsletter)
    try:
        return await session.summary(window, granularity)
    except NoDataError as e:
        raise _no_data(newsletter, e)


@router.get("/{newsletter}/series", response_model=MetricSeries)
async def series(
    newsletter: str,
    sessions: SessionRegistryDep,
    metric: MetricName = Query(MetricName.OPEN_RATE),
    granularity: Granularity = Query(Granularity.MONTH),
    preset: Optional[DateRangePreset] = Query(None, alias="range"),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
) -> MetricSeries:
    window = _window(preset, start, end)
    session = await sessions.get(newsletter)
    try:
        return await session.series(metric, granularity, window)
    except NoDataError as e:
        raise _no_data(newsletter, e)


@router.get("/{newsletter}/growth", response_model=List[GrowthPeriod])
async def growth(
    newsletter: str,
    sessions: SessionRegistryDep,
    granularity: Granularity = Query(Granularity.MONTH),
    preset: Optional[DateRangePreset] = Query(None, alias="range"),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
) -> List[GrowthPeriod]:
    window = _window(preset, start, end)
    session = await sessions.get(newsletter)
    try:
        return await session.growth(granularity, window)
    except NoDataError as e:
        raise _no_data(newsletter, e)


@router.get("/{newsletter}/audience", response_model=List[AudiencePeriod])
async def audience(
    newsletter: str,
    sessions: SessionRegistryDep,
    granularity: Granularity = Query(Granularity.MONTH),
    preset: Optional[DateRangePreset] = Query(None, alias="range"),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
) -> List[AudiencePeriod]:
    window = _window(preset, start, end)
    session = await sessions.get(newsletter)
    try:
        return await session.audience(granularity, window)
    except NoDataError as e:
        raise _no_data(newsletter, e)


@router.get("/{newsletter}/insights", response_model=InsightsResponse)
async def insights(
    newsletter: str,
    sessions: SessionRegistryDep,
    settings: SettingsDep,
    metric: MetricName = Query(MetricName.CTR),
    threshold: Optional[float] = Query(None, gt=0, description="|z| anomaly threshold"),
    preset: Optional[DateRangePreset] = Query(None, alias="range"),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
) -> InsightsResponse:
    window = _window(preset, start, end)
    session = await sessions.get(newsletter)
    try:
        return await session.insights(
            metric=metric,
            threshold=threshold if threshold is not None else settings.anomaly_z_threshold,
            window=window,
        )
    except NoDataError as e:
        raise _no_data(newsletter, e)
