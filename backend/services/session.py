"""
Analytics Session

Explicit per-newsletter state object: the current dataset (an
IngestionResult), the selected date window, and the pipeline calls bound to
them.

Concurrency rules:
- Every import or sync takes a generation token before it starts. Its result
  is applied only if the token is still the newest, so a slow superseded
  sync can never overwrite a newer dataset.
- An asyncio.Lock guards replacing the dataset and reading it to build a
  payload; a replacement never interleaves with a read.
- A failed ingestion (success=False) never replaces a usable dataset.
- The snapshot is saved before the dataset is installed; a failed save
  leaves the previous dataset in place.

SessionRegistry hands out one session per newsletter id and lazily loads the
persisted snapshot the first time a session is requested. Ids with no
snapshot are cached only once an import, sync or window selection starts.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from starlette.concurrency import run_in_threadpool

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
    SummaryResponse,
)
from backend.services import bucketing, deltas, smart_insights
from backend.services.aggregation import aggregate
from backend.services.api_sync import ingest_api
from backend.services.beehiiv_client import BeehiivClient
from backend.services.date_filter import filter_by_date, filter_month_snapped, resolve_window
from backend.services.ingestion import ingest_upload
from backend.services.snapshot_store import (
    SnapshotStore,
    result_from_snapshot,
    snapshot_from_result,
)

# Configure module logger
logger = logging.getLogger(__name__)

KPI_METRICS = (
    MetricName.OPEN_RATE,
    MetricName.CTR,
    MetricName.VERIFIED_CTR,
    MetricName.DELIVERY_RATE,
    MetricName.UNIQUE_CLICKS,
    MetricName.VERIFIED_CLICKS,
)


class NoDataError(LookupError):
    """The session holds no dataset yet."""


class AnalyticsSession:
    """State and pipeline entry points for one newsletter."""

    def __init__(
        self,
        newsletter_id: str,
        store: SnapshotStore,
        result: Optional[IngestionResult] = None,
        default_range: DateRangePreset = DateRangePreset.ALL,
    ) -> None:
        self.newsletter_id = newsletter_id
        self.store = store
        self._result = result
        # presets are re-resolved on every read so "90d" keeps sliding
        self._preset = default_range
        self._custom = DateWindow()
        self._generation = 0
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Dataset replacement
    # -------------------------------------------------------------------------

    @property
    def generation(self) -> int:
        return self._generation

    def begin(self) -> int:
        """Start an ingestion and return its generation token."""
        self._generation += 1
        return self._generation

    async def apply(self, token: int, result: IngestionResult) -> bool:
        """
        Install `result` if `token` is still current and the result succeeded.

        Persists the new dataset. Returns True when the result was applied.
        """
        async with self._lock:
            if token != self._generation:
                logger.info(
                    f"Discarding stale result for {self.newsletter_id} "
                    f"(generation {token}, current {self._generation})"
                )
                return False
            if not result.success:
                return False
            # a failed save propagates and leaves the previous dataset installed
            await self.store.save(snapshot_from_result(self.newsletter_id, result))
            self._result = result
        return True

    async def import_file(self, filename: str, data: bytes) -> IngestionResult:
        """
        Ingest an uploaded export and apply it if still current.

        Parsing runs in the threadpool so large workbooks do not block the
        event loop.
        """
        token = self.begin()
        result = await run_in_threadpool(ingest_upload, filename, data)
        await self.apply(token, result)
        return result

    async def sync(
        self,
        client: BeehiivClient,
        pub_id: str,
        recent_stats: int,
        now: Optional[datetime] = None,
    ) -> IngestionResult:
        """Run an API sync and apply it if no newer ingestion started meanwhile."""
        token = self.begin()
        result = await ingest_api(client, pub_id, recent_stats, now=now)
        await self.apply(token, result)
        return result

    # -------------------------------------------------------------------------
    # Window
    # -------------------------------------------------------------------------

    @property
    def preset(self) -> DateRangePreset:
        return self._preset

    @property
    def window(self) -> DateWindow:
        if self._preset == DateRangePreset.CUSTOM:
            return self._custom
        return resolve_window(self._preset)

    def set_window(
        self,
        preset: DateRangePreset,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> DateWindow:
        """
        Select the window used by views called without an explicit one.

        Raises:
            ValueError: custom range whose start is after its end
        """
        resolved = resolve_window(preset, start, end, now)
        self._preset = preset
        if preset == DateRangePreset.CUSTOM:
            self._custom = resolved
        return resolved

    async def current(self) -> IngestionResult:
        """
        The dataset currently installed.

        Raises:
            NoDataError: Nothing imported or synced yet
        """
        async with self._lock:
            if self._result is None:
                raise NoDataError(f"No data for newsletter {self.newsletter_id}")
            return self._result

    async def _windowed(self, window: Optional[DateWindow]) -> Tuple[IngestionResult, DateWindow]:
        # an explicit per-call window leaves the session window untouched
        result = await self.current()
        return result, window if window is not None else self.window

    # -------------------------------------------------------------------------
    # Pipeline views
    # -------------------------------------------------------------------------

    async def summary(
        self,
        window: Optional[DateWindow] = None,
        granularity: Granularity = Granularity.MONTH,
    ) -> SummaryResponse:
        """Weighted aggregate, deltas, sparklines and the latest subscriber count."""
        result, window = await self._windowed(window)
        posts = filter_by_date(result.posts, window.start, window.end)
        audience = filter_month_snapped(result.audience or [], window.start, window.end)
        sparklines: Dict[str, List[Optional[float]]] = {
            metric.value: bucketing.sparkline(posts, metric, granularity)
            for metric in KPI_METRICS
        }
        sparklines["activeSubscribers"] = [
            float(value) for value in bucketing.audience_sparkline(audience, granularity)
        ]
        return SummaryResponse(
            newsletterId=self.newsletter_id,
            window=window,
            aggregate=aggregate(posts),
            deltas=deltas.delta_set(posts, audience),
            latestSubscribers=deltas.latest_subscribers(result.audience),
            sparklines=sparklines,
            lastUpdated=result.lastUpdated,
            kind=result.kind,
            warnings=result.warnings,
        )

    async def series(
        self,
        metric: MetricName,
        granularity: Granularity,
        window: Optional[DateWindow] = None,
    ) -> MetricSeries:
        result, window = await self._windowed(window)
        posts = filter_by_date(result.posts, window.start, window.end)
        return bucketing.series(posts, metric, granularity)

    async def growth(
        self,
        granularity: Granularity,
        window: Optional[DateWindow] = None,
    ) -> List[GrowthPeriod]:
        """Growth periods over the month-snapped window."""
        result, window = await self._windowed(window)
        rows = filter_month_snapped(result.growth or [], window.start, window.end)
        return bucketing.bucket_growth(rows, granularity)

    async def audience(
        self,
        granularity: Granularity,
        window: Optional[DateWindow] = None,
    ) -> List[AudiencePeriod]:
        """Audience periods (last reading each) over the month-snapped window."""
        result, window = await self._windowed(window)
        rows = filter_month_snapped(result.audience or [], window.start, window.end)
        return bucketing.bucket_audience(rows, granularity)

    async def insights(
        self,
        metric: MetricName = MetricName.CTR,
        threshold: float = smart_insights.DEFAULT_ANOMALY_THRESHOLD,
        as_of: Optional[datetime] = None,
        window: Optional[DateWindow] = None,
    ) -> InsightsResponse:
        """Baselines, trend, acceleration, anomalies, extremes and the headline insight."""
        result, window = await self._windowed(window)
        posts = sorted(
            filter_by_date(result.posts, window.start, window.end),
            key=lambda p: p.date,
        )
        baselines = smart_insights.calculate_all_baselines(posts, as_of)
        values = [v for v in (getattr(p, metric.value) for p in posts) if v is not None]
        return InsightsResponse(
            newsletterId=self.newsletter_id,
            metric=metric,
            baselines=baselines,
            trend=smart_insights.calculate_trend(values),
            acceleration=smart_insights.detect_acceleration(posts, metric),
            anomalies=smart_insights.detect_anomalies(posts, metric, threshold),
            extremes=smart_insights.performance_extremes(posts, metric),
            primaryInsight=smart_insights.generate_primary_insight(posts, baselines),
            highlights=smart_insights.performance_highlights(posts),
        )


class SessionRegistry:
    """One AnalyticsSession per newsletter id, loaded lazily from the store."""

    def __init__(
        self,
        store: SnapshotStore,
        default_range: DateRangePreset = DateRangePreset.ALL,
    ) -> None:
        self.store = store
        self.default_range = default_range
        self._sessions: Dict[str, AnalyticsSession] = {}
        self._lock = asyncio.Lock()

    async def get(self, newsletter_id: str, create: bool = False) -> AnalyticsSession:
        """
        Session for `newsletter_id`.

        Sessions are cached only when a snapshot exists or `create` is set
        (imports, syncs, window selection). Otherwise an empty, uncached
        session is returned, so read-only lookups of unknown ids never grow
        the registry.
        """
        async with self._lock:
            session = self._sessions.get(newsletter_id)
            if session is not None:
                return session

            snapshot = await self.store.load(newsletter_id)
            result = result_from_snapshot(snapshot) if snapshot is not None else None
            session = AnalyticsSession(newsletter_id, self.store, result, self.default_range)
            if snapshot is not None:
                logger.info(f"Loaded snapshot for {newsletter_id} ({len(snapshot.posts)} posts)")
            if snapshot is not None or create:
                self._sessions[newsletter_id] = session
            return session

    def __len__(self) -> int:
        return len(self._sessions)

    def clear(self) -> None:
        self._sessions.clear()
