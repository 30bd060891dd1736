"""
Pytest test module for AnalyticsSession and SessionRegistry.

Test Categories:
- TestDatasetReplacement: Generation tokens, failed results, persistence
- TestWindow: Preset selection and per-call windows
- TestViews: Summary, growth, audience and insights payloads
- TestSessionRegistry: Lazy snapshot loading, caching only on write
"""

import threading
from datetime import datetime, timezone

import pytest

from backend.models import (
    DateRangePreset,
    DateWindow,
    Granularity,
    IngestionResult,
    MetricName,
    SourceKind,
)
from backend.services import session as session_module
from backend.services.beehiiv_client import BeehiivClient
from backend.services.session import AnalyticsSession, NoDataError, SessionRegistry
from backend.services.snapshot_store import MemorySnapshotStore, snapshot_from_result
from backend.tests.conftest import at_noon

pytestmark = pytest.mark.asyncio

NOW = datetime(2024, 6, 1, 12, tzinfo=timezone.utc)


class FailingSaveStore(MemorySnapshotStore):
    """Store whose writes always fail, as when the database drops out."""

    async def save(self, snapshot) -> None:
        raise ConnectionError("database unavailable")


@pytest.fixture
def dataset(scenario_posts, growth_rows, audience_rows) -> IngestionResult:
    return IngestionResult(
        kind=SourceKind.MULTI_SHEET,
        posts=scenario_posts,
        growth=growth_rows,
        audience=audience_rows,
        lastUpdated=NOW,
    )


@pytest.fixture
def session(memory_store, dataset) -> AnalyticsSession:
    return AnalyticsSession('memorandum-abc', memory_store, dataset)


class TestDatasetReplacement:
    """Tests for applying ingestion results."""

    async def test_empty_session_has_no_data(self, memory_store):
        empty = AnalyticsSession('n', memory_store)
        with pytest.raises(NoDataError):
            await empty.summary()

    async def test_import_applies_and_persists(self, memory_store, bulk_csv):
        session = AnalyticsSession('n', memory_store)
        result = await session.import_file('export.csv', bulk_csv.encode('utf-8'))

        assert result.success is True
        assert len((await session.current()).posts) == 3
        assert (await memory_store.load('n')).kind == SourceKind.BULK_TEXT

    async def test_failed_import_keeps_dataset(self, session, memory_store):
        result = await session.import_file('broken.csv', b'Title\nOnly a title\n')

        assert result.success is False
        assert len((await session.current()).posts) == 4
        assert await memory_store.load('memorandum-abc') is None

    async def test_stale_result_is_discarded(self, session, bulk_csv):
        slow_sync = session.begin()
        await session.import_file('export.csv', bulk_csv.encode('utf-8'))
        stale = IngestionResult(kind=SourceKind.API_SYNC, posts=[])

        assert await session.apply(slow_sync, stale) is False
        assert (await session.current()).kind == SourceKind.BULK_TEXT

    async def test_generation_increases(self, session):
        first = session.begin()
        second = session.begin()
        assert second == first + 1 == session.generation

    async def test_sync_through_fake_upstream(self, memory_store, fake_upstream):
        session = AnalyticsSession('roko-basilisk-1', memory_store)
        async with BeehiivClient('k', 'https://api.test/v2', transport=fake_upstream) as client:
            result = await session.sync(client, 'pub_roko_000111', 3, now=NOW)

        assert result.success is True
        current = await session.current()
        assert current.kind == SourceKind.API_SYNC
        assert len(current.posts) == 10

    async def test_failed_save_keeps_previous_dataset(self, dataset, bulk_csv):
        session = AnalyticsSession('memorandum-abc', FailingSaveStore(), dataset)
        with pytest.raises(ConnectionError):
            await session.import_file('export.csv', bulk_csv.encode('utf-8'))

        current = await session.current()
        assert current.kind == SourceKind.MULTI_SHEET
        assert len(current.posts) == 4

    async def test_failed_save_leaves_empty_session_empty(self, bulk_csv):
        session = AnalyticsSession('n', FailingSaveStore())
        with pytest.raises(ConnectionError):
            await session.import_file('export.csv', bulk_csv.encode('utf-8'))

        with pytest.raises(NoDataError):
            await session.current()

    async def test_import_parses_off_event_loop(self, memory_store, bulk_csv, monkeypatch):
        parsing_threads = []
        real_ingest = session_module.ingest_upload

        def recording_ingest(filename, data):
            parsing_threads.append(threading.get_ident())
            return real_ingest(filename, data)

        monkeypatch.setattr(session_module, 'ingest_upload', recording_ingest)
        session = AnalyticsSession('n', memory_store)
        result = await session.import_file('export.csv', bulk_csv.encode('utf-8'))

        assert result.success is True
        assert parsing_threads and parsing_threads[0] != threading.get_ident()


class TestWindow:
    """Tests for the session date window."""

    async def test_default_is_unbounded(self, session):
        assert session.preset == DateRangePreset.ALL
        assert session.window == DateWindow()

    async def test_trailing_preset_resolves_on_read(self, session):
        session.set_window(DateRangePreset.LAST_30_DAYS)

        assert session.preset == DateRangePreset.LAST_30_DAYS
        assert session.window.start is not None
        assert session.window.end is not None

    async def test_custom_window_filters_summary(self, session):
        session.set_window(DateRangePreset.CUSTOM, at_noon('2024-02-01'), at_noon('2024-02-29'))
        summary = await session.summary()

        assert summary.aggregate.count == 2
        assert summary.aggregate.openRate == pytest.approx(35.0)

    async def test_invalid_custom_window_keeps_previous(self, session):
        with pytest.raises(ValueError):
            session.set_window(DateRangePreset.CUSTOM, at_noon('2024-03-01'), at_noon('2024-01-01'))
        assert session.preset == DateRangePreset.ALL

    async def test_explicit_window_leaves_session_window(self, session):
        window = DateWindow(start=at_noon('2024-01-01'), end=at_noon('2024-01-31'))
        summary = await session.summary(window)

        assert summary.aggregate.openRate == pytest.approx(50.0)
        assert session.preset == DateRangePreset.ALL


class TestViews:
    """Tests for the pipeline views."""

    async def test_summary(self, session):
        summary = await session.summary()

        assert summary.newsletterId == 'memorandum-abc'
        assert summary.aggregate.openRate == pytest.approx(44.0)
        assert summary.latestSubscribers == 1250
        assert summary.deltas.openRate.value == pytest.approx(-30.0)
        assert summary.lastUpdated == NOW
        assert summary.sparklines['openRate'] == [pytest.approx(50.0), pytest.approx(35.0)]
        assert summary.sparklines['activeSubscribers'] == [1000.0, 1100.0, 1250.0]

    async def test_series(self, session):
        result = await session.series(MetricName.UNIQUE_CLICKS, Granularity.MONTH)
        assert result.values == [200.0, 110.0]

    async def test_growth_and_audience(self, session):
        growth = await session.growth(Granularity.MONTH)
        audience = await session.audience(Granularity.MONTH)

        assert [g.net for g in growth] == [100, 60, 140]
        assert [a.activeSubscribers for a in audience] == [1100, 1250]

    async def test_insights(self, session):
        insights = await session.insights(MetricName.CTR, as_of=at_noon('2024-02-25'))

        assert insights.metric == MetricName.CTR
        assert insights.baselines['30d'].dataPoints == 2
        assert insights.anomalies == []
        assert insights.acceleration is None
        # scenario posts carry counts only, so there is no per-post CTR to rank
        assert insights.extremes.top == []
        assert insights.primaryInsight.text == 'Analyzing 4 editions with 2 in the last 30 days'


class TestSessionRegistry:
    """Tests for per-newsletter session handout."""

    async def test_loads_persisted_snapshot(self, memory_store, dataset):
        await memory_store.save(snapshot_from_result('memorandum-abc', dataset))
        registry = SessionRegistry(memory_store)

        session = await registry.get('memorandum-abc')
        assert len((await session.current()).posts) == 4
        assert await registry.get('memorandum-abc') is session

    async def test_unknown_id_gets_empty_session(self, memory_store):
        registry = SessionRegistry(memory_store, DateRangePreset.LAST_90_DAYS)
        session = await registry.get('new-one')

        assert session.preset == DateRangePreset.LAST_90_DAYS
        with pytest.raises(NoDataError):
            await session.current()

    async def test_clear(self, memory_store):
        registry = SessionRegistry(memory_store)
        first = await registry.get('a', create=True)
        registry.clear()

        assert len(registry) == 0
        assert await registry.get('a', create=True) is not first

    async def test_read_only_lookups_are_not_cached(self, memory_store):
        registry = SessionRegistry(memory_store)
        for i in range(50):
            session = await registry.get(f'unknown-{i}')
            with pytest.raises(NoDataError):
                await session.summary()

        assert len(registry) == 0

    async def test_create_caches_empty_session(self, memory_store, bulk_csv):
        registry = SessionRegistry(memory_store)
        session = await registry.get('fresh', create=True)
        await session.import_file('export.csv', bulk_csv.encode('utf-8'))

        assert len(registry) == 1
        assert await registry.get('fresh') is session
