'''
Newsletter Pulse Backend Test Suite

Test Modules:
-------------
- test_normalizer.py: Cell parsing (counts, rates, dates, header aliases)
- test_ingestion.py: Bulk-text and workbook adapters, the ingest facade
- test_api_sync.py: Upstream client two-phase fetch and the API sync adapter
  - Batched per-post stats with bounded concurrency
  - Partial failures kept as warnings
- test_aggregation.py: Weighted rates (ratios of sums)
- test_date_filter.py: Inclusive windows and presets
- test_bucketing.py: Day / ISO-week / month buckets, series, sparklines
- test_deltas.py: Half-window deltas and subscriber deltas
- test_insights.py: Baselines, trend, acceleration, anomalies, ranking,
  primary insight
- test_snapshot_store.py: Snapshot JSON, migration, store CRUD
- test_registry.py: Slug prefix resolution and registry rules
- test_session.py: Generation tokens, windows, pipeline views
- test_api.py: FastAPI endpoints with overridden dependencies (integration)

Running Tests:
--------------
    pip install -e ".[test]"
    pytest -v

Configuration:
--------------
See conftest.py for shared fixtures and test configuration.
'''

__all__ = []
