"""
Newsletter Pulse Backend Package.

FastAPI service layer for newsletter analytics: ingests email-platform
exports (CSV, multi-sheet XLSX) or syncs from the Beehiiv API, and serves
weighted aggregates, period buckets, deltas and statistical insights.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database, errors and dependencies
    - models: Pydantic schemas and enums
    - services: Ingestion and analytics pipeline
"""

__version__ = "1.0.0"
