"""
Ingestion error taxonomy.

Terminal failures raised by the ingestion adapters. Each carries a stable
``code`` so the ingestion facade can report it inside an IngestionResult and
the API layer can map it to an HTTP status without inspecting messages.

Non-fatal problems (a missing optional sheet, a failed per-post detail
fetch) are never raised; they are accumulated as warnings on the result.
The ``PARTIAL_FETCH_FAILURE`` code names that warning class.
"""

from typing import Optional


PARTIAL_FETCH_FAILURE = 'PartialFetchFailure'


class IngestionError(Exception):
    """Base class for terminal ingestion failures."""

    code: str = 'IngestionError'
    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class EmptyInput(IngestionError):
    """The raw input has no header row or no data rows."""

    code = 'EmptyInput'


class MissingRequiredColumn(IngestionError):
    """A required column (the date column) is absent from the header row."""

    code = 'MissingRequiredColumn'

    def __init__(self, column: str):
        super().__init__(f'Missing required column: "{column}"')
        self.column = column


class UnparseableFile(IngestionError):
    """The file could not be decoded as delimited text or as a workbook."""

    code = 'UnparseableFile'
    status_code = 422

    def __init__(self, reason: str):
        super().__init__(f'Unable to parse file: {reason}')
        self.reason = reason


class UpstreamHTTPError(IngestionError):
    """
    The upstream API answered with a non-2xx status, or could not be reached.

    Transport failures (no response at all) use status 502.
    """

    code = 'UpstreamHTTPError'

    def __init__(self, status_code: int, body: Optional[str] = None):
        detail = f': {body[:200]}' if body else ''
        super().__init__(f'Upstream request failed with HTTP {status_code}{detail}')
        self.status_code = status_code
        self.body = body


class UnknownNewsletter(IngestionError):
    """The newsletter slug does not resolve to an upstream publication id."""

    code = 'UnknownNewsletter'

    def __init__(self, slug: str):
        super().__init__(f'Unknown newsletter: {slug}')
        self.slug = slug
