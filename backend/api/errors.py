"""
HTTP mapping of the ingestion error taxonomy.

- EmptyInput, MissingRequiredColumn, UnknownNewsletter: 400
- UnparseableFile: 422
- UpstreamHTTPError: the upstream status (502 for transport failures),
  with the upstream body as detail
"""

from fastapi import HTTPException

from backend.core.exceptions import IngestionError, UnparseableFile, UpstreamHTTPError
from backend.models import IngestionResult


def http_exception_for(error: IngestionError) -> HTTPException:
    """HTTPException for a raised IngestionError."""
    if isinstance(error, UpstreamHTTPError):
        return HTTPException(
            status_code=error.status_code,
            detail={'error': error.code, 'details': error.body or error.message},
        )
    return HTTPException(
        status_code=error.status_code,
        detail={'error': error.code, 'details': error.message},
    )


def http_exception_for_result(result: IngestionResult) -> HTTPException:
    """HTTPException for a success=False IngestionResult."""
    if not result.errors:
        return HTTPException(status_code=500, detail={'error': 'IngestionError', 'details': 'Ingestion failed'})

    error = result.errors[0]
    if error.statusCode is not None:
        status_code = error.statusCode
    elif error.code == UnparseableFile.code:
        status_code = UnparseableFile.status_code
    else:
        status_code = IngestionError.status_code
    return HTTPException(status_code=status_code, detail={'error': error.code, 'details': error.message})
