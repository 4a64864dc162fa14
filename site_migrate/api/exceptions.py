"""HTTP errors raised by the API."""

from fastapi import HTTPException
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_410_GONE,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from ..errors import (
    ChunkError,
    ConflictError,
    FormatError,
    IntegrityError,
    JobCancelledError,
    JobNotFoundError,
    MigrationError,
    NotFoundError,
    WriteError,
)


class MigrationAPIError(HTTPException):
    """Base exception for site-migrate API errors."""
    pass


class UnauthorizedError(MigrationAPIError):
    def __init__(self):
        super().__init__(HTTP_401_UNAUTHORIZED, "Invalid or missing API key")


class ResourceNotFoundError(MigrationAPIError):
    def __init__(self, message: str):
        super().__init__(HTTP_404_NOT_FOUND, message)


class JobConflictError(MigrationAPIError):
    def __init__(self, message: str):
        super().__init__(HTTP_409_CONFLICT, message)


class ProviderUnavailableError(MigrationAPIError):
    def __init__(self, provider: str):
        super().__init__(HTTP_503_SERVICE_UNAVAILABLE, f"{provider} is not configured")


# Most specific classes first
_STATUS_CODES = (
    (JobCancelledError, HTTP_410_GONE),
    (JobNotFoundError, HTTP_404_NOT_FOUND),
    (ChunkError, HTTP_400_BAD_REQUEST),
    (NotFoundError, HTTP_404_NOT_FOUND),
    (ConflictError, HTTP_409_CONFLICT),
    (IntegrityError, HTTP_422_UNPROCESSABLE_ENTITY),
    (FormatError, HTTP_422_UNPROCESSABLE_ENTITY),
    (WriteError, HTTP_500_INTERNAL_SERVER_ERROR),
)


def to_http_exception(error: MigrationError) -> MigrationAPIError:
    for error_cls, status_code in _STATUS_CODES:
        if isinstance(error, error_cls):
            return MigrationAPIError(status_code, str(error))
    return MigrationAPIError(HTTP_400_BAD_REQUEST, str(error))
