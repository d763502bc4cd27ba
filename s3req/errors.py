from __future__ import annotations

from typing import Any

__all__ = (
    "S3ConfigError",
    "S3DecodeError",
    "S3Error",
    "S3ResponseError",
)


class S3Error(Exception):
    """Base class for all s3req errors."""


class S3ConfigError(S3Error, ValueError):
    """Raised when required configuration (credentials, bucket, key...) is missing or invalid."""


class S3DecodeError(S3Error, ValueError):
    """Raised when an S3 XML body cannot be decoded."""


class S3ResponseError(S3Error):
    """Error raised by `Response.raise_for_status` on a non-2xx S3 response."""

    def __init__(self, message: str, status_code: int, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)
