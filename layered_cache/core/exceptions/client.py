"""
Client-Layer Exceptions

Errors raised by the cached API client around the transport.
"""

from layered_cache.core.exceptions.base import LayeredCacheError


class ClientError(LayeredCacheError):
    """Base exception for API client errors."""
    pass


class UpstreamError(ClientError):
    """
    Raised when the upstream answered with a retryable status (429 or 5xx).

    Attributes:
        status_code: HTTP status returned by the upstream
    """

    def __init__(self, message: str, status_code: int, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.details.setdefault("status_code", status_code)
