"""Errors raised by the remote catalog and title-lookup clients."""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for failures talking to a remote service."""

    default_message = "Remote service request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class InvalidURLError(ServiceError):
    default_message = "Invalid URL for remote request"


class InvalidResponseError(ServiceError):
    default_message = "Invalid response from remote service"


class DecodingError(ServiceError):
    default_message = "Failed to decode remote service response"


class RateLimitedError(ServiceError):
    default_message = "Rate limit exceeded. Please try again later."


class NotFoundError(ServiceError):
    default_message = "Anime not found"


class ServerError(ServiceError):
    """A non-2xx status that is neither 404 nor 429."""

    def __init__(self, status_code: int, message: str | None = None):
        self.status_code = status_code
        super().__init__(message or f"Server error with code: {status_code}")


class NetworkError(ServiceError):
    """Transport-level failure; the original exception is kept as ``cause``."""

    def __init__(self, cause: BaseException, message: str | None = None):
        self.cause = cause
        super().__init__(message or f"Network error: {cause}")


class NoResultsFoundError(ServiceError):
    default_message = "No matching titles found"


__all__ = [
    "DecodingError",
    "InvalidResponseError",
    "InvalidURLError",
    "NetworkError",
    "NoResultsFoundError",
    "NotFoundError",
    "RateLimitedError",
    "ServerError",
    "ServiceError",
]
