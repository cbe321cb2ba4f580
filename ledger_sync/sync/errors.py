"""
Error taxonomy for the sync engine.

Remote API failures are translated into these classes at the client
boundary so the retry executor and the coordinator never inspect
HTTP details.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all sync engine errors."""

    kind = "sync_error"


class ConfigMissing(SyncError):
    """A user has no token or course page configured."""

    kind = "config_missing"


class RemoteNotFound(SyncError):
    """Root page, database or page missing (or not shared with the integration)."""

    kind = "remote_not_found"


class RemoteUnauthorized(SyncError):
    """Token rejected or revoked."""

    kind = "remote_unauthorized"


class RateLimited(SyncError):
    """HTTP 429 from the remote API."""

    kind = "rate_limited"

    def __init__(self, message: str = "Rate limited", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class TransientRemoteError(SyncError):
    """Network failure, timeout or 5xx response."""

    kind = "transient"


class InvalidRemoteRequest(SyncError):
    """4xx other than 401/403/404/429. Never retried."""

    kind = "invalid_request"


class RetryExhausted(SyncError):
    """A retryable operation kept failing until the attempt budget ran out."""

    kind = "retry_exhausted"

    def __init__(self, last_error: Exception, attempts: int):
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.last_error = last_error
        self.attempts = attempts


RETRYABLE_ERRORS: tuple[type[SyncError], ...] = (RateLimited, TransientRemoteError)


def is_retryable(error: BaseException) -> bool:
    """Return True for errors worth another attempt."""
    return isinstance(error, RETRYABLE_ERRORS)
