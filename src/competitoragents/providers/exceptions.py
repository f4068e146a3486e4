"""Custom exceptions for provider adapters.

Configuration errors escape ``invoke``; ``ProviderCallError`` subclasses are
raised by transports and turned into failed ``ProviderResult`` objects by the
adapter base class.
"""

from __future__ import annotations

from .models import ErrorKind


class ProviderError(Exception):
    """Base exception for provider adapter errors."""

    pass


class ProviderConfigurationError(ProviderError):
    """Raised when an adapter cannot be built or used as configured."""

    pass


class APIKeyMissingError(ProviderConfigurationError):
    """Raised when an API key is required but missing or malformed."""

    pass


class ProviderNotFoundError(ProviderConfigurationError):
    """Raised when no adapter implementation exists for a provider id."""

    pass


class ProviderCallError(ProviderError):
    """A single provider call failed; ``kind`` classifies the failure."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        cost_usd: float = 0.0,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.cost_usd = cost_usd


class RateLimitedError(ProviderCallError):
    """Raised when the provider throttles the request."""

    kind = ErrorKind.RATE_LIMITED


class ProviderTimeoutError(ProviderCallError):
    """Raised when the provider does not answer in time."""

    kind = ErrorKind.TIMEOUT


class ProviderNetworkError(ProviderCallError):
    """Raised on connection failures and upstream 5xx responses."""

    kind = ErrorKind.NETWORK


class UnauthorizedError(ProviderCallError):
    """Raised when the provider rejects the credentials."""

    kind = ErrorKind.UNAUTHORIZED


class InvalidResponseError(ProviderCallError):
    """Raised when the provider payload cannot be interpreted."""

    kind = ErrorKind.INVALID_RESPONSE


def error_for_status(status_code: int, message: str) -> ProviderCallError:
    """Map an HTTP status code returned by a provider to a call error."""
    if status_code in (401, 403):
        return UnauthorizedError(message, status_code=status_code)
    if status_code == 429:
        return RateLimitedError(message, status_code=status_code)
    if status_code in (408, 504):
        return ProviderTimeoutError(message, status_code=status_code)
    if status_code >= 500:
        return ProviderNetworkError(message, status_code=status_code)
    return ProviderCallError(message, status_code=status_code)
