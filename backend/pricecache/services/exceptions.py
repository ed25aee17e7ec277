# backend/pricecache/services/exceptions.py
"""
Service layer exceptions.

These exceptions represent domain-specific errors and contain NO HTTP knowledge.
Callers (web handlers, batch jobs) are responsible for mapping them to responses.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    │   └── InvalidIntervalError
    ├── MarketDataError
    │   ├── ProviderUnavailableError
    │   ├── RateLimitError
    │   └── MaxRetriesExceededError
    └── StoreError

"No data" is not an exception: providers return an empty list.
Coordination store (Redis) failures are never raised from this layer; each
component degrades to a safe default instead.
"""


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ServiceError):
    """
    Raised when input validation fails.

    This is for programmatic validation errors (inverted date range, blank
    symbol, etc.).

    Attributes:
        field: The field that failed validation (optional)
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class InvalidIntervalError(ValidationError):
    """
    Raised when an unsupported sampling interval is requested.
    """

    def __init__(self, interval: str, valid: tuple[str, ...]) -> None:
        self.interval = interval
        super().__init__(
            f"Invalid interval: '{interval}'. Valid options: {', '.join(valid)}",
            field="interval"
        )


# =============================================================================
# MARKET DATA PROVIDER ERRORS
# =============================================================================


class MarketDataError(ServiceError):
    """
    Base exception for market data provider failures.

    Attributes:
        provider: Name of the provider that failed
    """

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)


class ProviderUnavailableError(MarketDataError):
    """
    Raised when the provider fails for a reason other than throttling.

    Examples:
    - Network timeout
    - Server errors (500, 502, 503)
    - Unknown symbol rejected by the provider

    This is NOT retried: the caller decides whether to fall back.
    """

    def __init__(self, provider: str, reason: str) -> None:
        message = f"Provider '{provider}' is unavailable: {reason}"
        super().__init__(message, provider=provider)
        self.reason = reason


class RateLimitError(MarketDataError):
    """
    Raised when the provider (or our own rate governor) signals throttling.

    Covers HTTP 429, "too many requests" responses and Yahoo's crumb/session
    negotiation failures. This is a retryable error (with backoff).

    Attributes:
        retry_after: Seconds to wait before retrying (if known)
    """

    def __init__(self, provider: str, retry_after: int | None = None) -> None:
        message = f"Rate limit exceeded for provider '{provider}'"
        if retry_after:
            message += f" (retry after {retry_after}s)"
        super().__init__(message, provider=provider)
        self.retry_after = retry_after


class MaxRetriesExceededError(MarketDataError):
    """
    Raised when every retry attempt was throttled.

    Attributes:
        attempts: Number of attempts made
    """

    def __init__(self, provider: str, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(
            f"Max retries exceeded for provider '{provider}' after {attempts} attempts",
            provider=provider,
        )


# =============================================================================
# PERSISTENCE ERRORS
# =============================================================================


class StoreError(ServiceError):
    """
    Raised when the time-series store cannot read or persist data.

    This is a hard failure: the cache itself is unusable.

    Attributes:
        operation: Store operation that failed (e.g., "insert_points")
    """

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"Chart store operation '{operation}' failed: {reason}")


__all__ = [
    # Base
    "ServiceError",
    # Validation
    "ValidationError",
    "InvalidIntervalError",
    # Market Data
    "MarketDataError",
    "ProviderUnavailableError",
    "RateLimitError",
    "MaxRetriesExceededError",
    # Store
    "StoreError",
]
