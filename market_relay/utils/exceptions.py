"""
Market Relay - Custom Exceptions
Application-specific exceptions with HTTP error handling
"""
from typing import Optional, Any, Dict, Sequence
from fastapi import HTTPException, status


class MarketRelayException(Exception):
    """Base exception for Market Relay."""

    def __init__(
        self,
        message: str = "An error occurred",
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


# =========================
# Configuration Exceptions
# =========================

class InvalidIntervalError(MarketRelayException):
    """Throttle or tick interval outside the allowed bounds."""

    def __init__(self, seconds: Any, minimum: int = 1, maximum: int = 3600):
        super().__init__(
            message=f"Interval must be between {minimum} and {maximum} seconds, got {seconds}",
            code="INVALID_INTERVAL",
            details={"seconds": seconds, "min": minimum, "max": maximum},
        )


class UnroutableInstrumentError(MarketRelayException):
    """No routing suffix matches the instrument id."""

    def __init__(
        self,
        instrument_id: str,
        real_time_suffixes: Sequence[str] = (),
        delayed_suffixes: Sequence[str] = (),
    ):
        self.instrument_id = instrument_id
        super().__init__(
            message=(
                f"Cannot determine data source for {instrument_id}. "
                f"Real-time suffixes: {list(real_time_suffixes)}, "
                f"delayed suffixes: {list(delayed_suffixes)}"
            ),
            code="UNROUTABLE_INSTRUMENT",
            details={
                "instrument_id": instrument_id,
                "real_time_suffixes": list(real_time_suffixes),
                "delayed_suffixes": list(delayed_suffixes),
            },
        )


class SubscriptionNotFoundError(MarketRelayException):
    """No active subscription or gate entry for the key."""

    def __init__(self, key: str):
        super().__init__(
            message=f"No active subscription for '{key}'",
            code="SUBSCRIPTION_NOT_FOUND",
            details={"key": key},
        )


# =========================
# Upstream Provider Exceptions
# =========================

class ProviderError(MarketRelayException):
    """Base exception for upstream provider errors."""

    retryable = True

    def __init__(self, provider: str, message: str, code: str = "PROVIDER_ERROR", **details):
        self.provider = provider
        super().__init__(
            message=f"[{provider}] {message}",
            code=code,
            details={"provider": provider, **details},
        )


class UpstreamError(ProviderError):
    """Transport or HTTP level failure from a provider."""

    def __init__(self, provider: str, status: Optional[int] = None, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(
            provider,
            f"Upstream error (status={status}): {body[:200]}",
            code="UPSTREAM_ERROR",
            status=status,
        )


class ResponseFormatError(ProviderError):
    """Payload shape not recognized. Indicates an upstream contract change."""

    retryable = False

    def __init__(self, provider: str, message: str = "Unrecognized response format"):
        super().__init__(provider, message, code="RESPONSE_FORMAT_ERROR")


# =========================
# Resilience Exceptions
# =========================

class CircuitOpenError(MarketRelayException):
    """Circuit breaker is open for the service."""

    def __init__(self, service: str):
        self.service = service
        super().__init__(
            message=f"Circuit breaker is OPEN for {service}",
            code="CIRCUIT_OPEN",
            details={"service": service},
        )


class RetryExhaustedError(MarketRelayException):
    """All retry attempts failed; wraps the last underlying error."""

    def __init__(self, service: str, attempts: int, last_error: Optional[Exception] = None):
        self.service = service
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            message=f"Operation failed for {service} after {attempts} attempts: {last_error}",
            code="RETRY_EXHAUSTED",
            details={"service": service, "attempts": attempts},
        )


# =========================
# HTTP Exception Helpers
# =========================

def raise_not_found(message: str = "Resource not found"):
    """Raise 404 Not Found exception."""
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=message
    )


def raise_bad_request(message: str = "Bad request"):
    """Raise 400 Bad Request exception."""
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=message
    )
