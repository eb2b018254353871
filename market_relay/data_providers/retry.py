"""
Retry Executor

Bounded retry with exponential backoff, gated by a per-service circuit breaker.
"""
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar
from loguru import logger

from market_relay.data_providers.circuit_breaker import CircuitBreakerRegistry
from market_relay.utils.exceptions import ProviderError, RetryExhaustedError


T = TypeVar('T')


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    retry_delay_base: float = 1.0   # Base delay for exponential backoff (seconds)
    retry_delay_max: float = 30.0   # Maximum retry delay (seconds)


class RetryExecutor:
    """
    Runs an async operation up to `max_retries` times.

    Before every attempt the service's breaker is consulted; an open
    breaker raises CircuitOpenError without running the operation. Each
    attempt's outcome is reported to the breaker. Non-retryable provider
    errors (e.g. an unrecognized response format) are re-raised after the
    first attempt.
    """

    def __init__(
        self,
        breakers: CircuitBreakerRegistry,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.breakers = breakers
        self.config = config or RetryConfig()
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given 1-based attempt."""
        return min(
            self.config.retry_delay_base * (2 ** (attempt - 1)),
            self.config.retry_delay_max,
        )

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        service_name: str,
    ) -> T:
        """
        Execute an operation with retry and circuit breaking.

        Raises:
            CircuitOpenError: breaker open before an attempt
            ResponseFormatError: non-retryable failure
            RetryExhaustedError: every attempt failed
        """
        last_error: Optional[Exception] = None
        max_retries = max(1, self.config.max_retries)

        for attempt in range(1, max_retries + 1):
            self.breakers.acquire(service_name)

            try:
                result = await operation()
            except asyncio.CancelledError:
                self.breakers.release(service_name)
                raise
            except Exception as e:
                self.breakers.record_failure(service_name, str(e))
                if isinstance(e, ProviderError) and not e.retryable:
                    raise
                last_error = e

                if attempt < max_retries:
                    delay = self.backoff_delay(attempt)
                    logger.warning(
                        f"Attempt {attempt}/{max_retries} failed for {service_name}: {e}. "
                        f"Retrying in {delay:.1f}s..."
                    )
                    await self._sleep(delay)
                continue

            self.breakers.record_success(service_name)
            if attempt > 1:
                logger.info(f"{service_name} succeeded on attempt {attempt}")
            return result

        logger.error(f"All {max_retries} attempts failed for {service_name}: {last_error}")
        raise RetryExhaustedError(service_name, max_retries, last_error)
