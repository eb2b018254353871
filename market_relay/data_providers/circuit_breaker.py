"""
Circuit Breaker

Per-service three-state breaker (closed / open / half-open).
Trips after a run of consecutive failures, rejects calls while open,
and lets a single probe through once the open period has elapsed.
"""
import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional
from loguru import logger

from market_relay.utils.exceptions import CircuitOpenError


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "CLOSED"        # Normal operation, requests allowed
    OPEN = "OPEN"            # Failures exceeded threshold, requests blocked
    HALF_OPEN = "HALF_OPEN"  # One probe allowed


@dataclass
class BreakerConfig:
    """Circuit breaker configuration for a service."""
    failure_threshold: int = 5     # Consecutive failures before opening
    open_seconds: float = 60.0     # Time before allowing a probe


@dataclass
class BreakerMetrics:
    """Breaker state for a service."""
    service: str
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    opened_at: Optional[float] = None
    probe_in_flight: bool = False
    last_failure_time: Optional[datetime] = None
    last_error: Optional[str] = None
    total_failures: int = 0
    total_successes: int = 0


class CircuitBreakerRegistry:
    """
    Independent circuit breakers keyed by service name.

    Open -> half-open happens either when a caller checks the breaker after
    the open period or when the recovery timer fires, whichever comes
    first. Both paths key on the `opened_at` of the trip, so the loser is a
    no-op.
    """

    def __init__(
        self,
        default_config: Optional[BreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        schedule_recovery: bool = True,
    ):
        self._default_config = default_config or BreakerConfig()
        self._configs: dict[str, BreakerConfig] = {}
        self._metrics: dict[str, BreakerMetrics] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._clock = clock
        self._schedule_recovery = schedule_recovery

    def configure(self, service: str, config: Optional[BreakerConfig] = None) -> None:
        """Configure the breaker for a service."""
        self._configs[service] = config or self._default_config
        self._get_or_create_metrics(service)
        logger.info(f"Circuit breaker configured for {service}")

    def _config(self, service: str) -> BreakerConfig:
        return self._configs.get(service, self._default_config)

    def _get_or_create_metrics(self, service: str) -> BreakerMetrics:
        if service not in self._metrics:
            self._metrics[service] = BreakerMetrics(service=service)
        return self._metrics[service]

    # ==================== Gate ====================

    def _check_recovery(self, service: str, metrics: BreakerMetrics) -> None:
        if metrics.state != CircuitState.OPEN or metrics.opened_at is None:
            return
        elapsed = self._clock() - metrics.opened_at
        if elapsed >= self._config(service).open_seconds:
            self._half_open(service, metrics, metrics.opened_at)

    def can_request(self, service: str) -> bool:
        """
        Check if a request would be allowed, without claiming the probe slot.
        """
        metrics = self._metrics.get(service)
        if not metrics:
            return True
        self._check_recovery(service, metrics)
        if metrics.state == CircuitState.OPEN:
            return False
        if metrics.state == CircuitState.HALF_OPEN:
            return not metrics.probe_in_flight
        return True

    def acquire(self, service: str) -> None:
        """
        Claim permission for one call.

        Raises:
            CircuitOpenError: if the breaker is open, or half-open with the
                probe already taken
        """
        metrics = self._get_or_create_metrics(service)
        self._check_recovery(service, metrics)

        if metrics.state == CircuitState.OPEN:
            raise CircuitOpenError(service)
        if metrics.state == CircuitState.HALF_OPEN:
            if metrics.probe_in_flight:
                raise CircuitOpenError(service)
            metrics.probe_in_flight = True
            logger.info(f"Circuit for {service} allowing probe request")

    def release(self, service: str) -> None:
        """Give back a claimed probe slot for a call that never finished."""
        metrics = self._metrics.get(service)
        if metrics and metrics.state == CircuitState.HALF_OPEN and metrics.probe_in_flight:
            metrics.probe_in_flight = False
            logger.info(f"Circuit for {service} released abandoned probe")

    # ==================== Outcomes ====================

    def record_success(self, service: str) -> None:
        """Record a successful call."""
        metrics = self._get_or_create_metrics(service)
        metrics.total_successes += 1
        metrics.success_count += 1
        metrics.failure_count = 0

        if metrics.state == CircuitState.HALF_OPEN:
            self._close(service, metrics)

    def record_failure(self, service: str, error: Optional[str] = None) -> None:
        """Record a failed call."""
        metrics = self._get_or_create_metrics(service)
        config = self._config(service)

        metrics.total_failures += 1
        metrics.failure_count += 1
        metrics.success_count = 0
        metrics.last_failure_time = datetime.utcnow()
        metrics.last_error = error

        logger.warning(f"Request failed for {service} ({metrics.failure_count} consecutive): {error}")

        if metrics.state == CircuitState.HALF_OPEN:
            # Failed probe restarts the open period
            self._open(service, metrics)
        elif metrics.state == CircuitState.CLOSED:
            if metrics.failure_count >= config.failure_threshold:
                self._open(service, metrics)

    # ==================== Transitions ====================

    def _open(self, service: str, metrics: BreakerMetrics) -> None:
        metrics.state = CircuitState.OPEN
        metrics.opened_at = self._clock()
        metrics.probe_in_flight = False
        logger.error(
            f"Circuit breaker OPENED for {service} after {metrics.failure_count} failures"
        )
        self._start_recovery_timer(service, metrics.opened_at)

    def _half_open(self, service: str, metrics: BreakerMetrics, token: float) -> None:
        if metrics.state != CircuitState.OPEN or metrics.opened_at != token:
            return
        metrics.state = CircuitState.HALF_OPEN
        metrics.probe_in_flight = False
        logger.info(f"Circuit for {service} transitioning to half-open")

    def _close(self, service: str, metrics: BreakerMetrics) -> None:
        metrics.state = CircuitState.CLOSED
        metrics.opened_at = None
        metrics.probe_in_flight = False
        metrics.failure_count = 0
        metrics.success_count = 0
        self._cancel_timer(service)
        logger.info(f"Circuit breaker CLOSED for {service} - recovered")

    def _start_recovery_timer(self, service: str, token: float) -> None:
        if not self._schedule_recovery:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: check-on-access handles recovery
            return
        self._cancel_timer(service)
        self._timers[service] = loop.call_later(
            self._config(service).open_seconds,
            self._on_recovery_timer,
            service,
            token,
        )

    def _on_recovery_timer(self, service: str, token: float) -> None:
        self._timers.pop(service, None)
        metrics = self._metrics.get(service)
        if metrics:
            self._half_open(service, metrics, token)

    def _cancel_timer(self, service: str) -> None:
        handle = self._timers.pop(service, None)
        if handle:
            handle.cancel()

    def reset(self, service: str) -> None:
        """Force a breaker back to closed with zeroed counters."""
        metrics = self._get_or_create_metrics(service)
        self._close(service, metrics)
        logger.info(f"Circuit breaker reset for {service}")

    def close_all(self) -> None:
        for service in list(self._timers):
            self._cancel_timer(service)

    # ==================== Status ====================

    def state(self, service: str) -> CircuitState:
        metrics = self._metrics.get(service)
        if not metrics:
            return CircuitState.CLOSED
        self._check_recovery(service, metrics)
        return metrics.state

    def is_healthy(self, service: str) -> bool:
        return self.state(service) == CircuitState.CLOSED

    def services(self) -> list[str]:
        return list(self._metrics.keys())

    def open_circuits(self) -> list[str]:
        return [s for s in self.services() if self.state(s) == CircuitState.OPEN]

    def get_status(self, service: str) -> dict:
        """Get breaker status for a service."""
        state = self.state(service)
        metrics = self._metrics.get(service)
        config = self._config(service)
        if not metrics:
            return {
                "service": service,
                "state": state.value,
                "failure_count": 0,
                "success_count": 0,
                "last_failure_time": None,
                "is_healthy": True,
            }
        return {
            "service": service,
            "state": state.value,
            "failure_count": metrics.failure_count,
            "success_count": metrics.success_count,
            "last_failure_time": (
                metrics.last_failure_time.isoformat() if metrics.last_failure_time else None
            ),
            "last_error": metrics.last_error,
            "is_healthy": state == CircuitState.CLOSED,
            "failure_threshold": config.failure_threshold,
            "open_seconds": config.open_seconds,
            "totals": {
                "failures": metrics.total_failures,
                "successes": metrics.total_successes,
            },
        }

    def get_all_status(self) -> dict[str, dict]:
        """Get breaker status for all tracked services."""
        return {service: self.get_status(service) for service in self.services()}

    def get_summary(self) -> dict:
        all_status = self.get_all_status()
        open_count = sum(1 for s in all_status.values() if s["state"] == CircuitState.OPEN.value)
        return {
            "total": len(all_status),
            "healthy": sum(1 for s in all_status.values() if s["is_healthy"]),
            "open": open_count,
            "breakers": all_status,
        }
