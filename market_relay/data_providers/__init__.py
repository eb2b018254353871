"""
Data Providers Package

Upstream adapters plus the gating and resilience infrastructure
(rate gate, circuit breakers, retry, suffix routing) used by the fetch cycle.
"""
from market_relay.data_providers.rate_gate import RateGate, GateEntry
from market_relay.data_providers.circuit_breaker import (
    CircuitBreakerRegistry,
    BreakerConfig,
    CircuitState,
)
from market_relay.data_providers.retry import RetryExecutor, RetryConfig
from market_relay.data_providers.source_router import (
    DataSourceRouter,
    RoutingConfig,
    determine_provider,
)

__all__ = [
    # Rate Gate
    "RateGate",
    "GateEntry",
    # Circuit Breaker
    "CircuitBreakerRegistry",
    "BreakerConfig",
    "CircuitState",
    # Retry
    "RetryExecutor",
    "RetryConfig",
    # Routing
    "DataSourceRouter",
    "RoutingConfig",
    "determine_provider",
]
