"""
Market Relay - Services Package
"""
from market_relay.services.market_data_service import (
    MarketDataService,
    HealthStatus,
    ComponentHealth,
)

__all__ = [
    "MarketDataService",
    "HealthStatus",
    "ComponentHealth",
]
