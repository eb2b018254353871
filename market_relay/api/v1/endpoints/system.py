"""
Market Relay - System Endpoints
Component health and effective configuration
"""
from fastapi import APIRouter, Depends

from market_relay.dependencies import get_market_data_service
from market_relay.services.market_data_service import MarketDataService

router = APIRouter()


@router.get(
    "/health/components",
    summary="Get component health",
    description="Circuit breakers, publisher and scheduler aggregated into HEALTHY / DEGRADED / UNHEALTHY.",
)
async def get_component_health(
    service: MarketDataService = Depends(get_market_data_service),
):
    return service.health()


@router.get(
    "/config",
    summary="Get effective configuration",
    description="Non-secret configuration currently in effect.",
)
async def get_config(
    service: MarketDataService = Depends(get_market_data_service),
):
    return service.effective_config()
