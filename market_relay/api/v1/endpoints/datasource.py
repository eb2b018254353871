"""
Market Relay - Data Source Endpoints
Routing configuration and per-instrument provider overrides
"""
from fastapi import APIRouter, Depends

from market_relay.dependencies import get_market_data_service
from market_relay.schemas.admin import RoutingUpdateRequest, SwitchProviderRequest
from market_relay.services.market_data_service import MarketDataService

router = APIRouter()


@router.get(
    "/status",
    summary="Get data source status",
    description="Routing configuration, subscriptions grouped by provider and adapter health.",
)
async def get_datasource_status(
    service: MarketDataService = Depends(get_market_data_service),
):
    return service.datasource_status()


@router.put(
    "/routing",
    summary="Replace suffix routing",
    description="Takes effect on the next fetch cycle. An empty list disables that provider for auto-routed instruments.",
)
async def update_routing(
    body: RoutingUpdateRequest,
    service: MarketDataService = Depends(get_market_data_service),
):
    return service.update_routing(body.real_time_suffixes, body.delayed_suffixes)


@router.post(
    "/stock",
    summary="Switch provider for subscribed instruments",
)
async def switch_stock_provider(
    body: SwitchProviderRequest,
    service: MarketDataService = Depends(get_market_data_service),
):
    result = service.switch_provider(body.instrument_ids, body.provider)
    return {
        "provider": body.provider.value if body.provider else "auto",
        **result,
    }
