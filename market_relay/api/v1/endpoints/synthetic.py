"""
Market Relay - Synthetic Data Endpoints
"""
from fastapi import APIRouter, Depends

from market_relay.dependencies import get_market_data_service
from market_relay.schemas.admin import SyntheticConfigUpdate
from market_relay.services.market_data_service import MarketDataService
from market_relay.utils.exceptions import raise_bad_request

router = APIRouter()


@router.get(
    "/config",
    summary="Get random-walk configuration",
)
async def get_synthetic_config(
    service: MarketDataService = Depends(get_market_data_service),
):
    return service.synthetic_config()


@router.put(
    "/config",
    summary="Update random-walk configuration",
)
async def update_synthetic_config(
    body: SyntheticConfigUpdate,
    service: MarketDataService = Depends(get_market_data_service),
):
    try:
        return service.update_synthetic_config(
            base_price=body.base_price,
            volatility=body.volatility,
            drift=body.drift,
        )
    except ValueError as e:
        raise_bad_request(str(e))
