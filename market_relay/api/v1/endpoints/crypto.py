"""
Market Relay - Crypto Subscription Endpoints
Crypto instruments are always served by the crypto provider
"""
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from market_relay.data_providers.adapters.base import DataSource
from market_relay.dependencies import get_market_data_service
from market_relay.schemas.subscription import (
    CryptoSubscribeRequest,
    SubscribeResponse,
    SubscriptionList,
    UnsubscribeResponse,
)
from market_relay.services.market_data_service import MarketDataService

router = APIRouter()


@router.post(
    "/subscribe",
    response_model=SubscribeResponse,
    summary="Subscribe to crypto instruments",
)
async def subscribe_crypto(
    body: CryptoSubscribeRequest,
    service: MarketDataService = Depends(get_market_data_service),
):
    outcome = service.subscribe_crypto(
        body.instrument_ids,
        throttle_seconds=body.throttle_seconds,
        group_id=body.group_id,
    )
    if not outcome.success:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=outcome.to_dict())
    return outcome.to_dict()


@router.delete(
    "/unsubscribe/{code}",
    response_model=UnsubscribeResponse,
    summary="Unsubscribe a crypto instrument",
)
async def unsubscribe_crypto(
    code: str,
    service: MarketDataService = Depends(get_market_data_service),
):
    subscription = service.registry.get(code)
    removed = (
        subscription is not None
        and subscription.provider == DataSource.COIN_MARKET_CAP
        and service.unsubscribe(code)
    )
    return {
        "success": removed,
        "message": (
            f"Successfully unsubscribed from {code}" if removed
            else f"{code} has no crypto subscription"
        ),
        "instrument_id": code,
    }


@router.get(
    "/subscriptions",
    response_model=SubscriptionList,
    summary="List crypto subscriptions",
)
async def list_crypto_subscriptions(
    service: MarketDataService = Depends(get_market_data_service),
):
    return service.list_subscriptions(provider=DataSource.COIN_MARKET_CAP)
