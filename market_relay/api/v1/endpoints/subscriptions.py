"""
Market Relay - Subscription Endpoints
Create, remove and list equity subscriptions
"""
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from market_relay.dependencies import get_market_data_service
from market_relay.schemas.subscription import (
    SubscribeRequestSchema,
    SubscribeResponse,
    SubscriptionList,
    ThrottleUpdateRequest,
    UnsubscribeResponse,
)
from market_relay.services.market_data_service import MarketDataService
from market_relay.subscriptions.registry import SubscribeRequest
from market_relay.utils.exceptions import raise_not_found

router = APIRouter()


@router.post(
    "/subscribe",
    response_model=SubscribeResponse,
    summary="Subscribe to instruments",
    description="Subscribe a batch of instruments. Each id is routed independently; "
                "partial success is reported in the response.",
)
async def subscribe(
    body: SubscribeRequestSchema,
    service: MarketDataService = Depends(get_market_data_service),
):
    """Subscribe to market data for a batch of instruments."""
    outcome = service.subscribe(
        SubscribeRequest(
            instrument_ids=body.instrument_ids,
            throttle_seconds=body.throttle_seconds,
            provider=body.provider,
            granularities=body.granularities,
            group_id=body.group_id,
        )
    )
    if not outcome.success:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=outcome.to_dict())
    return outcome.to_dict()


@router.delete(
    "/unsubscribe/{instrument_id}",
    response_model=UnsubscribeResponse,
    summary="Unsubscribe an instrument",
)
async def unsubscribe(
    instrument_id: str,
    service: MarketDataService = Depends(get_market_data_service),
):
    """Remove a subscription. Unknown ids are acknowledged as a no-op."""
    removed = service.unsubscribe(instrument_id)
    return {
        "success": removed,
        "message": (
            f"Successfully unsubscribed from {instrument_id}" if removed
            else f"{instrument_id} was not subscribed"
        ),
        "instrument_id": instrument_id,
    }


@router.get(
    "/subscriptions",
    response_model=SubscriptionList,
    summary="List active subscriptions",
)
async def list_subscriptions(
    service: MarketDataService = Depends(get_market_data_service),
):
    return service.list_subscriptions()


@router.put(
    "/subscriptions/{instrument_id}/throttle",
    summary="Change an instrument's throttle",
)
async def update_throttle(
    instrument_id: str,
    body: ThrottleUpdateRequest,
    service: MarketDataService = Depends(get_market_data_service),
):
    if not service.registry.is_subscribed(instrument_id):
        raise_not_found(f"{instrument_id} is not subscribed")
    return service.update_throttle(instrument_id, body.throttle_seconds)
