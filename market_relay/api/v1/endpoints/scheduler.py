"""
Market Relay - Scheduler Endpoints
"""
from fastapi import APIRouter, Depends

from market_relay.dependencies import get_market_data_service
from market_relay.schemas.admin import IntervalResponse, IntervalUpdateRequest
from market_relay.services.market_data_service import MarketDataService

router = APIRouter()


@router.get(
    "/status",
    summary="Get scheduler status",
    description="Tick interval, batching cursor and per-provider due counts.",
)
async def get_scheduler_status(
    service: MarketDataService = Depends(get_market_data_service),
):
    return service.scheduler_status()


@router.get(
    "/interval",
    response_model=IntervalResponse,
    summary="Get fetch interval",
)
async def get_fetch_interval(
    service: MarketDataService = Depends(get_market_data_service),
):
    interval = service.scheduler.interval_seconds
    return {
        "interval_seconds": interval,
        "estimated_cycles_per_hour": 3600 // interval,
    }


@router.post(
    "/interval",
    response_model=IntervalResponse,
    summary="Update fetch interval",
    description="Reschedules the live job. Out-of-range values are rejected with 400.",
)
async def update_fetch_interval(
    body: IntervalUpdateRequest,
    service: MarketDataService = Depends(get_market_data_service),
):
    result = service.update_fetch_interval(body.interval_seconds)
    return {
        **result,
        "estimated_cycles_per_hour": 3600 // result["interval_seconds"],
    }
