"""
Market Relay - Status Endpoints
Subscription counts, circuit breakers and rate gates
"""
from fastapi import APIRouter, Depends

from market_relay.dependencies import get_market_data_service
from market_relay.services.market_data_service import MarketDataService
from market_relay.utils.exceptions import raise_not_found

router = APIRouter()


@router.get(
    "",
    summary="Get relay status",
    description="Per-provider subscription counts, circuit breaker summary and rate gate summary.",
)
async def get_status(
    service: MarketDataService = Depends(get_market_data_service),
):
    return service.get_status()


@router.get(
    "/circuit-breakers",
    summary="Get circuit breaker status",
)
async def get_circuit_breakers(
    service: MarketDataService = Depends(get_market_data_service),
):
    return service.breakers.get_summary()


@router.post(
    "/circuit-breakers/{breaker}/reset",
    summary="Reset a circuit breaker",
)
async def reset_circuit_breaker(
    breaker: str,
    service: MarketDataService = Depends(get_market_data_service),
):
    result = service.reset_circuit_breaker(breaker)
    if result is None:
        raise_not_found(f"No circuit breaker for {breaker}")
    return result


@router.get(
    "/rate-gates",
    summary="Get rate gate status",
)
async def get_rate_gates(
    service: MarketDataService = Depends(get_market_data_service),
):
    return service.rate_gate.get_status()
