"""
Market Relay - Dependencies
Dependency injection for FastAPI endpoints
"""
from fastapi import Request, HTTPException, status

from market_relay.services.market_data_service import MarketDataService


def get_market_data_service(request: Request) -> MarketDataService:
    """
    Market data service dependency.

    The service is built once in the application lifespan and held on
    `app.state`.

    Raises:
        HTTPException: 503 if the service has not been started
    """
    service = getattr(request.app.state, "market_data_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Market data service not initialized",
        )
    return service
