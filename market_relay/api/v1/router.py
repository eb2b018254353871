"""
Market Relay - API v1 Router
"""
from fastapi import APIRouter

from market_relay.api.v1.endpoints import (
    subscriptions, crypto, datasource, scheduler, status, synthetic, system
)

api_router = APIRouter()


# API v1 root endpoint
@api_router.get("/", tags=["API Info"])
async def api_root():
    """API v1 root - returns version info."""
    return {
        "api": "Market Relay",
        "version": "v1",
        "status": "operational"
    }


# Include all endpoint routers
api_router.include_router(subscriptions.router, prefix="/market-data", tags=["Subscriptions"])
api_router.include_router(crypto.router, prefix="/crypto", tags=["Crypto"])
api_router.include_router(datasource.router, prefix="/datasource", tags=["Data Sources"])
api_router.include_router(scheduler.router, prefix="/scheduler", tags=["Scheduler"])
api_router.include_router(status.router, prefix="/status", tags=["Status"])
api_router.include_router(synthetic.router, prefix="/synthetic", tags=["Synthetic Data"])
api_router.include_router(system.router, tags=["System"])
