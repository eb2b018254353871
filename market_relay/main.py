"""
Market Relay - Main Application Entry Point
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from market_relay.config import settings
from market_relay.api.v1.router import api_router
from market_relay.services.market_data_service import MarketDataService
from market_relay.utils.exceptions import (
    MarketRelayException,
    InvalidIntervalError,
    UnroutableInstrumentError,
    SubscriptionNotFoundError,
)
from market_relay.utils.logger import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events handler."""
    # Startup
    setup_logging()
    logger.info(f"🚀 Starting {settings.APP_NAME}...")

    service = getattr(app.state, "market_data_service", None) or MarketDataService(settings)
    app.state.market_data_service = service

    await service.start()
    logger.info(
        f"✅ Publisher: {'redis' if settings.BUS_ENABLED else 'simulated'} mode"
    )
    logger.info(
        f"📊 Routing: real-time={service.router.config.real_time_suffixes}, "
        f"delayed={service.router.config.delayed_suffixes}"
    )
    logger.info(f"✅ {settings.APP_NAME} started successfully!")

    yield

    # Shutdown
    logger.info(f"🛑 Shutting down {settings.APP_NAME}...")
    await service.stop()
    logger.info("👋 Goodbye!")


def register_exception_handlers(app: FastAPI) -> None:
    """Map the relay's exceptions to HTTP responses."""

    @app.exception_handler(InvalidIntervalError)
    @app.exception_handler(UnroutableInstrumentError)
    async def bad_request_handler(request: Request, exc: MarketRelayException):
        logger.warning(f"Rejected {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": exc.code, "detail": exc.message, "details": exc.details},
        )

    @app.exception_handler(SubscriptionNotFoundError)
    async def not_found_handler(request: Request, exc: SubscriptionNotFoundError):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": exc.code, "detail": exc.message, "details": exc.details},
        )

    @app.exception_handler(MarketRelayException)
    async def relay_exception_handler(request: Request, exc: MarketRelayException):
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"error": exc.code, "detail": exc.message},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "INTERNAL_ERROR", "detail": "Internal server error"},
        )


def create_application(service: MarketDataService | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        description="Subscription-driven market data relay: fetch, normalize and publish quotes",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    if service is not None:
        app.state.market_data_service = service

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Include API router
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Liveness endpoint for load balancers."""
        return {
            "status": "Up",
            "app": settings.APP_NAME,
            "version": "1.0.0"
        }

    return app


# Create the application instance
app = create_application()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "market_relay.main:app",
        host=settings.BACKEND_HOST,
        port=settings.BACKEND_PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
