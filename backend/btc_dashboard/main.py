"""Bitcoin Dashboard FastAPI Application.

Aggregates Bitcoin market, candle, blockchain, supply and global market
data from several public providers into one cached snapshot, served over
REST and streamed to dashboard clients over WebSocket.

Run with ``python -m btc_dashboard.main`` or
``uvicorn btc_dashboard.main:create_app --factory``.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routers import bitcoin, health
from .routers import websocket as ws_router
from .services.config import AppSettings, ConfigValidationException, config_service
from .services.dashboard import DashboardServices

logger = logging.getLogger(__name__)


def load_settings() -> AppSettings:
    """Validate the config file and build settings. Exits on invalid config."""
    try:
        config_service.load_and_validate()
        logger.info("Configuration validated successfully")
    except ConfigValidationException as e:
        logger.critical(f"FATAL: {e}")
        logger.critical("Server cannot start with invalid configuration.")
        sys.exit(1)
    except OSError as e:
        logger.warning(f"Could not load config file: {e}")
        logger.warning("Using default configuration")

    return config_service.get_settings()


def configure_logging(settings: AppSettings) -> None:
    logging.basicConfig(level=settings.log_level, format=settings.log_format)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    services: Optional[DashboardServices] = getattr(app.state, "services", None)
    if services is None:
        services = DashboardServices(app.state.settings)
        app.state.services = services

    await services.start()
    logger.info("Bitcoin Dashboard backend started")

    yield

    logger.info("Initiating graceful shutdown...")
    await services.stop()
    logger.info("Graceful shutdown complete")


def create_app(
    settings: Optional[AppSettings] = None,
    services: Optional[DashboardServices] = None,
) -> FastAPI:
    """Build the FastAPI application.

    ``services`` may be supplied pre-built; otherwise the lifespan builds
    them from ``settings``.
    """
    if settings is None:
        if services is not None:
            settings = services.settings
        else:
            settings = load_settings()
            configure_logging(settings)

    app = FastAPI(
        title="Bitcoin Dashboard API",
        description="Resilient multi-source Bitcoin data aggregator",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router, prefix="/api", tags=["Health"])
    app.include_router(bitcoin.router, prefix="/api/bitcoin", tags=["Bitcoin"])
    app.include_router(ws_router.router, prefix="/api", tags=["WebSocket"])

    @app.get("/")
    async def root():
        """Root endpoint redirect to docs."""
        return {"message": "Bitcoin Dashboard API", "docs": "/docs"}

    return app


if __name__ == "__main__":
    import uvicorn

    settings = load_settings()
    configure_logging(settings)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
