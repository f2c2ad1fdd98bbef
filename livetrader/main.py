"""
Application entry point.

Creates the FastAPI application and wires together:
- Routers (health, trading)
- Error handlers (centralized domain-to-HTTP mapping)
- Security middleware (headers, rate limiting)
- Logging configuration
- Trading services (stores, control loop, expiry sweeper)

No business logic belongs here.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from livetrader.core.config import settings
from livetrader.interfaces.health import router as health_router
from livetrader.interfaces.trading.dependencies import TradingServices, build_services
from livetrader.interfaces.trading.router import router as trading_router
from livetrader.shared.errors.handlers import register_error_handlers
from livetrader.shared.logging import configure_logging
from livetrader.shared.security.headers import SecurityHeadersMiddleware
from livetrader.shared.security.rate_limiting import (
    limiter,
    rate_limit_exceeded_handler,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build trading services on startup; stop schedulers on shutdown."""
    services: Optional[TradingServices] = getattr(app.state, "trading", None)
    if services is None:
        services = build_services(settings)
        app.state.trading = services

    services.sweeper.start()
    logger.info("%s %s ready.", settings.project_name, settings.version)

    yield

    services.shutdown()
    logger.info("Trading services stopped.")


def create_app(services: Optional[TradingServices] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Pre-built service graph (tests, embedding). Built from
            settings at startup when omitted.

    Returns:
        A fully configured FastAPI application instance.
    """
    configure_logging(level=settings.log_level)

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    if services is not None:
        app.state.trading = services

    # --- Rate Limiting ---
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # --- Security Middleware ---
    app.add_middleware(SecurityHeadersMiddleware)

    # --- Error Handlers ---
    register_error_handlers(app)

    # --- Routers ---
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(trading_router, prefix="/api/v1")

    return app


app = create_app()
