"""
Health check router.

Liveness/readiness probe. Reports version and whether the live trading
loop is currently running.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from livetrader.core.config import settings
from livetrader.interfaces.trading.schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns application health status, version and loop state.",
)
def health_check(request: Request) -> HealthResponse:
    """Return current application health status."""
    services = getattr(request.app.state, "trading", None)
    return HealthResponse(
        status="ok",
        version=settings.version,
        live_trading=bool(services and services.loop.is_running),
        as_of=datetime.now(timezone.utc).date(),
    )
