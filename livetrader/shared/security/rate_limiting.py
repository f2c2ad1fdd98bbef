"""
Rate limiting for the HTTP surface.

Uses slowapi. Loop control endpoints (start, stop, manual tick) get a
tighter limit than reads.
"""

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from livetrader.core.config import settings

DEFAULT_RATE_LIMIT = settings.rate_limit_default
CONTROL_RATE_LIMIT = settings.rate_limit_control

limiter = Limiter(key_func=get_remote_address, default_limits=[DEFAULT_RATE_LIMIT])


async def rate_limit_exceeded_handler(
    _request: Request, exc: RateLimitExceeded
) -> JSONResponse:
    """Return a 429 JSON body in the common error shape."""
    return JSONResponse(
        status_code=429,
        content={"error": "Rate limit exceeded", "detail": str(exc.detail)},
    )
