"""
Centralized error handlers for FastAPI.

Maps domain-specific errors to HTTP responses.
No stack traces or internal details are exposed to clients.
All error responses share the ``{"error": ..., "detail": ...}`` shape.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from livetrader.domain.trading.errors import (
    CallTimeoutError,
    DuplicateTradeError,
    InvalidConfigError,
    InvalidStatusTransitionError,
    InvariantViolationError,
    PortfolioNotFoundError,
    SignalNotFoundError,
    TradeNotFoundError,
    TradingDomainError,
)

logger = logging.getLogger(__name__)

HTTP_400 = 400
HTTP_404 = 404
HTTP_409 = 409
HTTP_422 = 422
HTTP_500 = 500


def _error_response(status_code: int, error: str, detail: str | None = None) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: dict[str, str | None] = {"error": error}
    if detail:
        body["detail"] = detail
    return JSONResponse(status_code=status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    """Register all domain error handlers on the FastAPI application.

    Args:
        app: The FastAPI application instance.
    """

    @app.exception_handler(InvalidConfigError)
    async def handle_invalid_config(
        _request: Request, exc: InvalidConfigError
    ) -> JSONResponse:
        """Handle rejected live trading configurations."""
        logger.warning("Invalid live trading config: %s", exc.reason)
        return _error_response(HTTP_400, exc.code, exc.reason)

    @app.exception_handler(SignalNotFoundError)
    async def handle_signal_not_found(
        _request: Request, exc: SignalNotFoundError
    ) -> JSONResponse:
        logger.warning("Signal not found: %s", exc.signal_id)
        return _error_response(HTTP_404, "Signal not found")

    @app.exception_handler(TradeNotFoundError)
    async def handle_trade_not_found(
        _request: Request, exc: TradeNotFoundError
    ) -> JSONResponse:
        logger.warning("Trade not found: %s", exc.trade_id)
        return _error_response(HTTP_404, "Trade not found")

    @app.exception_handler(PortfolioNotFoundError)
    async def handle_portfolio_not_found(
        _request: Request, exc: PortfolioNotFoundError
    ) -> JSONResponse:
        logger.warning("Portfolio not found: %s", exc.account_id)
        return _error_response(HTTP_404, "Portfolio not found")

    @app.exception_handler(InvalidStatusTransitionError)
    async def handle_invalid_transition(
        _request: Request, exc: InvalidStatusTransitionError
    ) -> JSONResponse:
        """Handle attempts to move a terminal signal or trade."""
        logger.info("Rejected transition: %s", exc.message)
        return _error_response(HTTP_409, exc.code, exc.message)

    @app.exception_handler(DuplicateTradeError)
    async def handle_duplicate_trade(
        _request: Request, exc: DuplicateTradeError
    ) -> JSONResponse:
        logger.warning("Duplicate execution request: %s", exc.key)
        return _error_response(HTTP_409, exc.code)

    @app.exception_handler(CallTimeoutError)
    async def handle_timeout(
        _request: Request, exc: CallTimeoutError
    ) -> JSONResponse:
        logger.error("Collaborator timeout: %s", exc.message)
        return _error_response(HTTP_500, exc.code, "Upstream call timed out")

    @app.exception_handler(InvariantViolationError)
    async def handle_invariant_violation(
        _request: Request, exc: InvariantViolationError
    ) -> JSONResponse:
        """Handle ledger invariant violations. Details stay in the logs."""
        logger.critical("Invariant violation surfaced to API: %s", exc.detail)
        return _error_response(HTTP_500, exc.code)

    @app.exception_handler(ValueError)
    async def handle_value_error(
        _request: Request, exc: ValueError
    ) -> JSONResponse:
        """Handle invalid input caught by use cases after schema validation."""
        logger.info("Invalid request value: %s", exc)
        return _error_response(HTTP_422, "Invalid request", str(exc))

    @app.exception_handler(TradingDomainError)
    async def handle_trading_domain(
        _request: Request, exc: TradingDomainError
    ) -> JSONResponse:
        """Catch-all for unhandled trading domain errors."""
        logger.error("Unhandled trading domain error: %s", exc.message)
        return _error_response(HTTP_500, "Internal server error")

    @app.exception_handler(Exception)
    async def handle_unexpected(
        _request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all for unexpected errors. Never exposes internals."""
        logger.exception("Unexpected error: %s", type(exc).__name__)
        return _error_response(HTTP_500, "Internal server error")
