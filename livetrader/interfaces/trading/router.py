"""
FastAPI router for the trading bounded context.

All routes delegate to use cases or the control loop. No business logic here.
Input validation is handled by Pydantic schemas.
Error mapping is handled by centralized error handlers.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Request

from livetrader.application.trading.cancel_signal import CancelSignalUseCase
from livetrader.application.trading.close_trade import CloseTradeUseCase
from livetrader.application.trading.create_signal import CreateSignalUseCase
from livetrader.application.trading.dtos import CloseTradeCommand, CreateSignalCommand
from livetrader.application.trading.expire_signals import SignalExpirySweeper
from livetrader.application.trading.get_portfolio_summary import (
    GetPortfolioSummaryUseCase,
)
from livetrader.application.trading.live_trading_loop import (
    LiveTradingControlLoop,
    LoopStatus,
    OutcomeStatus,
)
from livetrader.domain.trading.entities import RiskLimits, Signal
from livetrader.domain.trading.errors import SignalNotFoundError
from livetrader.domain.trading.ports import SignalRepository
from livetrader.interfaces.trading.dependencies import (
    get_cancel_signal_use_case,
    get_close_trade_use_case,
    get_control_loop,
    get_create_signal_use_case,
    get_expiry_sweeper,
    get_portfolio_summary_use_case,
    get_signal_repository,
)
from livetrader.interfaces.trading.schemas import (
    ClosedTradeResponse,
    CloseTradeRequest,
    CreateSignalRequest,
    ErrorResponse,
    ExpireSignalsResponse,
    LiveStatusResponse,
    PortfolioResponse,
    RiskLimitsSchema,
    SignalOutcomeItem,
    SignalResponse,
    StartLiveTradingRequest,
    TickResponse,
)
from livetrader.shared.security.rate_limiting import CONTROL_RATE_LIMIT, limiter

router = APIRouter(prefix="/trading", tags=["trading"])


def _status_response(status: LoopStatus) -> LiveStatusResponse:
    limits = None
    if status.limits is not None:
        limits = RiskLimitsSchema(
            symbols=sorted(status.limits.allowed_symbols),
            min_confidence=status.limits.min_confidence,
            max_positions=status.limits.max_positions,
            risk_per_trade_percent=status.limits.risk_per_trade_percent,
            max_daily_loss_percent=status.limits.max_daily_loss_percent,
            max_position_value=status.limits.max_position_value,
        )
    return LiveStatusResponse(
        is_active=status.is_active,
        state=status.state.value,
        queue_depth=status.queue_depth,
        ticks=status.ticks,
        last_tick_at=status.last_tick_at,
        halted_accounts=list(status.halted_accounts),
        limits=limits,
    )


def _signal_response(signal: Signal) -> SignalResponse:
    return SignalResponse(
        id=signal.id,
        account_id=signal.account_id,
        symbol=signal.symbol,
        direction=signal.direction.value,
        price=signal.price,
        confidence=signal.confidence,
        timeframe=signal.timeframe,
        stop_loss=signal.stop_loss,
        take_profit=signal.take_profit,
        status=signal.status.value,
        expires_at=signal.expires_at,
        created_at=signal.created_at,
    )


@router.post(
    "/live/start",
    response_model=LiveStatusResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Start live trading",
    description="Validate risk limits and start the periodic control loop.",
)
@limiter.limit(CONTROL_RATE_LIMIT)
def start_live_trading(
    request: Request,
    body: StartLiveTradingRequest,
    loop: LiveTradingControlLoop = Depends(get_control_loop),
) -> LiveStatusResponse:
    """Start the control loop with the requested limits."""
    limits = RiskLimits(
        min_confidence=body.min_confidence,
        max_positions=body.max_positions,
        risk_per_trade_percent=body.risk_per_trade_percent,
        allowed_symbols=frozenset(s.upper() for s in body.symbols),
        max_daily_loss_percent=body.max_daily_loss_percent,
        max_position_value=body.max_position_value,
    )
    loop.start(limits)
    return _status_response(loop.status())


@router.post(
    "/live/stop",
    response_model=LiveStatusResponse,
    summary="Stop live trading",
    description="Stop the control loop. The signal in flight completes.",
)
@limiter.limit(CONTROL_RATE_LIMIT)
def stop_live_trading(
    request: Request,
    loop: LiveTradingControlLoop = Depends(get_control_loop),
) -> LiveStatusResponse:
    """Stop the control loop. Safe to call when already stopped."""
    loop.stop()
    return _status_response(loop.status())


@router.get(
    "/live/status",
    response_model=LiveStatusResponse,
    summary="Live trading status",
)
def live_trading_status(
    loop: LiveTradingControlLoop = Depends(get_control_loop),
) -> LiveStatusResponse:
    """Return whether the loop is active and how many signals are queued."""
    return _status_response(loop.status())


@router.post(
    "/live/tick",
    response_model=TickResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    summary="Run one tick now",
    description="Run a single control loop tick synchronously with the active limits.",
)
@limiter.limit(CONTROL_RATE_LIMIT)
def run_tick(
    request: Request,
    loop: LiveTradingControlLoop = Depends(get_control_loop),
) -> TickResponse:
    """Process eligible signals once and report what happened to each."""
    report = loop.run_tick()
    return TickResponse(
        started_at=report.started_at,
        finished_at=report.finished_at,
        expired=report.expired,
        eligible=report.eligible,
        executed=report.count(OutcomeStatus.EXECUTED),
        rejected=report.count(OutcomeStatus.REJECTED),
        failed=report.count(OutcomeStatus.FAILED),
        skipped=report.count(OutcomeStatus.SKIPPED),
        outcomes=[
            SignalOutcomeItem(
                signal_id=o.signal_id,
                account_id=o.account_id,
                status=o.status.value,
                reason=o.reason,
                detail=o.detail,
                trade_id=o.trade_id,
            )
            for o in report.outcomes
        ],
    )


@router.post(
    "/signals",
    response_model=SignalResponse,
    status_code=201,
    responses={422: {"model": ErrorResponse}},
    summary="Publish a signal",
)
def create_signal(
    body: CreateSignalRequest,
    use_case: CreateSignalUseCase = Depends(get_create_signal_use_case),
) -> SignalResponse:
    """Store a new ACTIVE signal."""
    signal = use_case.execute(
        CreateSignalCommand(
            account_id=body.account_id,
            symbol=body.symbol,
            direction=body.direction,
            price=body.price,
            confidence=body.confidence,
            timeframe=body.timeframe,
            stop_loss=body.stop_loss,
            take_profit=body.take_profit,
            expires_at=body.expires_at,
        )
    )
    return _signal_response(signal)


@router.get(
    "/signals/{signal_id}",
    response_model=SignalResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get a signal",
)
def get_signal(
    signal_id: UUID,
    signal_repo: SignalRepository = Depends(get_signal_repository),
) -> SignalResponse:
    signal = signal_repo.get_by_id(signal_id)
    if signal is None:
        raise SignalNotFoundError(str(signal_id))
    return _signal_response(signal)


@router.post(
    "/signals/{signal_id}/cancel",
    response_model=SignalResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Cancel a signal",
)
def cancel_signal(
    signal_id: UUID,
    use_case: CancelSignalUseCase = Depends(get_cancel_signal_use_case),
) -> SignalResponse:
    """Cancel an ACTIVE signal; terminal signals cannot change."""
    return _signal_response(use_case.execute(signal_id))


@router.post(
    "/signals/expire",
    response_model=ExpireSignalsResponse,
    summary="Expire overdue signals now",
)
def expire_signals(
    sweeper: SignalExpirySweeper = Depends(get_expiry_sweeper),
) -> ExpireSignalsResponse:
    return ExpireSignalsResponse(expired=sweeper.sweep())


@router.post(
    "/trades/{trade_id}/close",
    response_model=ClosedTradeResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Close an open position",
)
def close_trade(
    trade_id: UUID,
    body: CloseTradeRequest,
    use_case: CloseTradeUseCase = Depends(get_close_trade_use_case),
) -> ClosedTradeResponse:
    """Close a filled position at the given exit price and book its P&L."""
    result = use_case.execute(
        CloseTradeCommand(trade_id=trade_id, exit_price=body.exit_price, fees=body.fees)
    )
    return ClosedTradeResponse(
        trade_id=result.trade_id,
        symbol=result.symbol,
        exit_price=result.exit_price,
        realized_pnl=result.realized_pnl,
        pnl_percentage=result.pnl_percentage,
    )


@router.get(
    "/portfolios/{account_id}",
    response_model=PortfolioResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Portfolio summary",
)
def get_portfolio(
    account_id: str,
    use_case: GetPortfolioSummaryUseCase = Depends(get_portfolio_summary_use_case),
) -> PortfolioResponse:
    summary = use_case.execute(account_id)
    return PortfolioResponse(
        account_id=summary.account_id,
        total_balance=summary.total_balance,
        available_balance=summary.available_balance,
        locked_balance=summary.locked_balance,
        total_pnl=summary.total_pnl,
        daily_pnl=summary.daily_pnl,
        active_positions=summary.active_positions,
        total_trades=summary.total_trades,
        winning_trades=summary.winning_trades,
        win_rate=summary.win_rate,
        max_drawdown=summary.max_drawdown,
        sharpe_ratio=summary.sharpe_ratio,
    )
