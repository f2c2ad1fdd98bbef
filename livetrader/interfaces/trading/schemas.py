"""
Pydantic schemas for trading API request/response validation.

These schemas enforce input validation and define the API contract.
Shape and range checks live here; trading rules (minimum confidence to
start, risk bounds) are enforced by the control loop and surface as
INVALID_CONFIG errors.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

SYMBOL_DESCRIPTION = "Trading pair, e.g. BTCUSDT"
SYMBOL_PATTERN = r"^[A-Z0-9]+$"
SYMBOL_MIN_LEN = 2
SYMBOL_MAX_LEN = 20


class StartLiveTradingRequest(BaseModel):
    """Request schema for starting the control loop.

    Attributes:
        symbols: Symbols the loop may trade.
        min_confidence: Minimum signal confidence (60-100).
        max_positions: Maximum simultaneously open positions per account.
        risk_per_trade_percent: Share of available balance risked per trade.
        max_daily_loss_percent: Daily loss that halts new trades.
        max_position_value: Cap on a single position's value.
    """

    symbols: list[str] = Field(..., description="Allowed trading pairs")
    min_confidence: Decimal = Field(default=Decimal("70"))
    max_positions: int = Field(default=3)
    risk_per_trade_percent: Decimal = Field(default=Decimal("2"))
    max_daily_loss_percent: Decimal = Field(default=Decimal("5"))
    max_position_value: Decimal = Field(default=Decimal("5000"))


class RiskLimitsSchema(BaseModel):
    """Risk limits of the running loop."""

    symbols: list[str]
    min_confidence: Decimal
    max_positions: int
    risk_per_trade_percent: Decimal
    max_daily_loss_percent: Decimal
    max_position_value: Decimal


class LiveStatusResponse(BaseModel):
    """Response schema for the control loop status."""

    is_active: bool
    state: str
    queue_depth: int
    ticks: int
    last_tick_at: Optional[datetime] = None
    halted_accounts: list[str] = Field(default_factory=list)
    limits: Optional[RiskLimitsSchema] = None


class SignalOutcomeItem(BaseModel):
    """What happened to one signal during a tick."""

    signal_id: UUID
    account_id: str
    status: str
    reason: Optional[str] = None
    detail: str = ""
    trade_id: Optional[UUID] = None


class TickResponse(BaseModel):
    """Response schema for a manually triggered tick."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    expired: int
    eligible: int
    executed: int
    rejected: int
    failed: int
    skipped: int
    outcomes: list[SignalOutcomeItem]


class CreateSignalRequest(BaseModel):
    """Request schema for publishing a signal."""

    account_id: str = Field(..., min_length=1, max_length=64)
    symbol: str = Field(
        ...,
        min_length=SYMBOL_MIN_LEN,
        max_length=SYMBOL_MAX_LEN,
        pattern=SYMBOL_PATTERN,
        description=SYMBOL_DESCRIPTION,
    )
    direction: Literal["BUY", "SELL", "HOLD"]
    price: Decimal = Field(..., gt=0)
    confidence: Decimal = Field(..., ge=0, le=100)
    timeframe: str = Field(default="1h", min_length=1, max_length=10)
    stop_loss: Optional[Decimal] = Field(default=None, gt=0)
    take_profit: Optional[Decimal] = Field(default=None, gt=0)
    expires_at: Optional[datetime] = None


class SignalResponse(BaseModel):
    """Response schema for a stored signal."""

    id: UUID
    account_id: str
    symbol: str
    direction: str
    price: Decimal
    confidence: Decimal
    timeframe: str
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    status: str
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ExpireSignalsResponse(BaseModel):
    """Response schema for a manual expiry sweep."""

    expired: int


class CloseTradeRequest(BaseModel):
    """Request schema for closing an open position."""

    exit_price: Decimal = Field(..., gt=0)
    fees: Decimal = Field(default=Decimal("0"), ge=0)


class ClosedTradeResponse(BaseModel):
    """Response schema for a closed position."""

    trade_id: UUID
    symbol: str
    exit_price: Decimal
    realized_pnl: Decimal
    pnl_percentage: Optional[Decimal] = None


class PortfolioResponse(BaseModel):
    """Response schema for an account's portfolio summary."""

    account_id: str
    total_balance: Decimal
    available_balance: Decimal
    locked_balance: Decimal
    total_pnl: Decimal
    daily_pnl: Decimal
    active_positions: int
    total_trades: int
    winning_trades: int
    win_rate: Decimal
    max_drawdown: Decimal
    sharpe_ratio: Decimal


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    live_trading: bool
    as_of: date


class ErrorResponse(BaseModel):
    """Standard error response returned by all error handlers."""

    error: str
    detail: Optional[str] = None
