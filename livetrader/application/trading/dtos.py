"""
Data Transfer Objects for the trading application layer.

DTOs carry data between the interface and application layers.
They are plain dataclasses with no behavior.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID


@dataclass(frozen=True)
class CreateSignalCommand:
    """Input DTO for publishing a new signal.

    Attributes:
        account_id: Account the signal belongs to.
        symbol: Trading pair, e.g. ``BTCUSDT``.
        direction: ``BUY``, ``SELL`` or ``HOLD``.
        price: Reference price at signal time.
        confidence: Confidence score (0-100).
        timeframe: Timeframe label the signal was produced on.
        stop_loss: Optional stop loss price.
        take_profit: Optional take profit price.
        expires_at: Optional expiry; None means the signal never expires.
    """

    account_id: str
    symbol: str
    direction: str
    price: Decimal
    confidence: Decimal
    timeframe: str
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class CloseTradeCommand:
    """Input DTO for manually closing an open position.

    Attributes:
        trade_id: The OPEN, filled BUY trade to close.
        exit_price: Price the position was exited at.
        fees: Fees charged on the exit.
    """

    trade_id: UUID
    exit_price: Decimal
    fees: Decimal = Decimal("0")


@dataclass(frozen=True)
class ClosedTradeResult:
    """Output DTO for a closed position.

    Attributes:
        trade_id: ID of the closed trade.
        symbol: Trading pair.
        exit_price: Exit price.
        realized_pnl: Realized profit and loss, net of exit fees.
        pnl_percentage: Realized P&L relative to the cost basis.
    """

    trade_id: UUID
    symbol: str
    exit_price: Decimal
    realized_pnl: Decimal
    pnl_percentage: Optional[Decimal]


@dataclass(frozen=True)
class PortfolioSummary:
    """Output DTO for an account's portfolio and performance figures.

    Attributes:
        account_id: Account identifier.
        total_balance: Total account value.
        available_balance: Cash free for new positions.
        locked_balance: Value held in open positions.
        total_pnl: Cumulative realized P&L.
        daily_pnl: Realized P&L of the current day.
        active_positions: Number of open positions.
        total_trades: Number of closed round trips.
        winning_trades: Closed round trips with positive P&L.
        win_rate: winning_trades / total_trades, in percent.
        max_drawdown: Largest drop from peak total balance, in percent.
        sharpe_ratio: Mean over standard deviation of per-trade returns.
    """

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
