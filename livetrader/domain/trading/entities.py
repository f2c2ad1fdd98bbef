"""
Domain entities for the trading bounded context.

Entities represent core business objects with identity and lifecycle.
They contain no framework imports and no IO operations.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from livetrader.domain.trading.errors import InvariantViolationError

ZERO = Decimal("0")
QUANTITY_STEP = Decimal("0.00000001")
MONEY_STEP = Decimal("0.00000001")
PERCENT_STEP = Decimal("0.01")
BALANCE_TOLERANCE = Decimal("0.00000001")


def quantize_quantity(value: Decimal) -> Decimal:
    """Round a quantity down to the storage precision (8 dp)."""
    return value.quantize(QUANTITY_STEP, rounding=ROUND_DOWN)


def quantize_money(value: Decimal) -> Decimal:
    """Round a monetary amount to the storage precision (8 dp)."""
    return value.quantize(MONEY_STEP)


class Direction(Enum):
    """Direction of a signal."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class OrderSide(Enum):
    """Side of an order or trade."""

    BUY = "BUY"
    SELL = "SELL"


class OrderKind(Enum):
    """Order type submitted to the venue."""

    MARKET = "MARKET"
    LIMIT = "LIMIT"


class SignalStatus(Enum):
    """Lifecycle status of a signal.

    Only ``ACTIVE`` may transition; every other status is terminal.
    """

    ACTIVE = "ACTIVE"
    EXECUTED = "EXECUTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not SignalStatus.ACTIVE

    def can_transition_to(self, target: "SignalStatus") -> bool:
        """Return True if ``self -> target`` is a legal transition."""
        return self is SignalStatus.ACTIVE and target.is_terminal


class TradeStatus(Enum):
    """Lifecycle status of a trade record.

    ``CLOSING`` marks a position claimed by one closer; only the
    claimant may move it to ``CLOSED`` or release it back to ``OPEN``.
    """

    OPEN = "OPEN"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class LoopState(Enum):
    """State of a live trading control loop."""

    STOPPED = "STOPPED"
    RUNNING = "RUNNING"


class FailureKind(Enum):
    """Top-level failure taxonomy surfaced by the live trading core."""

    INVALID_CONFIG = "INVALID_CONFIG"
    RISK_REJECTED = "RISK_REJECTED"
    INVALID_STOP_DISTANCE = "INVALID_STOP_DISTANCE"
    EXECUTION_FAILURE = "EXECUTION_FAILURE"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"


class RejectionReason(Enum):
    """Reason a signal failed a risk gate."""

    NON_TRADABLE_DIRECTION = "NON_TRADABLE_DIRECTION"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    SYMBOL_NOT_ALLOWED = "SYMBOL_NOT_ALLOWED"
    MAX_POSITIONS_REACHED = "MAX_POSITIONS_REACHED"
    DAILY_LOSS_LIMIT = "DAILY_LOSS_LIMIT"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INVALID_STOP_DISTANCE = "INVALID_STOP_DISTANCE"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    POSITION_VALUE_EXCEEDED = "POSITION_VALUE_EXCEEDED"

    @property
    def kind(self) -> FailureKind:
        if self is RejectionReason.INVALID_STOP_DISTANCE:
            return FailureKind.INVALID_STOP_DISTANCE
        return FailureKind.RISK_REJECTED


class ExecutionFailureReason(Enum):
    """Reason an order intent could not be executed."""

    TIMEOUT = "TIMEOUT"
    VENUE_REJECTED = "VENUE_REJECTED"
    VENUE_ERROR = "VENUE_ERROR"
    NO_MARKET_PRICE = "NO_MARKET_PRICE"
    LIMIT_NOT_MARKETABLE = "LIMIT_NOT_MARKETABLE"
    DUPLICATE_REQUEST = "DUPLICATE_REQUEST"
    AUDIT_WRITE_FAILED = "AUDIT_WRITE_FAILED"
    POSITION_NOT_OPEN = "POSITION_NOT_OPEN"


@dataclass
class Signal:
    """A directional trade recommendation produced upstream."""

    account_id: str
    symbol: str
    direction: Direction
    price: Decimal
    confidence: Decimal
    timeframe: str
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    expires_at: Optional[datetime] = None
    status: SignalStatus = SignalStatus.ACTIVE
    id: UUID = field(default_factory=uuid4)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


@dataclass(frozen=True)
class RiskLimits:
    """Risk configuration for one control-loop run.

    Attributes:
        min_confidence: Minimum signal confidence (0-100) to trade.
        max_positions: Maximum simultaneously open positions per account.
        risk_per_trade_percent: Share of available balance put at risk per trade.
        allowed_symbols: Symbols the loop may trade.
        max_daily_loss_percent: Daily realized loss, relative to available
            balance, at which new trades stop.
        max_position_value: Cap on quantity x reference price.
    """

    min_confidence: Decimal
    max_positions: int
    risk_per_trade_percent: Decimal
    allowed_symbols: frozenset[str]
    max_daily_loss_percent: Decimal = Decimal("5")
    max_position_value: Decimal = Decimal("5000")


@dataclass(frozen=True)
class OrderIntent:
    """A sized, risk-checked instruction to buy or sell."""

    account_id: str
    signal_id: Optional[UUID]
    symbol: str
    side: OrderSide
    quantity: Decimal
    reference_price: Decimal
    kind: OrderKind = OrderKind.MARKET
    limit_price: Optional[Decimal] = None
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    closes_trade_id: Optional[UUID] = None

    @property
    def notional(self) -> Decimal:
        return self.quantity * self.reference_price


@dataclass(frozen=True)
class RiskRejection:
    """A signal that did not pass the risk gates."""

    reason: RejectionReason
    detail: str = ""

    @property
    def kind(self) -> FailureKind:
        return self.reason.kind


@dataclass(frozen=True)
class VenueFill:
    """Fill reported by a venue for a placed order."""

    order_id: str
    executed_price: Decimal
    executed_qty: Decimal
    status: str = "FILLED"


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of a successfully executed order intent."""

    trade_id: UUID
    order_id: str
    executed_price: Decimal
    executed_qty: Decimal
    commission: Decimal
    status: str = "FILLED"


@dataclass(frozen=True)
class ExecutionFailure:
    """Outcome of an order intent that could not be executed."""

    reason: ExecutionFailureReason
    detail: str = ""
    trade_id: Optional[UUID] = None

    @property
    def kind(self) -> FailureKind:
        return FailureKind.EXECUTION_FAILURE


@dataclass
class Trade:
    """Persisted record of an attempted or completed execution."""

    account_id: str
    symbol: str
    side: OrderSide
    quantity: Decimal
    entry_price: Decimal
    signal_id: Optional[UUID] = None
    idempotency_key: Optional[str] = None
    kind: OrderKind = OrderKind.MARKET
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    exit_price: Optional[Decimal] = None
    fees: Decimal = ZERO
    realized_pnl: Optional[Decimal] = None
    pnl_percentage: Optional[Decimal] = None
    venue_order_id: Optional[str] = None
    filled: bool = False
    status: TradeStatus = TradeStatus.OPEN
    id: UUID = field(default_factory=uuid4)
    created_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status is TradeStatus.OPEN

    def closed(
        self,
        exit_price: Decimal,
        realized_pnl: Decimal,
        fees: Decimal,
        closed_at: datetime,
    ) -> "Trade":
        """Return a CLOSED copy of this trade.

        Raises:
            InvariantViolationError: If the trade is not OPEN or CLOSING.
        """
        if self.status not in (TradeStatus.OPEN, TradeStatus.CLOSING):
            raise InvariantViolationError(
                f"trade {self.id} is {self.status.value}, cannot close"
            )
        cost_basis = self.entry_price * self.quantity
        pnl_pct = (
            (realized_pnl / cost_basis * 100).quantize(PERCENT_STEP)
            if cost_basis > 0
            else None
        )
        return replace(
            self,
            exit_price=exit_price,
            realized_pnl=quantize_money(realized_pnl),
            pnl_percentage=pnl_pct,
            fees=quantize_money(self.fees + fees),
            status=TradeStatus.CLOSED,
            closed_at=closed_at,
        )


@dataclass(frozen=True)
class PortfolioDelta:
    """Balance changes produced by a single execution.

    ``realized_pnl`` is set only for executions that close a position.
    ``sharpe_ratio`` replaces the stored ratio when set.
    """

    available: Decimal = ZERO
    locked: Decimal = ZERO
    total: Decimal = ZERO
    positions: int = 0
    realized_pnl: Optional[Decimal] = None
    sharpe_ratio: Optional[Decimal] = None


@dataclass
class Portfolio:
    """Balance and performance ledger for one account."""

    account_id: str
    total_balance: Decimal = ZERO
    available_balance: Decimal = ZERO
    locked_balance: Decimal = ZERO
    total_pnl: Decimal = ZERO
    daily_pnl: Decimal = ZERO
    pnl_date: Optional[date] = None
    active_positions: int = 0
    total_trades: int = 0
    winning_trades: int = 0
    win_rate: Decimal = ZERO
    peak_balance: Decimal = ZERO
    max_drawdown: Decimal = ZERO
    sharpe_ratio: Decimal = ZERO
    updated_at: Optional[datetime] = None

    def daily_pnl_on(self, day: Optional[date]) -> Decimal:
        """Daily P&L as seen on ``day``; a stale day counts as zero."""
        if day is None or self.pnl_date is None or self.pnl_date == day:
            return self.daily_pnl
        return ZERO

    def check_balance_invariant(self) -> None:
        """Raise if available + locked does not equal total."""
        drift = self.available_balance + self.locked_balance - self.total_balance
        if abs(drift) > BALANCE_TOLERANCE:
            raise InvariantViolationError(
                f"account {self.account_id}: available {self.available_balance} "
                f"+ locked {self.locked_balance} != total {self.total_balance}"
            )

    def apply(self, delta: PortfolioDelta, as_of: Optional[date] = None) -> "Portfolio":
        """Return a new portfolio with ``delta`` applied.

        The receiver is never modified, so a failed invariant check
        leaves the prior state intact.

        Raises:
            InvariantViolationError: If the result breaks the balance invariant.
        """
        total = quantize_money(self.total_balance + delta.total)
        daily_pnl = self.daily_pnl_on(as_of)
        total_pnl = self.total_pnl
        total_trades = self.total_trades
        winning_trades = self.winning_trades
        win_rate = self.win_rate

        if delta.realized_pnl is not None:
            total_pnl = quantize_money(total_pnl + delta.realized_pnl)
            daily_pnl = quantize_money(daily_pnl + delta.realized_pnl)
            total_trades += 1
            if delta.realized_pnl > 0:
                winning_trades += 1
            win_rate = (
                Decimal(winning_trades) / Decimal(total_trades) * 100
            ).quantize(PERCENT_STEP)

        peak = max(self.peak_balance, total)
        drawdown = ((peak - total) / peak * 100).quantize(PERCENT_STEP) if peak > 0 else ZERO

        updated = replace(
            self,
            total_balance=total,
            available_balance=quantize_money(self.available_balance + delta.available),
            locked_balance=quantize_money(self.locked_balance + delta.locked),
            total_pnl=total_pnl,
            daily_pnl=daily_pnl,
            pnl_date=as_of or self.pnl_date,
            active_positions=max(0, self.active_positions + delta.positions),
            total_trades=total_trades,
            winning_trades=winning_trades,
            win_rate=win_rate,
            peak_balance=peak,
            max_drawdown=max(self.max_drawdown, drawdown),
            sharpe_ratio=(
                self.sharpe_ratio if delta.sharpe_ratio is None else delta.sharpe_ratio
            ),
        )
        updated.check_balance_invariant()
        return updated
