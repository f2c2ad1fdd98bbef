"""
Domain service: Risk evaluation and position sizing.

Pure business logic. No framework imports. No IO. No side effects.
Callers must fetch the account freshly before each evaluation;
the evaluator never reads or caches balances itself.

Gates (in order):
    - Direction must be tradable (HOLD never is)
    - Confidence at or above the configured minimum
    - Symbol on the allow-list
    - Open positions below the maximum (every direction; positions held
      at the cap are closed through the close-trade use case)
    - Realized daily loss below the configured share of available balance
    - Positive available balance

Sizing:
    risk_amount   = available_balance x risk_per_trade_percent / 100
    stop_distance = |price - (stop_loss or price x 0.97)|
    quantity      = risk_amount / stop_distance

BUY intents are LIMIT orders at the signal price, so the caps checked
here hold for the fill. Closing SELLs go out at market.
"""

from datetime import date
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from livetrader.domain.trading.entities import (
    ZERO,
    Direction,
    OrderIntent,
    OrderKind,
    OrderSide,
    Portfolio,
    RejectionReason,
    RiskLimits,
    RiskRejection,
    Signal,
    quantize_quantity,
)

DEFAULT_STOP_RATIO = Decimal("0.97")
HUNDRED = Decimal("100")


class RiskEvaluator:
    """Turns a signal into a sized OrderIntent or a RiskRejection.

    Rejections are returned, never raised.
    """

    def __init__(
        self,
        default_stop_ratio: Decimal = DEFAULT_STOP_RATIO,
        fee_rate: Decimal = ZERO,
    ) -> None:
        """Initialize the evaluator.

        Args:
            default_stop_ratio: Multiplier applied to the signal price when
                the signal carries no stop-loss (0.97 = 3% below price).
            fee_rate: Commission per unit of quantity, reserved from the
                available balance when checking a BUY.
        """
        self._default_stop_ratio = default_stop_ratio
        self._fee_rate = fee_rate

    def evaluate(
        self,
        signal: Signal,
        account: Portfolio,
        limits: RiskLimits,
        *,
        position_quantity: Optional[Decimal] = None,
        closes_trade_id: Optional[UUID] = None,
        as_of: Optional[date] = None,
    ) -> Union[OrderIntent, RiskRejection]:
        """Run every risk gate and size the order.

        Args:
            signal: Candidate signal.
            account: Freshly fetched portfolio of the signal's account.
            limits: Limits of the current run.
            position_quantity: When closing an existing long, the quantity
                to sell. Replaces risk-based sizing.
            closes_trade_id: ID of the open trade a SELL closes.
            as_of: Trading day used to decide whether the account's daily
                P&L is current.

        Returns:
            An OrderIntent when every gate passes, else a RiskRejection.
        """
        rejection = self._check_gates(signal, account, limits, as_of)
        if rejection is not None:
            return rejection

        if position_quantity is None:
            sized = self.size_position(signal, account, limits)
            if isinstance(sized, RiskRejection):
                return sized
            quantity = sized
        else:
            quantity = quantize_quantity(position_quantity)

        if quantity <= 0:
            return RiskRejection(
                RejectionReason.INVALID_QUANTITY,
                f"computed quantity {quantity} is not positive",
            )

        notional = quantity * signal.price
        if notional > limits.max_position_value:
            return RiskRejection(
                RejectionReason.POSITION_VALUE_EXCEEDED,
                f"position value {notional:.2f} exceeds max {limits.max_position_value}",
            )

        side = OrderSide(signal.direction.value)
        commission = quantity * self._fee_rate
        if side is OrderSide.BUY and notional + commission > account.available_balance:
            return RiskRejection(
                RejectionReason.INSUFFICIENT_BALANCE,
                f"position value {notional:.2f} plus fees exceeds available "
                f"{account.available_balance}",
            )

        kind, limit_price = OrderKind.MARKET, None
        if side is OrderSide.BUY:
            kind, limit_price = OrderKind.LIMIT, signal.price
        return OrderIntent(
            account_id=signal.account_id,
            signal_id=signal.id,
            symbol=signal.symbol,
            side=side,
            quantity=quantity,
            reference_price=signal.price,
            kind=kind,
            limit_price=limit_price,
            stop_loss=signal.stop_loss,
            take_profit=signal.take_profit,
            closes_trade_id=closes_trade_id,
        )

    def size_position(
        self, signal: Signal, account: Portfolio, limits: RiskLimits
    ) -> Union[Decimal, RiskRejection]:
        """Compute the risk-based quantity for a signal.

        Returns:
            The quantity (rounded down to 8 dp), or a rejection when the
            stop distance is not strictly positive.
        """
        risk_amount = account.available_balance * (
            limits.risk_per_trade_percent / HUNDRED
        )
        stop_price = (
            signal.stop_loss
            if signal.stop_loss is not None
            else signal.price * self._default_stop_ratio
        )
        stop_distance = abs(signal.price - stop_price)
        if stop_distance <= 0:
            return RiskRejection(
                RejectionReason.INVALID_STOP_DISTANCE,
                f"stop distance {stop_distance} for price {signal.price}",
            )
        return quantize_quantity(risk_amount / stop_distance)

    @staticmethod
    def daily_loss_percent(account: Portfolio, as_of: Optional[date] = None) -> Optional[Decimal]:
        """Realized daily loss as a percentage of available balance.

        Returns:
            The percentage, or None when there is a loss but no positive
            balance to measure it against.
        """
        loss = max(-account.daily_pnl_on(as_of), ZERO)
        if loss == 0:
            return ZERO
        if account.available_balance <= 0:
            return None
        return loss / account.available_balance * HUNDRED

    def _check_gates(
        self,
        signal: Signal,
        account: Portfolio,
        limits: RiskLimits,
        as_of: Optional[date],
    ) -> Optional[RiskRejection]:
        if signal.direction is Direction.HOLD:
            return RiskRejection(
                RejectionReason.NON_TRADABLE_DIRECTION, "HOLD signals are not traded"
            )

        if signal.confidence < limits.min_confidence:
            return RiskRejection(
                RejectionReason.LOW_CONFIDENCE,
                f"confidence {signal.confidence} below {limits.min_confidence}",
            )

        if signal.symbol not in limits.allowed_symbols:
            return RiskRejection(
                RejectionReason.SYMBOL_NOT_ALLOWED,
                f"{signal.symbol} is not in the allowed symbols",
            )

        if account.active_positions >= limits.max_positions:
            return RiskRejection(
                RejectionReason.MAX_POSITIONS_REACHED,
                f"{account.active_positions} open positions, max {limits.max_positions}",
            )

        loss_pct = self.daily_loss_percent(account, as_of)
        if loss_pct is None or loss_pct >= limits.max_daily_loss_percent:
            return RiskRejection(
                RejectionReason.DAILY_LOSS_LIMIT,
                f"daily loss {loss_pct if loss_pct is not None else 'unbounded'}% "
                f"reached limit {limits.max_daily_loss_percent}%",
            )

        if account.available_balance <= 0:
            return RiskRejection(
                RejectionReason.INSUFFICIENT_BALANCE,
                f"available balance {account.available_balance}",
            )

        return None
