"""
Use case: Close an open position at a given exit price.

Used for exits that happen outside the control loop (manual exits,
stop loss or take profit hits reported by an operator).

Input: CloseTradeCommand (trade_id, exit_price, fees)
Output: ClosedTradeResult
Side effects: Claims the trade (OPEN -> CLOSING), reconciles the portfolio
    as a SELL of the full position, then marks the trade CLOSED with exit
    price and realized P&L and refreshes the stored Sharpe ratio.
Failure cases: TradeNotFoundError, InvalidStatusTransitionError,
    PortfolioNotFoundError, InvariantViolationError.
"""

import logging
from decimal import Decimal

from livetrader.application.trading.dtos import ClosedTradeResult, CloseTradeCommand
from livetrader.application.trading.reconcile_portfolio import PortfolioReconciler
from livetrader.domain.trading.entities import (
    ZERO,
    ExecutionResult,
    OrderSide,
    TradeStatus,
)
from livetrader.domain.trading.errors import (
    InvalidStatusTransitionError,
    TradeNotFoundError,
)
from livetrader.domain.trading.ports import Clock, TradeRepository

logger = logging.getLogger(__name__)


class CloseTradeUseCase:
    """Closes a filled BUY position and books its realized P&L."""

    def __init__(
        self,
        trade_repo: TradeRepository,
        reconciler: PortfolioReconciler,
        clock: Clock,
    ) -> None:
        self._trade_repo = trade_repo
        self._reconciler = reconciler
        self._clock = clock

    def execute(self, command: CloseTradeCommand) -> ClosedTradeResult:
        """Close the trade referenced by ``command``.

        Raises:
            TradeNotFoundError: If no such trade exists.
            InvalidStatusTransitionError: If the trade is not an open,
                filled BUY position.
        """
        trade = self._trade_repo.get_by_id(command.trade_id)
        if trade is None:
            raise TradeNotFoundError(str(command.trade_id))
        if not trade.is_open or not trade.filled or trade.side is not OrderSide.BUY:
            raise InvalidStatusTransitionError(
                str(trade.id), trade.status.value, TradeStatus.CLOSED.value
            )
        if command.exit_price <= 0 or command.fees < 0:
            raise ValueError("exit price must be positive and fees non-negative")

        execution = ExecutionResult(
            trade_id=trade.id,
            order_id=f"manual-{trade.id}",
            executed_price=command.exit_price,
            executed_qty=trade.quantity,
            commission=command.fees,
        )
        if not self._trade_repo.claim_close(trade.id):
            raise InvalidStatusTransitionError(
                str(trade.id), TradeStatus.CLOSING.value, TradeStatus.CLOSED.value
            )
        try:
            reconciled = self._reconciler.reconcile(
                trade.account_id, execution, OrderSide.SELL, entry_price=trade.entry_price
            )
        except Exception:
            self._trade_repo.release_close(trade.id)
            raise
        realized: Decimal = reconciled.realized_pnl or ZERO

        closed = self._trade_repo.close(
            trade.closed(
                exit_price=command.exit_price,
                realized_pnl=realized,
                fees=command.fees,
                closed_at=self._clock.now(),
            )
        )
        self._reconciler.refresh_sharpe_ratio(
            trade.account_id, self._trade_repo.list_closed(trade.account_id)
        )
        logger.info(
            "Trade %s closed @ %s, realized P&L %s", closed.id, command.exit_price, realized
        )
        return ClosedTradeResult(
            trade_id=closed.id,
            symbol=closed.symbol,
            exit_price=command.exit_price,
            realized_pnl=realized,
            pnl_percentage=closed.pnl_percentage,
        )
