"""
Use case: Apply an execution result to the portfolio ledger.

Input: ExecutionResult, order side, entry price (closing trades only)
Output: ReconciledPortfolio (updated portfolio + realized P&L)
Side effects: One atomic portfolio update per call.
Failure cases: PortfolioNotFoundError, InvariantViolationError.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from livetrader.application.trading.performance import sharpe_ratio
from livetrader.domain.trading.entities import (
    ExecutionResult,
    OrderSide,
    Portfolio,
    PortfolioDelta,
    Trade,
    quantize_money,
)
from livetrader.domain.trading.errors import InvariantViolationError
from livetrader.domain.trading.ports import AccountRepository, Clock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciledPortfolio:
    """Portfolio after an execution was applied."""

    portfolio: Portfolio
    realized_pnl: Optional[Decimal] = None


class PortfolioReconciler:
    """Folds execution results into balances, position counts and P&L.

    BUY moves cash from available into locked (the position's value)
    and charges the commission to the total balance. A closing SELL
    releases the locked cost basis, credits the proceeds and books
    the realized P&L.
    """

    def __init__(self, account_repo: AccountRepository, clock: Clock) -> None:
        self._account_repo = account_repo
        self._clock = clock

    @staticmethod
    def build_delta(
        result: ExecutionResult,
        side: OrderSide,
        entry_price: Optional[Decimal] = None,
    ) -> PortfolioDelta:
        """Translate an execution into balance changes.

        Args:
            result: The venue execution outcome.
            side: BUY opens a position, SELL closes one.
            entry_price: Entry price of the position a SELL closes.

        Raises:
            InvariantViolationError: If a SELL comes without an entry price.
        """
        notional = quantize_money(result.executed_qty * result.executed_price)
        commission = quantize_money(result.commission)

        if side is OrderSide.BUY:
            return PortfolioDelta(
                available=-(notional + commission),
                locked=notional,
                total=-commission,
                positions=1,
            )

        if entry_price is None:
            raise InvariantViolationError(
                f"closing execution {result.order_id} has no entry price"
            )
        cost_basis = quantize_money(result.executed_qty * entry_price)
        # Built from the rounded legs so available + locked moves by exactly total.
        proceeds = notional - commission
        realized = proceeds - cost_basis
        return PortfolioDelta(
            available=proceeds,
            locked=-cost_basis,
            total=realized,
            positions=-1,
            realized_pnl=realized,
        )

    def apply_execution(
        self,
        account: Portfolio,
        result: ExecutionResult,
        side: OrderSide,
        entry_price: Optional[Decimal] = None,
    ) -> ReconciledPortfolio:
        """Return the portfolio with the execution applied, without persisting it.

        The input portfolio is never modified.
        """
        delta = self.build_delta(result, side, entry_price)
        updated = account.apply(delta, as_of=self._clock.now().date())
        return ReconciledPortfolio(portfolio=updated, realized_pnl=delta.realized_pnl)

    def reconcile(
        self,
        account_id: str,
        result: ExecutionResult,
        side: OrderSide,
        entry_price: Optional[Decimal] = None,
    ) -> ReconciledPortfolio:
        """Apply the execution to the stored portfolio atomically.

        Raises:
            PortfolioNotFoundError: If the account has no portfolio.
            InvariantViolationError: If the balance invariant would break;
                the stored portfolio is left as it was.
        """
        delta = self.build_delta(result, side, entry_price)
        try:
            updated = self._account_repo.apply_delta(
                account_id, delta, as_of=self._clock.now().date()
            )
        except InvariantViolationError:
            logger.critical(
                "Reconciliation aborted for account=%s order=%s",
                account_id,
                result.order_id,
            )
            raise

        logger.info(
            "Reconciled %s %s for account=%s: available=%s locked=%s positions=%d",
            side.value,
            result.order_id,
            account_id,
            updated.available_balance,
            updated.locked_balance,
            updated.active_positions,
        )
        return ReconciledPortfolio(portfolio=updated, realized_pnl=delta.realized_pnl)

    def refresh_sharpe_ratio(self, account_id: str, closed: list[Trade]) -> Portfolio:
        """Store the Sharpe ratio of ``closed`` on the account's portfolio.

        Called after a position is closed; balances are not touched.
        """
        ratio = sharpe_ratio(closed)
        updated = self._account_repo.apply_delta(account_id, PortfolioDelta(sharpe_ratio=ratio))
        logger.debug("Account %s Sharpe ratio now %s", account_id, ratio)
        return updated
