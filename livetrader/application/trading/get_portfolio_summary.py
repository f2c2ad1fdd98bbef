"""
Use case: Summarize an account's portfolio and trading performance.

Input: account ID
Output: PortfolioSummary
Side effects: None.
Failure cases: PortfolioNotFoundError.
"""

import logging

from livetrader.application.trading.dtos import PortfolioSummary
from livetrader.domain.trading.errors import PortfolioNotFoundError
from livetrader.domain.trading.ports import AccountRepository, TradeRepository

logger = logging.getLogger(__name__)


class GetPortfolioSummaryUseCase:
    """Reads the portfolio ledger and its stored performance ratios."""

    def __init__(
        self, account_repo: AccountRepository, trade_repo: TradeRepository
    ) -> None:
        self._account_repo = account_repo
        self._trade_repo = trade_repo

    def execute(self, account_id: str) -> PortfolioSummary:
        portfolio = self._account_repo.get(account_id)
        if portfolio is None:
            raise PortfolioNotFoundError(account_id)

        closed = self._trade_repo.list_closed(account_id)
        logger.debug("Portfolio %s: %d closed trades", account_id, len(closed))

        return PortfolioSummary(
            account_id=portfolio.account_id,
            total_balance=portfolio.total_balance,
            available_balance=portfolio.available_balance,
            locked_balance=portfolio.locked_balance,
            total_pnl=portfolio.total_pnl,
            daily_pnl=portfolio.daily_pnl,
            active_positions=portfolio.active_positions,
            total_trades=portfolio.total_trades,
            winning_trades=portfolio.winning_trades,
            win_rate=portfolio.win_rate,
            max_drawdown=portfolio.max_drawdown,
            sharpe_ratio=portfolio.sharpe_ratio,
        )
