"""
Adapter: Portfolio ledger.

Implements AccountRepository port on the ``portfolios`` table.
``apply_delta`` runs read-modify-write inside one transaction, with the
row locked (``SELECT ... FOR UPDATE`` where the backend supports it) and
a per-account in-process lock around it.
"""

import logging
import threading
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection, Engine

from livetrader.domain.trading.entities import Portfolio, PortfolioDelta
from livetrader.domain.trading.errors import PortfolioNotFoundError
from livetrader.domain.trading.ports import AccountRepository
from livetrader.infrastructure.trading.tables import portfolios, to_utc

logger = logging.getLogger(__name__)


def _row_to_portfolio(row) -> Portfolio:
    return Portfolio(
        account_id=row.account_id,
        total_balance=row.total_balance,
        available_balance=row.available_balance,
        locked_balance=row.locked_balance,
        total_pnl=row.total_pnl,
        daily_pnl=row.daily_pnl,
        pnl_date=row.pnl_date,
        active_positions=row.active_positions,
        total_trades=row.total_trades,
        winning_trades=row.winning_trades,
        win_rate=row.win_rate,
        peak_balance=row.peak_balance,
        max_drawdown=row.max_drawdown,
        sharpe_ratio=row.sharpe_ratio,
        updated_at=to_utc(row.updated_at),
    )


def _portfolio_values(portfolio: Portfolio) -> dict:
    return {
        "total_balance": portfolio.total_balance,
        "available_balance": portfolio.available_balance,
        "locked_balance": portfolio.locked_balance,
        "total_pnl": portfolio.total_pnl,
        "daily_pnl": portfolio.daily_pnl,
        "pnl_date": portfolio.pnl_date,
        "active_positions": portfolio.active_positions,
        "total_trades": portfolio.total_trades,
        "winning_trades": portfolio.winning_trades,
        "win_rate": portfolio.win_rate,
        "peak_balance": portfolio.peak_balance,
        "max_drawdown": portfolio.max_drawdown,
        "sharpe_ratio": portfolio.sharpe_ratio,
        "updated_at": to_utc(portfolio.updated_at) or datetime.now(timezone.utc),
    }


class AccountRepositoryAdapter(AccountRepository):
    """SQL adapter for the portfolios table."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[account_id]

    @staticmethod
    def _fetch(conn: Connection, account_id: str, for_update: bool = False):
        query = select(portfolios).where(portfolios.c.account_id == account_id)
        if for_update:
            query = query.with_for_update()
        return conn.execute(query).fetchone()

    def get(self, account_id: str) -> Optional[Portfolio]:
        with self._engine.connect() as conn:
            row = self._fetch(conn, account_id)
        return _row_to_portfolio(row) if row else None

    def save(self, portfolio: Portfolio) -> None:
        portfolio.check_balance_invariant()
        values = _portfolio_values(portfolio)
        with self._lock_for(portfolio.account_id), self._engine.begin() as conn:
            if self._fetch(conn, portfolio.account_id, for_update=True) is None:
                conn.execute(
                    insert(portfolios).values(account_id=portfolio.account_id, **values)
                )
            else:
                conn.execute(
                    update(portfolios)
                    .where(portfolios.c.account_id == portfolio.account_id)
                    .values(**values)
                )
        logger.info(
            "Portfolio %s saved: total=%s available=%s",
            portfolio.account_id,
            portfolio.total_balance,
            portfolio.available_balance,
        )

    def apply_delta(
        self,
        account_id: str,
        delta: PortfolioDelta,
        as_of: Optional[date] = None,
    ) -> Portfolio:
        with self._lock_for(account_id), self._engine.begin() as conn:
            row = self._fetch(conn, account_id, for_update=True)
            if row is None:
                raise PortfolioNotFoundError(account_id)
            # Raises before anything is written; the transaction rolls back.
            updated = _row_to_portfolio(row).apply(delta, as_of=as_of)
            updated.updated_at = datetime.now(timezone.utc)
            conn.execute(
                update(portfolios)
                .where(portfolios.c.account_id == account_id)
                .values(**_portfolio_values(updated))
            )
        return updated
