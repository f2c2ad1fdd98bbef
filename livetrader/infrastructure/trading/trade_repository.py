"""
Adapter: Trade audit log.

Implements TradeRepository port on the ``trades`` table. The unique
``idempotency_key`` column guarantees one row per execution attempt.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from livetrader.domain.trading.entities import (
    OrderKind,
    OrderSide,
    Trade,
    TradeStatus,
)
from livetrader.domain.trading.errors import (
    DuplicateTradeError,
    InvariantViolationError,
    TradeNotFoundError,
)
from livetrader.domain.trading.ports import TradeRepository
from livetrader.infrastructure.trading.tables import to_utc, trades

logger = logging.getLogger(__name__)


def _row_to_trade(row) -> Trade:
    return Trade(
        id=UUID(row.id),
        account_id=row.account_id,
        signal_id=UUID(row.signal_id) if row.signal_id else None,
        idempotency_key=row.idempotency_key,
        symbol=row.symbol,
        side=OrderSide(row.side),
        kind=OrderKind(row.kind),
        quantity=row.quantity,
        entry_price=row.entry_price,
        exit_price=row.exit_price,
        stop_loss=row.stop_loss,
        take_profit=row.take_profit,
        fees=row.fees,
        realized_pnl=row.realized_pnl,
        pnl_percentage=row.pnl_percentage,
        venue_order_id=row.venue_order_id,
        filled=bool(row.filled),
        status=TradeStatus(row.status),
        created_at=to_utc(row.created_at),
        closed_at=to_utc(row.closed_at),
    )


class TradeRepositoryAdapter(TradeRepository):
    """SQL adapter for the trades table."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def _one(self, *criteria) -> Optional[Trade]:
        with self._engine.connect() as conn:
            row = conn.execute(select(trades).where(*criteria)).fetchone()
        return _row_to_trade(row) if row else None

    def create(self, trade: Trade) -> Trade:
        if trade.created_at is None:
            trade = replace(trade, created_at=datetime.now(timezone.utc))
        try:
            with self._engine.begin() as conn:
                conn.execute(
                    insert(trades).values(
                        id=str(trade.id),
                        account_id=trade.account_id,
                        signal_id=str(trade.signal_id) if trade.signal_id else None,
                        idempotency_key=trade.idempotency_key,
                        symbol=trade.symbol,
                        side=trade.side.value,
                        kind=trade.kind.value,
                        quantity=trade.quantity,
                        entry_price=trade.entry_price,
                        exit_price=trade.exit_price,
                        stop_loss=trade.stop_loss,
                        take_profit=trade.take_profit,
                        fees=trade.fees,
                        realized_pnl=trade.realized_pnl,
                        pnl_percentage=trade.pnl_percentage,
                        venue_order_id=trade.venue_order_id,
                        filled=trade.filled,
                        status=trade.status.value,
                        created_at=to_utc(trade.created_at),
                        closed_at=to_utc(trade.closed_at),
                    )
                )
        except IntegrityError as exc:
            raise DuplicateTradeError(trade.idempotency_key or str(trade.id)) from exc
        return trade

    def get_by_id(self, trade_id: UUID) -> Optional[Trade]:
        return self._one(trades.c.id == str(trade_id))

    def get_by_idempotency_key(self, key: str) -> Optional[Trade]:
        return self._one(trades.c.idempotency_key == key)

    def count_for_signal(self, signal_id: UUID) -> int:
        with self._engine.connect() as conn:
            return conn.execute(
                select(func.count())
                .select_from(trades)
                .where(trades.c.signal_id == str(signal_id))
            ).scalar_one()

    def has_fill_for_signal(self, signal_id: UUID) -> bool:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(trades.c.id)
                .where(and_(trades.c.signal_id == str(signal_id), trades.c.filled.is_(True)))
                .limit(1)
            ).fetchone()
        return row is not None

    def record_fill(
        self,
        trade_id: UUID,
        venue_order_id: str,
        executed_price: Decimal,
        executed_qty: Decimal,
        fees: Decimal,
    ) -> Trade:
        with self._engine.begin() as conn:
            result = conn.execute(
                update(trades)
                .where(
                    and_(
                        trades.c.id == str(trade_id),
                        trades.c.status == TradeStatus.OPEN.value,
                    )
                )
                .values(
                    venue_order_id=venue_order_id,
                    entry_price=executed_price,
                    quantity=executed_qty,
                    fees=fees,
                    filled=True,
                )
            )
        if result.rowcount != 1:
            raise TradeNotFoundError(str(trade_id))
        return self.get_by_id(trade_id)

    def _move(self, trade_id: UUID, source: TradeStatus, target: TradeStatus) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(
                update(trades)
                .where(and_(trades.c.id == str(trade_id), trades.c.status == source.value))
                .values(status=target.value)
            )
        return result.rowcount == 1

    def claim_close(self, trade_id: UUID) -> bool:
        return self._move(trade_id, TradeStatus.OPEN, TradeStatus.CLOSING)

    def release_close(self, trade_id: UUID) -> None:
        if not self._move(trade_id, TradeStatus.CLOSING, TradeStatus.OPEN):
            logger.warning("Trade %s was not CLOSING when releasing its claim", trade_id)

    def close(self, trade: Trade) -> Trade:
        if trade.status is not TradeStatus.CLOSED:
            raise InvariantViolationError(f"trade {trade.id} passed to close() is not CLOSED")
        with self._engine.begin() as conn:
            result = conn.execute(
                update(trades)
                .where(
                    and_(
                        trades.c.id == str(trade.id),
                        trades.c.status.in_(
                            [TradeStatus.OPEN.value, TradeStatus.CLOSING.value]
                        ),
                    )
                )
                .values(
                    exit_price=trade.exit_price,
                    fees=trade.fees,
                    realized_pnl=trade.realized_pnl,
                    pnl_percentage=trade.pnl_percentage,
                    status=TradeStatus.CLOSED.value,
                    closed_at=to_utc(trade.closed_at),
                )
            )
        if result.rowcount != 1:
            raise InvariantViolationError(f"trade {trade.id} was not OPEN when closing")
        logger.debug("Trade %s closed with P&L %s", trade.id, trade.realized_pnl)
        return trade

    def find_open_position(self, account_id: str, symbol: str) -> Optional[Trade]:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(trades)
                .where(
                    and_(
                        trades.c.account_id == account_id,
                        trades.c.symbol == symbol,
                        trades.c.side == OrderSide.BUY.value,
                        trades.c.status == TradeStatus.OPEN.value,
                        trades.c.filled.is_(True),
                    )
                )
                .order_by(trades.c.created_at.asc(), trades.c.id.asc())
                .limit(1)
            ).fetchone()
        return _row_to_trade(row) if row else None

    def list_closed(self, account_id: str) -> list[Trade]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                select(trades)
                .where(
                    and_(
                        trades.c.account_id == account_id,
                        trades.c.side == OrderSide.BUY.value,
                        trades.c.status == TradeStatus.CLOSED.value,
                    )
                )
                .order_by(trades.c.closed_at.asc())
            ).fetchall()
        return [_row_to_trade(r) for r in rows]
