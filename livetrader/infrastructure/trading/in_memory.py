"""
Adapter: In-memory stores.

Thread-safe dict-backed implementations of the signal, account and
trade ports. Used by the ``memory`` storage backend (paper trading,
demos) and by the test suite. Entities are copied on the way in and
out so callers never share mutable state with the store.
"""

import logging
import threading
from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from livetrader.domain.trading.entities import (
    OrderSide,
    Portfolio,
    PortfolioDelta,
    RiskLimits,
    Signal,
    SignalStatus,
    Trade,
    TradeStatus,
)
from livetrader.domain.trading.errors import (
    DuplicateTradeError,
    InvariantViolationError,
    PortfolioNotFoundError,
    TradeNotFoundError,
)
from livetrader.domain.trading.ports import (
    AccountRepository,
    SignalRepository,
    TradeRepository,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_CLOSABLE = (TradeStatus.OPEN, TradeStatus.CLOSING)


class InMemorySignalRepository(SignalRepository):
    """Dict-backed signal store."""

    def __init__(self) -> None:
        self._signals: dict[UUID, Signal] = {}
        self._lock = threading.Lock()

    def save(self, signal: Signal) -> Signal:
        now = datetime.now(timezone.utc)
        stored = replace(
            signal,
            created_at=signal.created_at or now,
            updated_at=signal.updated_at or signal.created_at or now,
        )
        with self._lock:
            self._signals[stored.id] = stored
        return replace(stored)

    def get_by_id(self, signal_id: UUID) -> Optional[Signal]:
        with self._lock:
            signal = self._signals.get(signal_id)
        return replace(signal) if signal else None

    def list_active_eligible(
        self,
        limits: RiskLimits,
        now: datetime,
        account_id: Optional[str] = None,
    ) -> list[Signal]:
        with self._lock:
            snapshot = list(self._signals.values())
        return [
            replace(s)
            for s in snapshot
            if s.status is SignalStatus.ACTIVE
            and not s.is_expired(now)
            and s.symbol in limits.allowed_symbols
            and s.confidence >= limits.min_confidence
            and (account_id is None or s.account_id == account_id)
        ]

    def set_status(self, signal_id: UUID, status: SignalStatus) -> bool:
        with self._lock:
            signal = self._signals.get(signal_id)
            if signal is None or not signal.status.can_transition_to(status):
                return False
            self._signals[signal_id] = replace(
                signal, status=status, updated_at=datetime.now(timezone.utc)
            )
            return True

    def expire_due(self, now: datetime) -> int:
        expired = 0
        with self._lock:
            for signal_id, signal in list(self._signals.items()):
                if signal.status is SignalStatus.ACTIVE and signal.is_expired(now):
                    self._signals[signal_id] = replace(
                        signal, status=SignalStatus.EXPIRED, updated_at=now
                    )
                    expired += 1
        return expired


class InMemoryAccountRepository(AccountRepository):
    """Dict-backed portfolio ledger with a per-account lock."""

    def __init__(self) -> None:
        self._portfolios: dict[str, Portfolio] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(account_id, threading.Lock())

    def get(self, account_id: str) -> Optional[Portfolio]:
        with self._lock_for(account_id):
            portfolio = self._portfolios.get(account_id)
        return replace(portfolio) if portfolio else None

    def save(self, portfolio: Portfolio) -> None:
        portfolio.check_balance_invariant()
        with self._lock_for(portfolio.account_id):
            self._portfolios[portfolio.account_id] = replace(portfolio)

    def apply_delta(
        self,
        account_id: str,
        delta: PortfolioDelta,
        as_of: Optional[date] = None,
    ) -> Portfolio:
        with self._lock_for(account_id):
            current = self._portfolios.get(account_id)
            if current is None:
                raise PortfolioNotFoundError(account_id)
            updated = current.apply(delta, as_of=as_of)
            updated.updated_at = datetime.now(timezone.utc)
            self._portfolios[account_id] = updated
        return replace(updated)


class InMemoryTradeRepository(TradeRepository):
    """Dict-backed trade log with a unique idempotency key index."""

    def __init__(self) -> None:
        self._trades: dict[UUID, Trade] = {}
        self._by_key: dict[str, UUID] = {}
        self._lock = threading.Lock()

    def create(self, trade: Trade) -> Trade:
        stored = replace(trade, created_at=trade.created_at or datetime.now(timezone.utc))
        with self._lock:
            if trade.idempotency_key is not None and trade.idempotency_key in self._by_key:
                raise DuplicateTradeError(trade.idempotency_key)
            self._trades[stored.id] = stored
            if stored.idempotency_key is not None:
                self._by_key[stored.idempotency_key] = stored.id
        return replace(stored)

    def get_by_id(self, trade_id: UUID) -> Optional[Trade]:
        with self._lock:
            trade = self._trades.get(trade_id)
        return replace(trade) if trade else None

    def get_by_idempotency_key(self, key: str) -> Optional[Trade]:
        with self._lock:
            trade_id = self._by_key.get(key)
            trade = self._trades.get(trade_id) if trade_id else None
        return replace(trade) if trade else None

    def count_for_signal(self, signal_id: UUID) -> int:
        with self._lock:
            return sum(1 for t in self._trades.values() if t.signal_id == signal_id)

    def has_fill_for_signal(self, signal_id: UUID) -> bool:
        with self._lock:
            return any(t.filled for t in self._trades.values() if t.signal_id == signal_id)

    def record_fill(
        self,
        trade_id: UUID,
        venue_order_id: str,
        executed_price: Decimal,
        executed_qty: Decimal,
        fees: Decimal,
    ) -> Trade:
        with self._lock:
            trade = self._trades.get(trade_id)
            if trade is None or not trade.is_open:
                raise TradeNotFoundError(str(trade_id))
            filled = replace(
                trade,
                venue_order_id=venue_order_id,
                entry_price=executed_price,
                quantity=executed_qty,
                fees=fees,
                filled=True,
            )
            self._trades[trade_id] = filled
        return replace(filled)

    def _move(self, trade_id: UUID, source: TradeStatus, target: TradeStatus) -> bool:
        with self._lock:
            trade = self._trades.get(trade_id)
            if trade is None or trade.status is not source:
                return False
            self._trades[trade_id] = replace(trade, status=target)
        return True

    def claim_close(self, trade_id: UUID) -> bool:
        return self._move(trade_id, TradeStatus.OPEN, TradeStatus.CLOSING)

    def release_close(self, trade_id: UUID) -> None:
        if not self._move(trade_id, TradeStatus.CLOSING, TradeStatus.OPEN):
            logger.warning("Trade %s was not CLOSING when releasing its claim", trade_id)

    def close(self, trade: Trade) -> Trade:
        if trade.status is not TradeStatus.CLOSED:
            raise InvariantViolationError(f"trade {trade.id} passed to close() is not CLOSED")
        with self._lock:
            current = self._trades.get(trade.id)
            if current is None or current.status not in _CLOSABLE:
                raise InvariantViolationError(f"trade {trade.id} was not OPEN when closing")
            self._trades[trade.id] = replace(trade)
        return replace(trade)

    def find_open_position(self, account_id: str, symbol: str) -> Optional[Trade]:
        with self._lock:
            candidates = [
                t
                for t in self._trades.values()
                if t.account_id == account_id
                and t.symbol == symbol
                and t.side is OrderSide.BUY
                and t.is_open
                and t.filled
            ]
        if not candidates:
            return None
        oldest = min(candidates, key=lambda t: (t.created_at or _EPOCH, str(t.id)))
        return replace(oldest)

    def list_closed(self, account_id: str) -> list[Trade]:
        with self._lock:
            closed = [
                replace(t)
                for t in self._trades.values()
                if t.account_id == account_id
                and t.side is OrderSide.BUY
                and t.status is TradeStatus.CLOSED
            ]
        return sorted(closed, key=lambda t: t.closed_at or _EPOCH)

    def all(self) -> list[Trade]:
        """Return every stored trade (inspection helper)."""
        with self._lock:
            return [replace(t) for t in self._trades.values()]
