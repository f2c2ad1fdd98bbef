"""
Port interfaces (ABCs) for the trading bounded context.

Ports define the contracts that the domain requires from the outside world.
Infrastructure adapters implement these interfaces.
The domain layer never depends on concrete implementations.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from livetrader.domain.trading.entities import (
    ExecutionFailure,
    OrderIntent,
    Portfolio,
    PortfolioDelta,
    RiskLimits,
    Signal,
    SignalStatus,
    Trade,
    VenueFill,
)


class SignalRepository(ABC):
    """Port for reading signals and moving them through their lifecycle."""

    @abstractmethod
    def save(self, signal: Signal) -> Signal:
        """Persist a new signal and return it with timestamps filled in."""
        raise NotImplementedError

    @abstractmethod
    def get_by_id(self, signal_id: UUID) -> Optional[Signal]:
        """Return a signal by its ID, or None if not found."""
        raise NotImplementedError

    @abstractmethod
    def list_active_eligible(
        self,
        limits: RiskLimits,
        now: datetime,
        account_id: Optional[str] = None,
    ) -> list[Signal]:
        """Return ACTIVE, non-expired signals passing the confidence and symbol filters.

        Args:
            limits: Limits of the current run (min_confidence, allowed_symbols).
            now: Reference time for expiry.
            account_id: Optional owner filter.

        Returns:
            Eligible signals in no particular order.
        """
        raise NotImplementedError

    @abstractmethod
    def set_status(self, signal_id: UUID, status: SignalStatus) -> bool:
        """Move an ACTIVE signal to ``status``.

        Returns:
            True if the row was ACTIVE and is now ``status``; False if the
            signal is missing or already terminal (nothing is written).
        """
        raise NotImplementedError

    @abstractmethod
    def expire_due(self, now: datetime) -> int:
        """Mark ACTIVE signals whose expiry has passed as EXPIRED.

        Returns:
            Number of signals expired.
        """
        raise NotImplementedError


class AccountRepository(ABC):
    """Port for reading and atomically updating portfolios."""

    @abstractmethod
    def get(self, account_id: str) -> Optional[Portfolio]:
        """Return the current portfolio of an account, or None."""
        raise NotImplementedError

    @abstractmethod
    def save(self, portfolio: Portfolio) -> None:
        """Create or overwrite a portfolio row (provisioning only)."""
        raise NotImplementedError

    @abstractmethod
    def apply_delta(
        self,
        account_id: str,
        delta: PortfolioDelta,
        as_of: Optional[date] = None,
    ) -> Portfolio:
        """Apply ``delta`` to the stored portfolio in one exclusive section.

        Reads the current row, applies the delta via ``Portfolio.apply`` and
        writes the result, all under a per-account lock or transaction.

        Raises:
            PortfolioNotFoundError: If the account has no portfolio.
            InvariantViolationError: If the update would break the balance
                invariant. The stored row is left unchanged.
        """
        raise NotImplementedError


class TradeRepository(ABC):
    """Port for persisting trade records."""

    @abstractmethod
    def create(self, trade: Trade) -> Trade:
        """Insert a new trade row.

        Raises:
            DuplicateTradeError: If the idempotency key is already taken.
        """
        raise NotImplementedError

    @abstractmethod
    def get_by_id(self, trade_id: UUID) -> Optional[Trade]:
        raise NotImplementedError

    @abstractmethod
    def get_by_idempotency_key(self, key: str) -> Optional[Trade]:
        raise NotImplementedError

    @abstractmethod
    def count_for_signal(self, signal_id: UUID) -> int:
        """Return how many trade rows reference a signal."""
        raise NotImplementedError

    @abstractmethod
    def has_fill_for_signal(self, signal_id: UUID) -> bool:
        """Return True if any trade linked to the signal was filled by the venue."""
        raise NotImplementedError

    @abstractmethod
    def record_fill(
        self,
        trade_id: UUID,
        venue_order_id: str,
        executed_price: Decimal,
        executed_qty: Decimal,
        fees: Decimal,
    ) -> Trade:
        """Store venue fill details on an OPEN trade."""
        raise NotImplementedError

    @abstractmethod
    def claim_close(self, trade_id: UUID) -> bool:
        """Move an OPEN trade to CLOSING.

        Returns:
            True for the single caller that won the claim; False if the
            trade is missing or not OPEN (nothing is written).
        """
        raise NotImplementedError

    @abstractmethod
    def release_close(self, trade_id: UUID) -> None:
        """Return a CLOSING trade to OPEN after a failed close."""
        raise NotImplementedError

    @abstractmethod
    def close(self, trade: Trade) -> Trade:
        """Persist a trade returned by ``Trade.closed``.

        Raises:
            InvariantViolationError: If the stored trade is neither OPEN
                nor CLOSING.
        """
        raise NotImplementedError

    @abstractmethod
    def find_open_position(self, account_id: str, symbol: str) -> Optional[Trade]:
        """Return the oldest OPEN, filled BUY trade for a symbol, or None."""
        raise NotImplementedError

    @abstractmethod
    def list_closed(self, account_id: str) -> list[Trade]:
        """Return CLOSED BUY positions of an account ordered by close time.

        Closing SELL legs are execution records and are not included.
        """
        raise NotImplementedError


class Venue(ABC):
    """Port for submitting orders to an execution venue."""

    @abstractmethod
    def place_order(self, intent: OrderIntent) -> Union[VenueFill, ExecutionFailure]:
        """Submit an order and return the fill or a tagged failure."""
        raise NotImplementedError


class MarketSnapshotSource(ABC):
    """Port supplying the current price of a symbol."""

    @abstractmethod
    def get_price(self, symbol: str) -> Optional[Decimal]:
        """Return the last known price, or None if the symbol is unknown."""
        raise NotImplementedError


class Clock(ABC):
    """Port for reading the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current timezone-aware UTC datetime."""
        raise NotImplementedError
