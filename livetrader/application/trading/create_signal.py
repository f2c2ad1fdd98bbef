"""
Use case: Publish a new trading signal.

Input: CreateSignalCommand
Output: Signal (ACTIVE)
Side effects: Inserts one row into the signal store.
Failure cases: ValueError on unknown direction or out-of-range confidence.
"""

import logging
from decimal import Decimal

from livetrader.application.trading.dtos import CreateSignalCommand
from livetrader.domain.trading.entities import Direction, Signal
from livetrader.domain.trading.ports import Clock, SignalRepository

logger = logging.getLogger(__name__)


class CreateSignalUseCase:
    """Stores an upstream signal so the control loop can pick it up."""

    def __init__(self, signal_repo: SignalRepository, clock: Clock) -> None:
        self._signal_repo = signal_repo
        self._clock = clock

    def execute(self, command: CreateSignalCommand) -> Signal:
        """Create an ACTIVE signal.

        Args:
            command: The signal fields.

        Returns:
            The stored signal.

        Raises:
            ValueError: If the direction is unknown or confidence is not in 0-100.
        """
        direction = Direction(command.direction.upper())
        if not Decimal("0") <= command.confidence <= Decimal("100"):
            raise ValueError("confidence must be between 0 and 100")

        now = self._clock.now()
        signal = Signal(
            account_id=command.account_id,
            symbol=command.symbol.upper(),
            direction=direction,
            price=command.price,
            confidence=command.confidence,
            timeframe=command.timeframe,
            stop_loss=command.stop_loss,
            take_profit=command.take_profit,
            expires_at=command.expires_at,
            created_at=now,
            updated_at=now,
        )
        saved = self._signal_repo.save(signal)
        logger.info(
            "Signal %s stored: %s %s conf=%s account=%s",
            saved.id,
            saved.direction.value,
            saved.symbol,
            saved.confidence,
            saved.account_id,
        )
        return saved
