"""
Use case: Cancel an ACTIVE signal.

Input: signal ID
Output: Signal (CANCELLED)
Side effects: Conditional status update on the signal row.
Failure cases: SignalNotFoundError, InvalidStatusTransitionError.
"""

import logging
from uuid import UUID

from livetrader.domain.trading.entities import Signal, SignalStatus
from livetrader.domain.trading.errors import (
    InvalidStatusTransitionError,
    SignalNotFoundError,
)
from livetrader.domain.trading.ports import SignalRepository

logger = logging.getLogger(__name__)


class CancelSignalUseCase:
    """Withdraws a signal before the control loop acts on it."""

    def __init__(self, signal_repo: SignalRepository) -> None:
        self._signal_repo = signal_repo

    def execute(self, signal_id: UUID) -> Signal:
        signal = self._signal_repo.get_by_id(signal_id)
        if signal is None:
            raise SignalNotFoundError(str(signal_id))

        if not self._signal_repo.set_status(signal_id, SignalStatus.CANCELLED):
            current = self._signal_repo.get_by_id(signal_id) or signal
            raise InvalidStatusTransitionError(
                str(signal_id), current.status.value, SignalStatus.CANCELLED.value
            )

        logger.info("Signal %s cancelled", signal_id)
        return self._signal_repo.get_by_id(signal_id) or signal
