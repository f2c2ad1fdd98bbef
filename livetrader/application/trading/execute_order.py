"""
Use case: Execute a sized order intent against the venue.

Input: OrderIntent, idempotency key
Output: ExecutionResult or ExecutionFailure
Side effects: Creates one Trade row per idempotency key (before the
    venue call); records fill details on venue success. A closing SELL
    claims its position (OPEN -> CLOSING) first and releases the claim
    when execution fails.
Failure cases: Returned as ExecutionFailure, never raised. A failed venue
    call leaves the Trade row OPEN with no exit price for external
    reconciliation. No retries happen here.
"""

import logging
from decimal import Decimal
from typing import Optional, Union

from livetrader.domain.trading.entities import (
    ExecutionFailure,
    ExecutionFailureReason,
    ExecutionResult,
    OrderIntent,
    Trade,
    VenueFill,
    quantize_money,
)
from livetrader.domain.trading.errors import CallTimeoutError, DuplicateTradeError
from livetrader.domain.trading.ports import Clock, TradeRepository, Venue
from livetrader.shared.timeouts import call_with_timeout

logger = logging.getLogger(__name__)

DEFAULT_FEE_RATE = Decimal("0.001")


def idempotency_key(signal_id, attempt: int) -> str:
    """Build the idempotency key for one execution attempt of a signal."""
    return f"{signal_id}:{attempt}"


class OrderExecutionPipeline:
    """Two-phase execution: audit row first, venue call second.

    The trade row is written before the venue is contacted so that an
    attempt is always traceable, even when the venue call fails or
    times out.
    """

    def __init__(
        self,
        trade_repo: TradeRepository,
        venue: Venue,
        clock: Clock,
        fee_rate: Decimal = DEFAULT_FEE_RATE,
        venue_timeout: Optional[float] = 10.0,
    ) -> None:
        self._trade_repo = trade_repo
        self._venue = venue
        self._clock = clock
        self._fee_rate = fee_rate
        self._venue_timeout = venue_timeout

    @property
    def fee_rate(self) -> Decimal:
        return self._fee_rate

    def commission_for(self, executed_qty: Decimal) -> Decimal:
        """Commission charged on a fill: executed quantity x fee rate."""
        return quantize_money(executed_qty * self._fee_rate)

    def execute(
        self, intent: OrderIntent, idempotency_key: str
    ) -> Union[ExecutionResult, ExecutionFailure]:
        """Execute an order intent at most once per idempotency key.

        Args:
            intent: The sized, risk-checked order.
            idempotency_key: Caller-derived key, ``"{signal_id}:{attempt}"``.

        Returns:
            ExecutionResult on a venue fill, else ExecutionFailure.
        """
        if self._trade_repo.get_by_idempotency_key(idempotency_key) is not None:
            logger.warning("Duplicate execution request key=%s", idempotency_key)
            return ExecutionFailure(
                ExecutionFailureReason.DUPLICATE_REQUEST,
                f"key {idempotency_key} already used",
            )

        if intent.closes_trade_id is not None:
            if not self._trade_repo.claim_close(intent.closes_trade_id):
                return ExecutionFailure(
                    ExecutionFailureReason.POSITION_NOT_OPEN,
                    f"trade {intent.closes_trade_id} is not open",
                )

        trade = self._open_audit_row(intent, idempotency_key)
        if isinstance(trade, ExecutionFailure):
            self._release_position(intent)
            return trade

        outcome = self._call_venue(intent, trade)
        if isinstance(outcome, ExecutionFailure):
            logger.warning(
                "Execution failed for trade=%s symbol=%s reason=%s: %s",
                trade.id,
                intent.symbol,
                outcome.reason.value,
                outcome.detail,
            )
            self._release_position(intent)
            return outcome

        commission = self.commission_for(outcome.executed_qty)
        self._trade_repo.record_fill(
            trade.id,
            venue_order_id=outcome.order_id,
            executed_price=outcome.executed_price,
            executed_qty=outcome.executed_qty,
            fees=commission,
        )
        logger.info(
            "Executed %s %s %s @ %s (order=%s, trade=%s, commission=%s)",
            intent.side.value,
            outcome.executed_qty,
            intent.symbol,
            outcome.executed_price,
            outcome.order_id,
            trade.id,
            commission,
        )
        return ExecutionResult(
            trade_id=trade.id,
            order_id=outcome.order_id,
            executed_price=outcome.executed_price,
            executed_qty=outcome.executed_qty,
            commission=commission,
            status=outcome.status,
        )

    def _release_position(self, intent: OrderIntent) -> None:
        if intent.closes_trade_id is not None:
            self._trade_repo.release_close(intent.closes_trade_id)

    def _open_audit_row(
        self, intent: OrderIntent, key: str
    ) -> Union[Trade, ExecutionFailure]:
        trade = Trade(
            account_id=intent.account_id,
            signal_id=intent.signal_id,
            idempotency_key=key,
            symbol=intent.symbol,
            side=intent.side,
            kind=intent.kind,
            quantity=intent.quantity,
            entry_price=intent.limit_price or intent.reference_price,
            stop_loss=intent.stop_loss,
            take_profit=intent.take_profit,
            created_at=self._clock.now(),
        )
        try:
            return self._trade_repo.create(trade)
        except DuplicateTradeError:
            return ExecutionFailure(
                ExecutionFailureReason.DUPLICATE_REQUEST, f"key {key} already used"
            )
        except Exception as exc:
            logger.exception("Could not write audit trade for key=%s", key)
            return ExecutionFailure(ExecutionFailureReason.AUDIT_WRITE_FAILED, str(exc))

    def _call_venue(
        self, intent: OrderIntent, trade: Trade
    ) -> Union[VenueFill, ExecutionFailure]:
        try:
            outcome = call_with_timeout(
                "venue.place_order",
                self._venue.place_order,
                intent,
                timeout=self._venue_timeout,
            )
        except CallTimeoutError as exc:
            return ExecutionFailure(ExecutionFailureReason.TIMEOUT, exc.message, trade.id)
        except Exception as exc:
            logger.exception("Venue raised for trade=%s", trade.id)
            return ExecutionFailure(ExecutionFailureReason.VENUE_ERROR, str(exc), trade.id)

        if isinstance(outcome, ExecutionFailure):
            return ExecutionFailure(outcome.reason, outcome.detail, trade.id)
        return outcome
