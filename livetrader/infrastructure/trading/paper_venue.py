"""
Adapter: Paper trading venue.

Implements Venue port by simulating fills against a market snapshot.
MARKET orders fill at the snapshot price. Marketable LIMIT orders
(BUY limit >= market, SELL limit <= market) fill at the better of the
limit and market prices.
"""

import logging
import threading
from typing import Union

from livetrader.domain.trading.entities import (
    ExecutionFailure,
    ExecutionFailureReason,
    OrderIntent,
    OrderKind,
    OrderSide,
    VenueFill,
)
from livetrader.domain.trading.ports import MarketSnapshotSource, Venue

logger = logging.getLogger(__name__)


class PaperVenueAdapter(Venue):
    """Fills orders immediately and in full against current prices."""

    def __init__(self, snapshot: MarketSnapshotSource, order_prefix: str = "paper") -> None:
        self._snapshot = snapshot
        self._prefix = order_prefix
        self._sequence = 0
        self._lock = threading.Lock()

    def _next_order_id(self) -> str:
        with self._lock:
            self._sequence += 1
            return f"{self._prefix}-{self._sequence:08d}"

    def place_order(self, intent: OrderIntent) -> Union[VenueFill, ExecutionFailure]:
        market = self._snapshot.get_price(intent.symbol)
        if market is None:
            return ExecutionFailure(
                ExecutionFailureReason.NO_MARKET_PRICE, f"no price for {intent.symbol}"
            )

        price = market
        if intent.kind is OrderKind.LIMIT:
            if intent.limit_price is None:
                return ExecutionFailure(
                    ExecutionFailureReason.VENUE_REJECTED, "limit order without limit price"
                )
            marketable = (
                intent.limit_price >= market
                if intent.side is OrderSide.BUY
                else intent.limit_price <= market
            )
            if not marketable:
                return ExecutionFailure(
                    ExecutionFailureReason.LIMIT_NOT_MARKETABLE,
                    f"{intent.side.value} limit {intent.limit_price} vs market {market}",
                )
            price = (
                min(intent.limit_price, market)
                if intent.side is OrderSide.BUY
                else max(intent.limit_price, market)
            )

        order_id = self._next_order_id()
        logger.debug(
            "Paper fill %s: %s %s %s @ %s",
            order_id,
            intent.side.value,
            intent.quantity,
            intent.symbol,
            price,
        )
        return VenueFill(order_id=order_id, executed_price=price, executed_qty=intent.quantity)
