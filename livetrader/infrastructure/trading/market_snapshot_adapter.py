"""
Adapter: Market snapshot sources.

Implements MarketSnapshotSource port.

- ``InMemoryMarketSnapshotAdapter``: prices held in memory, updated by
  callers (paper trading, tests).
- ``HttpMarketSnapshotAdapter``: last trade price from a REST ticker
  endpoint (``GET {base_url}/api/v3/ticker/price?symbol=...``).
"""

import logging
import threading
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional

import httpx

from livetrader.domain.trading.ports import MarketSnapshotSource

logger = logging.getLogger(__name__)


class InMemoryMarketSnapshotAdapter(MarketSnapshotSource):
    """Thread-safe symbol -> price map."""

    def __init__(self, prices: Optional[Mapping[str, Decimal]] = None) -> None:
        self._prices: dict[str, Decimal] = {
            symbol.upper(): Decimal(str(price)) for symbol, price in (prices or {}).items()
        }
        self._lock = threading.Lock()

    def set_price(self, symbol: str, price: Decimal) -> None:
        with self._lock:
            self._prices[symbol.upper()] = Decimal(str(price))

    def get_price(self, symbol: str) -> Optional[Decimal]:
        with self._lock:
            return self._prices.get(symbol.upper())


class HttpMarketSnapshotAdapter(MarketSnapshotSource):
    """Reads the latest price from a ticker REST endpoint.

    Network failures and malformed payloads are logged and reported as
    "no price" so the caller can fail the order with NO_MARKET_PRICE.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def get_price(self, symbol: str) -> Optional[Decimal]:
        try:
            resp = self._client.get("/api/v3/ticker/price", params={"symbol": symbol})
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPError as exc:
            logger.warning("Price lookup failed for %s: %s", symbol, exc)
            return None
        except ValueError:
            logger.warning("Price lookup for %s returned invalid JSON", symbol)
            return None

        try:
            price = Decimal(str(payload["price"]))
        except (KeyError, TypeError, InvalidOperation):
            logger.warning("Price payload for %s has no usable price: %r", symbol, payload)
            return None
        return price if price > 0 else None

    def close(self) -> None:
        self._client.close()
