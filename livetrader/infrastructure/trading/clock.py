"""
Adapter: Wall clock.

Implements Clock port.
"""

from datetime import datetime, timezone

from livetrader.domain.trading.ports import Clock


class SystemClock(Clock):
    """Current UTC time from the system clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
