"""
Use case: Expire ACTIVE signals whose expiry time has passed.

Runs on its own interval scheduler so that signals expire even while
live trading is stopped. The control loop also sweeps at the start of
every tick.
"""

import logging
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from livetrader.domain.trading.ports import Clock, SignalRepository

logger = logging.getLogger(__name__)


class SignalExpirySweeper:
    """Periodic ``ACTIVE -> EXPIRED`` sweep over the signal store."""

    def __init__(
        self,
        signal_repo: SignalRepository,
        clock: Clock,
        interval_seconds: float = 60.0,
        scheduler_factory: Callable[..., Any] = BackgroundScheduler,
    ) -> None:
        self._signal_repo = signal_repo
        self._clock = clock
        self._interval = interval_seconds
        self._scheduler_factory = scheduler_factory
        self._scheduler: Optional[Any] = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def sweep(self) -> int:
        """Expire every overdue ACTIVE signal.

        Returns:
            Number of signals moved to EXPIRED.
        """
        expired = self._signal_repo.expire_due(self._clock.now())
        if expired:
            logger.info("Expired %d signals", expired)
        return expired

    def start(self) -> None:
        """Start sweeping every ``interval_seconds``."""
        if self._scheduler is not None:
            logger.warning("Expiry sweeper already running.")
            return

        scheduler = self._scheduler_factory(
            timezone="UTC",
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        scheduler.add_job(
            self._scheduled_sweep,
            IntervalTrigger(seconds=self._interval),
            id="signal_expiry_sweep",
            name="Signal expiry sweep",
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Signal expiry sweeper started (every %.0fs).", self._interval)

    def stop(self) -> None:
        """Stop the periodic sweep. Safe to call when not running."""
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Signal expiry sweeper stopped.")

    def _scheduled_sweep(self) -> None:
        try:
            self.sweep()
        except Exception:
            logger.exception("Scheduled signal expiry sweep failed.")
