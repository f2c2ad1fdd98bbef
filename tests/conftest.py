"""
Shared fixtures for the live trading test suite.

Everything runs against the in-memory stores and the paper venue
unless a test module builds its own SQL engine.
"""

from decimal import Decimal
from typing import Optional
from unittest.mock import MagicMock

import pytest
from factories import FixedClock, RecordingVenue, make_limits, make_portfolio, make_signal

from livetrader.application.trading.execute_order import (
    OrderExecutionPipeline,
    idempotency_key,
)
from livetrader.application.trading.expire_signals import SignalExpirySweeper
from livetrader.application.trading.live_trading_loop import LiveTradingControlLoop
from livetrader.application.trading.reconcile_portfolio import PortfolioReconciler
from livetrader.domain.trading.entities import (
    OrderIntent,
    OrderSide,
    RiskLimits,
    Signal,
    Trade,
)
from livetrader.infrastructure.trading.in_memory import (
    InMemoryAccountRepository,
    InMemorySignalRepository,
    InMemoryTradeRepository,
)
from livetrader.infrastructure.trading.market_snapshot_adapter import (
    InMemoryMarketSnapshotAdapter,
)
from livetrader.shared.security.rate_limiting import limiter


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    limiter.reset()
    yield


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def signal_repo() -> InMemorySignalRepository:
    return InMemorySignalRepository()


@pytest.fixture
def account_repo() -> InMemoryAccountRepository:
    repo = InMemoryAccountRepository()
    repo.save(make_portfolio())
    return repo


@pytest.fixture
def trade_repo() -> InMemoryTradeRepository:
    return InMemoryTradeRepository()


@pytest.fixture
def snapshot() -> InMemoryMarketSnapshotAdapter:
    return InMemoryMarketSnapshotAdapter(
        {"BTCUSDT": Decimal("40000"), "ETHUSDT": Decimal("2500")}
    )


@pytest.fixture
def venue(snapshot) -> RecordingVenue:
    return RecordingVenue(snapshot)


@pytest.fixture
def pipeline(trade_repo, venue, clock) -> OrderExecutionPipeline:
    return OrderExecutionPipeline(trade_repo, venue, clock, venue_timeout=5.0)


@pytest.fixture
def reconciler(account_repo, clock) -> PortfolioReconciler:
    return PortfolioReconciler(account_repo, clock)


@pytest.fixture
def limits() -> RiskLimits:
    return make_limits()


@pytest.fixture
def scheduler_factory() -> MagicMock:
    """Stands in for BackgroundScheduler so no real ticks fire."""
    return MagicMock(name="BackgroundScheduler")


@pytest.fixture
def make_loop(signal_repo, account_repo, trade_repo, reconciler, clock, scheduler_factory):
    def _make(
        pipeline: OrderExecutionPipeline,
        call_timeout: Optional[float] = 5.0,
        max_workers: int = 4,
    ) -> LiveTradingControlLoop:
        return LiveTradingControlLoop(
            signal_repo=signal_repo,
            account_repo=account_repo,
            trade_repo=trade_repo,
            pipeline=pipeline,
            reconciler=reconciler,
            clock=clock,
            expiry_sweeper=SignalExpirySweeper(signal_repo, clock),
            call_timeout_seconds=call_timeout,
            max_workers=max_workers,
            scheduler_factory=scheduler_factory,
        )

    return _make


@pytest.fixture
def loop(make_loop, pipeline) -> LiveTradingControlLoop:
    return make_loop(pipeline)


@pytest.fixture
def open_position(trade_repo, pipeline, reconciler, account_repo):
    """A filled BUY of 0.2 BTCUSDT at 40000, reconciled into the portfolio."""

    def _open(quantity: Decimal = Decimal("0.2"), signal: Optional[Signal] = None) -> Trade:
        signal = signal or make_signal()
        intent = OrderIntent(
            account_id=signal.account_id,
            signal_id=signal.id,
            symbol=signal.symbol,
            side=OrderSide.BUY,
            quantity=quantity,
            reference_price=signal.price,
        )
        result = pipeline.execute(intent, idempotency_key(signal.id, 1))
        reconciler.reconcile(signal.account_id, result, OrderSide.BUY)
        return trade_repo.get_by_id(result.trade_id)

    return _open
