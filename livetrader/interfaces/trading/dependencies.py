"""
Dependency injection for the trading bounded context.

``build_services`` is the composition root: it wires infrastructure
adapters into the use cases and the control loop once per application.
FastAPI dependency functions read the result from ``app.state``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from livetrader.application.trading.cancel_signal import CancelSignalUseCase
from livetrader.application.trading.close_trade import CloseTradeUseCase
from livetrader.application.trading.create_signal import CreateSignalUseCase
from livetrader.application.trading.execute_order import OrderExecutionPipeline
from livetrader.application.trading.expire_signals import SignalExpirySweeper
from livetrader.application.trading.get_portfolio_summary import (
    GetPortfolioSummaryUseCase,
)
from livetrader.application.trading.live_trading_loop import LiveTradingControlLoop
from livetrader.application.trading.reconcile_portfolio import PortfolioReconciler
from livetrader.core.config import Settings
from livetrader.domain.trading.ports import (
    AccountRepository,
    Clock,
    MarketSnapshotSource,
    SignalRepository,
    TradeRepository,
    Venue,
)
from livetrader.infrastructure.trading.account_repository import (
    AccountRepositoryAdapter,
)
from livetrader.infrastructure.trading.clock import SystemClock
from livetrader.infrastructure.trading.in_memory import (
    InMemoryAccountRepository,
    InMemorySignalRepository,
    InMemoryTradeRepository,
)
from livetrader.infrastructure.trading.market_snapshot_adapter import (
    HttpMarketSnapshotAdapter,
    InMemoryMarketSnapshotAdapter,
)
from livetrader.infrastructure.trading.paper_venue import PaperVenueAdapter
from livetrader.infrastructure.trading.signal_repository import SignalRepositoryAdapter
from livetrader.infrastructure.trading.tables import ensure_tables
from livetrader.infrastructure.trading.trade_repository import TradeRepositoryAdapter

logger = logging.getLogger(__name__)


@dataclass
class TradingServices:
    """Everything the HTTP layer needs, built once per application."""

    signal_repo: SignalRepository
    account_repo: AccountRepository
    trade_repo: TradeRepository
    snapshot: MarketSnapshotSource
    venue: Venue
    clock: Clock
    pipeline: OrderExecutionPipeline
    reconciler: PortfolioReconciler
    sweeper: SignalExpirySweeper
    loop: LiveTradingControlLoop
    engine: Optional[Engine] = None

    def shutdown(self) -> None:
        """Stop background schedulers and release the database pool."""
        self.loop.stop()
        self.sweeper.stop()
        if self.engine is not None:
            self.engine.dispose()


def build_engine(database_url: str) -> Engine:
    """Build a SQLAlchemy engine; SQLite connections are shared across threads."""
    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


def wire_services(
    signal_repo: SignalRepository,
    account_repo: AccountRepository,
    trade_repo: TradeRepository,
    snapshot: MarketSnapshotSource,
    settings: Settings,
    venue: Optional[Venue] = None,
    clock: Optional[Clock] = None,
    engine: Optional[Engine] = None,
) -> TradingServices:
    """Assemble use cases and the control loop around the given stores."""
    clock = clock or SystemClock()
    venue = venue or PaperVenueAdapter(snapshot)
    pipeline = OrderExecutionPipeline(
        trade_repo,
        venue,
        clock,
        fee_rate=settings.fee_rate,
        venue_timeout=settings.call_timeout_seconds,
    )
    reconciler = PortfolioReconciler(account_repo, clock)
    sweeper = SignalExpirySweeper(
        signal_repo, clock, interval_seconds=settings.expiry_sweep_interval_seconds
    )
    loop = LiveTradingControlLoop(
        signal_repo=signal_repo,
        account_repo=account_repo,
        trade_repo=trade_repo,
        pipeline=pipeline,
        reconciler=reconciler,
        clock=clock,
        expiry_sweeper=sweeper,
        poll_interval_seconds=settings.poll_interval_seconds,
        call_timeout_seconds=settings.call_timeout_seconds,
        max_workers=settings.loop_max_workers,
    )
    return TradingServices(
        signal_repo=signal_repo,
        account_repo=account_repo,
        trade_repo=trade_repo,
        snapshot=snapshot,
        venue=venue,
        clock=clock,
        pipeline=pipeline,
        reconciler=reconciler,
        sweeper=sweeper,
        loop=loop,
        engine=engine,
    )


def build_services(settings: Settings) -> TradingServices:
    """Build the service graph selected by ``settings.storage_backend``."""
    if settings.market_data_url:
        snapshot: MarketSnapshotSource = HttpMarketSnapshotAdapter(
            settings.market_data_url, timeout=settings.call_timeout_seconds
        )
    else:
        snapshot = InMemoryMarketSnapshotAdapter(settings.paper_prices)

    if settings.storage_backend == "memory":
        logger.info("Using in-memory trading store.")
        return wire_services(
            InMemorySignalRepository(),
            InMemoryAccountRepository(),
            InMemoryTradeRepository(),
            snapshot,
            settings,
        )

    engine = build_engine(settings.database_url)
    ensure_tables(engine)
    logger.info("Using SQL trading store (%s).", engine.url.get_backend_name())
    return wire_services(
        SignalRepositoryAdapter(engine),
        AccountRepositoryAdapter(engine),
        TradeRepositoryAdapter(engine),
        snapshot,
        settings,
        engine=engine,
    )


def get_services(request: Request) -> TradingServices:
    """Return the application's service graph."""
    return request.app.state.trading


def get_control_loop(request: Request) -> LiveTradingControlLoop:
    return get_services(request).loop


def get_expiry_sweeper(request: Request) -> SignalExpirySweeper:
    return get_services(request).sweeper


def get_create_signal_use_case(request: Request) -> CreateSignalUseCase:
    services = get_services(request)
    return CreateSignalUseCase(services.signal_repo, services.clock)


def get_cancel_signal_use_case(request: Request) -> CancelSignalUseCase:
    return CancelSignalUseCase(get_services(request).signal_repo)


def get_signal_repository(request: Request) -> SignalRepository:
    return get_services(request).signal_repo


def get_close_trade_use_case(request: Request) -> CloseTradeUseCase:
    services = get_services(request)
    return CloseTradeUseCase(services.trade_repo, services.reconciler, services.clock)


def get_portfolio_summary_use_case(request: Request) -> GetPortfolioSummaryUseCase:
    services = get_services(request)
    return GetPortfolioSummaryUseCase(services.account_repo, services.trade_repo)
