"""
Tests for the trading application layer (use cases).

Use cases run against the in-memory stores and the paper venue.
Each test verifies orchestration logic, not business rules.
"""

import threading
import time
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from factories import ACCOUNT, START, BlockingVenue, make_signal

from livetrader.application.trading.cancel_signal import CancelSignalUseCase
from livetrader.application.trading.close_trade import CloseTradeUseCase
from livetrader.application.trading.create_signal import CreateSignalUseCase
from livetrader.application.trading.dtos import CloseTradeCommand, CreateSignalCommand
from livetrader.application.trading.execute_order import (
    OrderExecutionPipeline,
    idempotency_key,
)
from livetrader.application.trading.expire_signals import SignalExpirySweeper
from livetrader.application.trading.get_portfolio_summary import GetPortfolioSummaryUseCase
from livetrader.application.trading.performance import sharpe_ratio
from livetrader.domain.trading.entities import (
    Direction,
    ExecutionFailure,
    ExecutionFailureReason,
    ExecutionResult,
    OrderIntent,
    OrderKind,
    OrderSide,
    SignalStatus,
    Trade,
    TradeStatus,
)
from livetrader.domain.trading.errors import (
    CallTimeoutError,
    InvalidStatusTransitionError,
    InvariantViolationError,
    PortfolioNotFoundError,
    SignalNotFoundError,
    TradeNotFoundError,
)
from livetrader.shared.timeouts import call_with_timeout


def _intent(**overrides) -> OrderIntent:
    fields = dict(
        account_id=ACCOUNT,
        signal_id=uuid4(),
        symbol="BTCUSDT",
        side=OrderSide.BUY,
        quantity=Decimal("0.2"),
        reference_price=Decimal("40000"),
    )
    fields.update(overrides)
    return OrderIntent(**fields)


class TestOrderExecutionPipeline:
    """Tests for the audit-then-execute pipeline."""

    def test_fill_is_recorded_on_the_audit_row(self, pipeline, trade_repo) -> None:
        """A venue fill returns an ExecutionResult and marks the row filled."""
        intent = _intent()
        result = pipeline.execute(intent, idempotency_key(intent.signal_id, 1))

        assert isinstance(result, ExecutionResult)
        assert result.order_id == "paper-00000001"
        assert result.executed_price == Decimal("40000")
        assert result.executed_qty == Decimal("0.2")
        assert result.commission == Decimal("0.0002")

        trade = trade_repo.get_by_id(result.trade_id)
        assert trade.filled
        assert trade.is_open
        assert trade.venue_order_id == "paper-00000001"
        assert trade.idempotency_key == f"{intent.signal_id}:1"
        assert trade.fees == Decimal("0.0002")

    def test_duplicate_key_never_reaches_the_venue(self, pipeline, venue, trade_repo) -> None:
        """A reused idempotency key is rejected before any venue call."""
        intent = _intent()
        key = idempotency_key(intent.signal_id, 1)
        pipeline.execute(intent, key)
        second = pipeline.execute(intent, key)

        assert isinstance(second, ExecutionFailure)
        assert second.reason is ExecutionFailureReason.DUPLICATE_REQUEST
        assert len(venue.intents) == 1
        assert len(trade_repo.all()) == 1

    def test_venue_rejection_leaves_row_open(self, pipeline, trade_repo) -> None:
        """A venue rejection keeps the audit row OPEN and unfilled."""
        result = pipeline.execute(_intent(kind=OrderKind.LIMIT), "k-1")

        assert result.reason is ExecutionFailureReason.VENUE_REJECTED
        trade = trade_repo.get_by_id(result.trade_id)
        assert trade.status is TradeStatus.OPEN
        assert not trade.filled
        assert trade.exit_price is None

    def test_venue_exception_is_tagged(self, trade_repo, clock) -> None:
        venue = MagicMock()
        venue.place_order.side_effect = ConnectionError("venue down")
        pipeline = OrderExecutionPipeline(trade_repo, venue, clock, venue_timeout=None)

        result = pipeline.execute(_intent(), "k-1")

        assert result.reason is ExecutionFailureReason.VENUE_ERROR
        assert "venue down" in result.detail
        assert result.trade_id is not None

    def test_venue_timeout(self, trade_repo, snapshot, clock) -> None:
        """A venue that hangs past the timeout yields TIMEOUT and an OPEN row."""
        venue = BlockingVenue(snapshot)
        pipeline = OrderExecutionPipeline(trade_repo, venue, clock, venue_timeout=0.05)
        try:
            result = pipeline.execute(_intent(), "k-1")
        finally:
            venue.release.set()

        assert result.reason is ExecutionFailureReason.TIMEOUT
        trade = trade_repo.get_by_id(result.trade_id)
        assert trade.is_open
        assert not trade.filled

    def test_audit_write_failure_skips_the_venue(self, pipeline, venue, trade_repo) -> None:
        with patch.object(trade_repo, "create", side_effect=RuntimeError("disk full")):
            result = pipeline.execute(_intent(), "k-1")

        assert result.reason is ExecutionFailureReason.AUDIT_WRITE_FAILED
        assert venue.intents == []

    def test_closing_unknown_position(self, pipeline, venue) -> None:
        result = pipeline.execute(
            _intent(side=OrderSide.SELL, closes_trade_id=uuid4()), "k-1"
        )
        assert result.reason is ExecutionFailureReason.POSITION_NOT_OPEN
        assert venue.intents == []

    def test_closing_sell_needs_the_position_claim(
        self, pipeline, venue, open_position, trade_repo
    ) -> None:
        """A position another closer has claimed is never sold again."""
        position = open_position()
        assert trade_repo.claim_close(position.id)

        result = pipeline.execute(
            _intent(side=OrderSide.SELL, closes_trade_id=position.id), "k-sell"
        )

        assert result.reason is ExecutionFailureReason.POSITION_NOT_OPEN
        assert [i.side for i in venue.intents] == [OrderSide.BUY]

    def test_failed_closing_sell_releases_the_position(
        self, pipeline, open_position, trade_repo
    ) -> None:
        position = open_position()

        rejected = pipeline.execute(
            _intent(side=OrderSide.SELL, kind=OrderKind.LIMIT, closes_trade_id=position.id),
            "k-sell-1",
        )
        assert rejected.reason is ExecutionFailureReason.VENUE_REJECTED
        assert trade_repo.get_by_id(position.id).status is TradeStatus.OPEN

        sold = pipeline.execute(
            _intent(side=OrderSide.SELL, closes_trade_id=position.id), "k-sell-2"
        )
        assert isinstance(sold, ExecutionResult)
        assert trade_repo.get_by_id(position.id).status is TradeStatus.CLOSING

    def test_symbol_without_market_price(self, pipeline) -> None:
        result = pipeline.execute(_intent(symbol="XRPUSDT"), "k-1")
        assert result.reason is ExecutionFailureReason.NO_MARKET_PRICE

    def test_limit_orders(self, pipeline) -> None:
        """Marketable limits fill at the better of limit and market; others are refused."""
        passive = pipeline.execute(
            _intent(kind=OrderKind.LIMIT, limit_price=Decimal("39000")), "k-1"
        )
        assert passive.reason is ExecutionFailureReason.LIMIT_NOT_MARKETABLE

        buy = pipeline.execute(
            _intent(kind=OrderKind.LIMIT, limit_price=Decimal("41000")), "k-2"
        )
        assert isinstance(buy, ExecutionResult)
        assert buy.executed_price == Decimal("40000")

        sell = pipeline.execute(
            _intent(side=OrderSide.SELL, kind=OrderKind.LIMIT, limit_price=Decimal("39000")),
            "k-3",
        )
        assert sell.executed_price == Decimal("40000")


class TestCreateSignalUseCase:
    """Tests for the CreateSignalUseCase."""

    def _command(self, **overrides) -> CreateSignalCommand:
        fields = dict(
            account_id=ACCOUNT,
            symbol="btcusdt",
            direction="buy",
            price=Decimal("40000"),
            confidence=Decimal("82.5"),
            timeframe="1h",
            stop_loss=Decimal("39000"),
        )
        fields.update(overrides)
        return CreateSignalCommand(**fields)

    def test_stores_an_active_signal(self, signal_repo, clock) -> None:
        """A new signal is stored ACTIVE with normalized symbol and direction."""
        signal = CreateSignalUseCase(signal_repo, clock).execute(self._command())

        assert signal.status is SignalStatus.ACTIVE
        assert signal.symbol == "BTCUSDT"
        assert signal.direction is Direction.BUY
        assert signal.created_at == START
        assert signal_repo.get_by_id(signal.id) == signal

    def test_unknown_direction(self, signal_repo, clock) -> None:
        with pytest.raises(ValueError):
            CreateSignalUseCase(signal_repo, clock).execute(self._command(direction="LONG"))

    @pytest.mark.parametrize("confidence", ["-1", "100.01"])
    def test_confidence_out_of_range(self, signal_repo, clock, confidence) -> None:
        with pytest.raises(ValueError):
            CreateSignalUseCase(signal_repo, clock).execute(
                self._command(confidence=Decimal(confidence))
            )


class TestCancelSignalUseCase:
    """Tests for the CancelSignalUseCase."""

    def test_cancel_active_signal(self, signal_repo) -> None:
        signal = signal_repo.save(make_signal())
        cancelled = CancelSignalUseCase(signal_repo).execute(signal.id)
        assert cancelled.status is SignalStatus.CANCELLED

    def test_cancel_terminal_signal_is_refused(self, signal_repo) -> None:
        """Terminal signals never change status again."""
        signal = signal_repo.save(make_signal(status=SignalStatus.EXECUTED))
        with pytest.raises(InvalidStatusTransitionError):
            CancelSignalUseCase(signal_repo).execute(signal.id)
        assert signal_repo.get_by_id(signal.id).status is SignalStatus.EXECUTED

    def test_cancel_unknown_signal(self, signal_repo) -> None:
        with pytest.raises(SignalNotFoundError):
            CancelSignalUseCase(signal_repo).execute(uuid4())


class TestCloseTradeUseCase:
    """Tests for the CloseTradeUseCase."""

    def test_close_books_pnl_and_releases_balance(
        self, open_position, trade_repo, reconciler, clock, account_repo
    ) -> None:
        """Closing at 41000 with 1 in fees realizes 199."""
        trade = open_position()
        clock.advance(hours=2)
        use_case = CloseTradeUseCase(trade_repo, reconciler, clock)

        result = use_case.execute(
            CloseTradeCommand(trade.id, Decimal("41000"), fees=Decimal("1"))
        )

        assert result.realized_pnl == Decimal("199")
        assert result.pnl_percentage == Decimal("2.49")
        stored = trade_repo.get_by_id(trade.id)
        assert stored.status is TradeStatus.CLOSED
        assert stored.exit_price == Decimal("41000")
        assert stored.closed_at == START + timedelta(hours=2)

        portfolio = account_repo.get(ACCOUNT)
        assert portfolio.available_balance == Decimal("10198.9998")
        assert portfolio.locked_balance == Decimal("0")
        assert portfolio.active_positions == 0

    def test_closing_twice_is_refused(self, open_position, trade_repo, reconciler, clock) -> None:
        trade = open_position()
        use_case = CloseTradeUseCase(trade_repo, reconciler, clock)
        use_case.execute(CloseTradeCommand(trade.id, Decimal("41000")))

        with pytest.raises(InvalidStatusTransitionError):
            use_case.execute(CloseTradeCommand(trade.id, Decimal("41000")))

    def test_concurrent_closes_book_the_position_once(
        self, open_position, trade_repo, reconciler, clock, account_repo
    ) -> None:
        """Two racing closes credit the portfolio exactly once."""
        trade = open_position()
        use_case = CloseTradeUseCase(trade_repo, reconciler, clock)
        apply_delta = account_repo.apply_delta

        def slow_apply_delta(*args, **kwargs):
            time.sleep(0.2)
            return apply_delta(*args, **kwargs)

        refused: list[InvalidStatusTransitionError] = []

        def close() -> None:
            try:
                use_case.execute(CloseTradeCommand(trade.id, Decimal("42000")))
            except InvalidStatusTransitionError as exc:
                refused.append(exc)

        with patch.object(account_repo, "apply_delta", side_effect=slow_apply_delta):
            threads = [threading.Thread(target=close) for _ in range(2)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        assert len(refused) == 1
        portfolio = account_repo.get(ACCOUNT)
        assert portfolio.available_balance == Decimal("10399.9998")
        assert portfolio.locked_balance == Decimal("0")
        assert portfolio.total_pnl == Decimal("400")
        assert portfolio.total_trades == 1
        assert trade_repo.get_by_id(trade.id).status is TradeStatus.CLOSED

    def test_failed_reconciliation_releases_the_claim(
        self, open_position, trade_repo, reconciler, clock
    ) -> None:
        trade = open_position()
        use_case = CloseTradeUseCase(trade_repo, reconciler, clock)

        with patch.object(
            reconciler, "reconcile", side_effect=InvariantViolationError("ledger drift")
        ):
            with pytest.raises(InvariantViolationError):
                use_case.execute(CloseTradeCommand(trade.id, Decimal("41000")))

        assert trade_repo.get_by_id(trade.id).is_open

    def test_unfilled_trade_cannot_be_closed(self, trade_repo, reconciler, clock) -> None:
        trade = trade_repo.create(
            Trade(
                account_id=ACCOUNT,
                symbol="BTCUSDT",
                side=OrderSide.BUY,
                quantity=Decimal("0.2"),
                entry_price=Decimal("40000"),
            )
        )
        with pytest.raises(InvalidStatusTransitionError):
            CloseTradeUseCase(trade_repo, reconciler, clock).execute(
                CloseTradeCommand(trade.id, Decimal("41000"))
            )

    def test_unknown_trade(self, trade_repo, reconciler, clock) -> None:
        with pytest.raises(TradeNotFoundError):
            CloseTradeUseCase(trade_repo, reconciler, clock).execute(
                CloseTradeCommand(uuid4(), Decimal("41000"))
            )

    def test_exit_price_must_be_positive(self, open_position, trade_repo, reconciler, clock) -> None:
        trade = open_position()
        with pytest.raises(ValueError):
            CloseTradeUseCase(trade_repo, reconciler, clock).execute(
                CloseTradeCommand(trade.id, Decimal("0"))
            )
        assert trade_repo.get_by_id(trade.id).is_open


class TestGetPortfolioSummaryUseCase:
    """Tests for the GetPortfolioSummaryUseCase."""

    def test_summary_after_two_round_trips(
        self, open_position, trade_repo, account_repo, reconciler, clock
    ) -> None:
        close = CloseTradeUseCase(trade_repo, reconciler, clock)
        first = open_position()
        close.execute(CloseTradeCommand(first.id, Decimal("42000")))
        clock.advance(minutes=5)
        second = open_position()
        close.execute(CloseTradeCommand(second.id, Decimal("39200")))

        summary = GetPortfolioSummaryUseCase(account_repo, trade_repo).execute(ACCOUNT)

        assert summary.total_trades == 2
        assert summary.winning_trades == 1
        assert summary.win_rate == Decimal("50.00")
        assert summary.active_positions == 0
        assert summary.total_pnl == Decimal("240")
        assert summary.sharpe_ratio == Decimal("0.30")
        assert account_repo.get(ACCOUNT).sharpe_ratio == Decimal("0.30")

    def test_missing_portfolio(self, account_repo, trade_repo) -> None:
        with pytest.raises(PortfolioNotFoundError):
            GetPortfolioSummaryUseCase(account_repo, trade_repo).execute("ghost")

    def test_sharpe_needs_two_returns(self) -> None:
        trade = Trade(
            account_id=ACCOUNT,
            symbol="BTCUSDT",
            side=OrderSide.BUY,
            quantity=Decimal("1"),
            entry_price=Decimal("1"),
            pnl_percentage=Decimal("5"),
        )
        assert sharpe_ratio([]) == Decimal("0")
        assert sharpe_ratio([trade]) == Decimal("0")
        assert sharpe_ratio([trade, trade]) == Decimal("0")


class TestSignalExpirySweeper:
    """Tests for the SignalExpirySweeper."""

    def test_sweep_expires_only_overdue_signals(self, signal_repo, clock) -> None:
        overdue = signal_repo.save(make_signal(expires_at=START - timedelta(seconds=1)))
        at_now = signal_repo.save(make_signal(expires_at=START))
        later = signal_repo.save(make_signal(expires_at=START + timedelta(hours=1)))
        forever = signal_repo.save(make_signal(expires_at=None))

        assert SignalExpirySweeper(signal_repo, clock).sweep() == 2

        assert signal_repo.get_by_id(overdue.id).status is SignalStatus.EXPIRED
        assert signal_repo.get_by_id(at_now.id).status is SignalStatus.EXPIRED
        assert signal_repo.get_by_id(later.id).status is SignalStatus.ACTIVE
        assert signal_repo.get_by_id(forever.id).status is SignalStatus.ACTIVE

    def test_expired_signals_stay_expired(self, signal_repo, clock) -> None:
        signal = signal_repo.save(make_signal(expires_at=START))
        sweeper = SignalExpirySweeper(signal_repo, clock)
        sweeper.sweep()
        assert sweeper.sweep() == 0
        assert not signal_repo.set_status(signal.id, SignalStatus.EXECUTED)

    def test_start_and_stop(self, signal_repo, clock, scheduler_factory) -> None:
        """The sweeper schedules itself once and shuts the scheduler down on stop."""
        sweeper = SignalExpirySweeper(
            signal_repo, clock, interval_seconds=15, scheduler_factory=scheduler_factory
        )
        sweeper.start()
        sweeper.start()

        scheduler = scheduler_factory.return_value
        scheduler_factory.assert_called_once()
        scheduler.add_job.assert_called_once()
        scheduler.start.assert_called_once()
        assert sweeper.is_running

        sweeper.stop()
        sweeper.stop()
        scheduler.shutdown.assert_called_once_with(wait=False)
        assert not sweeper.is_running

    def test_scheduled_sweep_survives_store_errors(
        self, signal_repo, clock, scheduler_factory
    ) -> None:
        sweeper = SignalExpirySweeper(signal_repo, clock, scheduler_factory=scheduler_factory)
        sweeper.start()
        job = scheduler_factory.return_value.add_job.call_args[0][0]

        with patch.object(signal_repo, "expire_due", side_effect=RuntimeError("db gone")):
            job()


class TestCallWithTimeout:
    """Tests for bounded waiting on blocking calls."""

    def test_returns_the_result(self) -> None:
        assert call_with_timeout("add", lambda a, b: a + b, 1, 2, timeout=1.0) == 3

    def test_runs_inline_without_timeout(self) -> None:
        caller = threading.current_thread()
        assert call_with_timeout("who", threading.current_thread, timeout=None) is caller

    def test_slow_call_raises(self) -> None:
        gate = threading.Event()
        try:
            with pytest.raises(CallTimeoutError) as excinfo:
                call_with_timeout("slow.op", gate.wait, 5, timeout=0.05)
        finally:
            gate.set()
        assert excinfo.value.operation == "slow.op"

    def test_exceptions_propagate(self) -> None:
        def boom():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            call_with_timeout("boom", boom, timeout=1.0)
