"""
Tests for the trading domain layer.

Tests domain entities and error classes in isolation.
No external dependencies or IO required.
"""

from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal

import pytest
from factories import START, make_portfolio, make_signal

from livetrader.domain.trading.entities import (
    OrderSide,
    PortfolioDelta,
    SignalStatus,
    Trade,
    TradeStatus,
    quantize_quantity,
)
from livetrader.domain.trading.errors import (
    CallTimeoutError,
    InvalidConfigError,
    InvariantViolationError,
    TradingDomainError,
)


class TestSignalStatus:
    """Tests for the signal lifecycle."""

    def test_active_can_move_to_every_terminal_status(self) -> None:
        for target in (SignalStatus.EXECUTED, SignalStatus.EXPIRED, SignalStatus.CANCELLED):
            assert SignalStatus.ACTIVE.can_transition_to(target)

    def test_terminal_statuses_are_immutable(self) -> None:
        for current in (SignalStatus.EXECUTED, SignalStatus.EXPIRED, SignalStatus.CANCELLED):
            assert current.is_terminal
            for target in SignalStatus:
                assert not current.can_transition_to(target)

    def test_active_cannot_move_to_active(self) -> None:
        assert not SignalStatus.ACTIVE.can_transition_to(SignalStatus.ACTIVE)


class TestSignalEntity:
    """Tests for the Signal entity."""

    def test_signal_without_expiry_never_expires(self) -> None:
        signal = make_signal(expires_at=None)
        assert not signal.is_expired(START + timedelta(days=365))

    def test_signal_expires_at_its_expiry_time(self) -> None:
        signal = make_signal(expires_at=START)
        assert not signal.is_expired(START - timedelta(seconds=1))
        assert signal.is_expired(START)


class TestTradeEntity:
    """Tests for the Trade entity."""

    def _trade(self) -> Trade:
        return Trade(
            account_id="acct-1",
            symbol="BTCUSDT",
            side=OrderSide.BUY,
            quantity=Decimal("0.2"),
            entry_price=Decimal("40000"),
            fees=Decimal("0.0002"),
        )

    def test_closed_sets_exit_fields_and_percentage(self) -> None:
        closed = self._trade().closed(
            exit_price=Decimal("42000"),
            realized_pnl=Decimal("399.9998"),
            fees=Decimal("0.0002"),
            closed_at=START,
        )
        assert closed.status is TradeStatus.CLOSED
        assert closed.exit_price == Decimal("42000")
        assert closed.realized_pnl == Decimal("399.9998")
        assert closed.pnl_percentage == Decimal("5.00")
        assert closed.fees == Decimal("0.0004")
        assert closed.closed_at == START

    def test_closed_returns_copy(self) -> None:
        trade = self._trade()
        trade.closed(Decimal("1"), Decimal("0"), Decimal("0"), START)
        assert trade.is_open
        assert trade.exit_price is None

    def test_closing_a_closed_trade_raises(self) -> None:
        closed = self._trade().closed(Decimal("1"), Decimal("0"), Decimal("0"), START)
        with pytest.raises(InvariantViolationError):
            closed.closed(Decimal("1"), Decimal("0"), Decimal("0"), START)

    def test_claimed_trade_can_be_closed(self) -> None:
        claimed = replace(self._trade(), status=TradeStatus.CLOSING)
        assert not claimed.is_open
        closed = claimed.closed(Decimal("1"), Decimal("0"), Decimal("0"), START)
        assert closed.status is TradeStatus.CLOSED


class TestPortfolioEntity:
    """Tests for the Portfolio ledger."""

    def test_apply_keeps_receiver_unchanged(self) -> None:
        portfolio = make_portfolio()
        portfolio.apply(
            PortfolioDelta(
                available=Decimal("-100"), locked=Decimal("100"), positions=1
            )
        )
        assert portfolio.available_balance == Decimal("10000")
        assert portfolio.active_positions == 0

    def test_apply_rejects_unbalanced_delta(self) -> None:
        portfolio = make_portfolio()
        with pytest.raises(InvariantViolationError):
            portfolio.apply(PortfolioDelta(available=Decimal("-100")))

    def test_realized_pnl_updates_counters_and_win_rate(self) -> None:
        today = date(2024, 3, 1)
        portfolio = make_portfolio()
        win = portfolio.apply(
            PortfolioDelta(
                available=Decimal("50"), total=Decimal("50"), realized_pnl=Decimal("50")
            ),
            as_of=today,
        )
        loss = win.apply(
            PortfolioDelta(
                available=Decimal("-20"), total=Decimal("-20"), realized_pnl=Decimal("-20")
            ),
            as_of=today,
        )
        assert loss.total_trades == 2
        assert loss.winning_trades == 1
        assert loss.win_rate == Decimal("50.00")
        assert loss.total_pnl == Decimal("30")
        assert loss.daily_pnl == Decimal("30")
        assert loss.pnl_date == today

    def test_zero_pnl_is_not_a_win(self) -> None:
        portfolio = make_portfolio().apply(PortfolioDelta(realized_pnl=Decimal("0")))
        assert portfolio.total_trades == 1
        assert portfolio.winning_trades == 0
        assert portfolio.win_rate == Decimal("0.00")

    def test_daily_pnl_resets_on_a_new_day(self) -> None:
        portfolio = make_portfolio(daily_pnl=Decimal("-300"), pnl_date=date(2024, 2, 29))
        assert portfolio.daily_pnl_on(date(2024, 2, 29)) == Decimal("-300")
        assert portfolio.daily_pnl_on(date(2024, 3, 1)) == Decimal("0")

        updated = portfolio.apply(
            PortfolioDelta(
                available=Decimal("-10"), total=Decimal("-10"), realized_pnl=Decimal("-10")
            ),
            as_of=date(2024, 3, 1),
        )
        assert updated.daily_pnl == Decimal("-10")

    def test_drawdown_tracks_peak(self) -> None:
        portfolio = make_portfolio().apply(
            PortfolioDelta(
                available=Decimal("-1000"), total=Decimal("-1000"), realized_pnl=Decimal("-1000")
            )
        )
        assert portfolio.peak_balance == Decimal("10000")
        assert portfolio.max_drawdown == Decimal("10.00")

    def test_sharpe_ratio_is_replaced_only_when_given(self) -> None:
        rated = make_portfolio().apply(PortfolioDelta(sharpe_ratio=Decimal("1.25")))
        assert rated.sharpe_ratio == Decimal("1.25")
        assert rated.total_balance == Decimal("10000")

        kept = rated.apply(PortfolioDelta(realized_pnl=Decimal("0")))
        assert kept.sharpe_ratio == Decimal("1.25")


class TestQuantization:
    """Tests for quantity rounding."""

    def test_quantity_rounds_down(self) -> None:
        assert quantize_quantity(Decimal("0.123456789")) == Decimal("0.12345678")


class TestDomainErrors:
    """Tests for domain error classes."""

    def test_errors_share_base_class_and_code(self) -> None:
        err = InvalidConfigError("no trading symbols configured")
        assert isinstance(err, TradingDomainError)
        assert err.code == "INVALID_CONFIG"
        assert "no trading symbols configured" in err.message

    def test_timeout_message_names_operation(self) -> None:
        err = CallTimeoutError("venue.place_order", 2.5)
        assert err.message == "venue.place_order timed out after 2.5s"
        assert err.code == "TIMEOUT"
