"""
Tests for the PortfolioReconciler use case.

Uses the in-memory account store; no venue involved.
"""

import logging
from decimal import Decimal
from unittest.mock import patch
from uuid import uuid4

import pytest
from factories import ACCOUNT, make_portfolio

from livetrader.application.trading.reconcile_portfolio import PortfolioReconciler
from livetrader.domain.trading.entities import (
    ExecutionResult,
    OrderSide,
    PortfolioDelta,
    Trade,
    TradeStatus,
)
from livetrader.domain.trading.errors import (
    InvariantViolationError,
    PortfolioNotFoundError,
)


def _result(price: str, qty: str = "0.2", commission: str = "0.0002") -> ExecutionResult:
    return ExecutionResult(
        trade_id=uuid4(),
        order_id="paper-00000001",
        executed_price=Decimal(price),
        executed_qty=Decimal(qty),
        commission=Decimal(commission),
    )


class TestBuildDelta:
    """Tests for translating executions into balance changes."""

    def test_buy_locks_notional_and_charges_commission(self) -> None:
        delta = PortfolioReconciler.build_delta(_result("40000"), OrderSide.BUY)
        assert delta.available == Decimal("-8000.0002")
        assert delta.locked == Decimal("8000")
        assert delta.total == Decimal("-0.0002")
        assert delta.positions == 1
        assert delta.realized_pnl is None

    def test_sell_releases_cost_basis_and_books_pnl(self) -> None:
        delta = PortfolioReconciler.build_delta(
            _result("42000"), OrderSide.SELL, entry_price=Decimal("40000")
        )
        assert delta.available == Decimal("8399.9998")
        assert delta.locked == Decimal("-8000")
        assert delta.total == Decimal("399.9998")
        assert delta.positions == -1
        assert delta.realized_pnl == Decimal("399.9998")

    def test_sell_without_entry_price_is_an_invariant_violation(self) -> None:
        with pytest.raises(InvariantViolationError):
            PortfolioReconciler.build_delta(_result("42000"), OrderSide.SELL)

    def test_deltas_always_balance(self) -> None:
        for side, entry in ((OrderSide.BUY, None), (OrderSide.SELL, Decimal("39999.99"))):
            delta = PortfolioReconciler.build_delta(
                _result("40123.45", qty="0.12345678"), side, entry
            )
            assert delta.available + delta.locked == delta.total


    def test_realized_pnl_is_built_from_rounded_legs(self) -> None:
        """Odd quantities leave no 8th-decimal drift between the legs."""
        delta = PortfolioReconciler.build_delta(
            _result("350.08", qty="0.93393107", commission="0.00093393"),
            OrderSide.SELL,
            entry_price=Decimal("584.77"),
        )
        assert delta.available == Decimal("326.94965506")
        assert delta.locked == Decimal("-546.13487180")
        assert delta.realized_pnl == Decimal("-219.18521674")
        assert delta.available + delta.locked == delta.total


class TestReconcile:
    """Tests for persisting executions into the stored portfolio."""

    def test_buy_then_sell_round_trip(self, account_repo, reconciler) -> None:
        opened = reconciler.reconcile(ACCOUNT, _result("40000"), OrderSide.BUY)
        assert opened.portfolio.available_balance == Decimal("1999.9998")
        assert opened.portfolio.locked_balance == Decimal("8000")
        assert opened.portfolio.total_balance == Decimal("9999.9998")
        assert opened.portfolio.active_positions == 1

        closed = reconciler.reconcile(
            ACCOUNT, _result("42000"), OrderSide.SELL, entry_price=Decimal("40000")
        )
        portfolio = closed.portfolio
        assert closed.realized_pnl == Decimal("399.9998")
        assert portfolio.available_balance == Decimal("10399.9996")
        assert portfolio.locked_balance == Decimal("0")
        assert portfolio.total_balance == Decimal("10399.9996")
        assert portfolio.active_positions == 0
        assert portfolio.total_trades == 1
        assert portfolio.winning_trades == 1
        assert portfolio.win_rate == Decimal("100.00")
        assert account_repo.get(ACCOUNT) == portfolio

    def test_round_trip_at_same_price_costs_only_commissions(self, reconciler) -> None:
        reconciler.reconcile(ACCOUNT, _result("40000", qty="0.1", commission="0.0001"), OrderSide.BUY)
        closed = reconciler.reconcile(
            ACCOUNT,
            _result("40000", qty="0.1", commission="0.0001"),
            OrderSide.SELL,
            entry_price=Decimal("40000"),
        )
        assert closed.portfolio.available_balance == Decimal("9999.9998")
        assert closed.portfolio.total_balance == Decimal("9999.9998")
        assert closed.realized_pnl == Decimal("-0.0001")

    def test_daily_pnl_is_dated_with_the_clock(self, reconciler, clock) -> None:
        reconciler.reconcile(ACCOUNT, _result("40000"), OrderSide.BUY)
        closed = reconciler.reconcile(
            ACCOUNT, _result("39000"), OrderSide.SELL, entry_price=Decimal("40000")
        )
        assert closed.portfolio.pnl_date == clock.now().date()
        assert closed.portfolio.daily_pnl == Decimal("-200.0002")

    def test_uneven_fills_keep_balances_exact(self, account_repo, reconciler) -> None:
        """Round trips with 8-decimal quantities never trip the balance check."""
        legs = [
            ("0.93393107", "584.77", "350.08"),
            ("0.02996024", "34.35", "852.37"),
        ]
        for qty, entry, exit_price in legs:
            commission = str((Decimal(qty) * Decimal("0.001")).quantize(Decimal("0.00000001")))
            reconciler.reconcile(ACCOUNT, _result(entry, qty, commission), OrderSide.BUY)
            reconciler.reconcile(
                ACCOUNT,
                _result(exit_price, qty, commission),
                OrderSide.SELL,
                entry_price=Decimal(entry),
            )

        portfolio = account_repo.get(ACCOUNT)
        assert portfolio.locked_balance == Decimal("0")
        assert portfolio.available_balance == Decimal("9805.32186494")
        assert portfolio.total_balance == Decimal("9805.32186494")
        assert portfolio.total_trades == 2

    def test_missing_portfolio(self, reconciler) -> None:
        with pytest.raises(PortfolioNotFoundError):
            reconciler.reconcile("ghost", _result("40000"), OrderSide.BUY)

    def test_invariant_violation_leaves_stored_state_intact(
        self, account_repo, reconciler, caplog
    ) -> None:
        before = account_repo.get(ACCOUNT)
        unbalanced = PortfolioDelta(available=Decimal("-1"))

        with patch.object(PortfolioReconciler, "build_delta", return_value=unbalanced):
            with caplog.at_level(logging.CRITICAL):
                with pytest.raises(InvariantViolationError):
                    reconciler.reconcile(ACCOUNT, _result("40000"), OrderSide.BUY)

        assert account_repo.get(ACCOUNT) == before
        assert "Reconciliation aborted" in caplog.text


class TestApplyExecution:
    """Tests for the non-persisting variant."""

    def test_does_not_touch_input_or_store(self, account_repo, reconciler) -> None:
        account = make_portfolio()
        reconciled = reconciler.apply_execution(account, _result("40000"), OrderSide.BUY)

        assert reconciled.portfolio.locked_balance == Decimal("8000")
        assert account.locked_balance == Decimal("0")
        assert account_repo.get(ACCOUNT).locked_balance == Decimal("0")


class TestRefreshSharpeRatio:
    """Tests for storing the Sharpe ratio after a close."""

    @staticmethod
    def _closed(pnl_percentage: str) -> Trade:
        return Trade(
            account_id=ACCOUNT,
            symbol="BTCUSDT",
            side=OrderSide.BUY,
            quantity=Decimal("0.2"),
            entry_price=Decimal("40000"),
            pnl_percentage=Decimal(pnl_percentage),
            status=TradeStatus.CLOSED,
        )

    def test_stores_ratio_without_touching_balances(self, account_repo, reconciler) -> None:
        before = account_repo.get(ACCOUNT)

        updated = reconciler.refresh_sharpe_ratio(
            ACCOUNT, [self._closed("5"), self._closed("-2")]
        )

        assert updated.sharpe_ratio == Decimal("0.30")
        stored = account_repo.get(ACCOUNT)
        assert stored.sharpe_ratio == Decimal("0.30")
        assert stored.total_balance == before.total_balance
        assert stored.available_balance == before.available_balance
        assert stored.total_trades == before.total_trades
