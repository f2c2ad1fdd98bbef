"""
Performance ratios over closed positions.

Returns are per-trade P&L percentages. Trades do not close on a fixed
schedule, so the ratio is reported per trade and is not annualized.
"""

from decimal import Decimal

import numpy as np

from livetrader.domain.trading.entities import PERCENT_STEP, ZERO, Trade


def trade_returns(trades: list[Trade]) -> np.ndarray:
    """Per-trade returns (percent) of the trades that have one."""
    return np.array(
        [float(t.pnl_percentage) for t in trades if t.pnl_percentage is not None],
        dtype=float,
    )


def sharpe_ratio(trades: list[Trade], risk_free_return: float = 0.0) -> Decimal:
    """Sharpe ratio of per-trade returns.

    Sharpe = (mean return - risk-free return) / sample std dev of returns

    Args:
        trades: Closed positions.
        risk_free_return: Risk-free return per trade, in percent.

    Returns:
        The ratio rounded to 2 dp; zero with fewer than two returns or
        zero dispersion.
    """
    returns = trade_returns(trades)
    if len(returns) < 2:
        return ZERO

    mean_return = np.mean(returns)
    std_return = np.std(returns, ddof=1)
    if std_return == 0:
        return ZERO

    sharpe = (mean_return - risk_free_return) / std_return
    return Decimal(str(float(sharpe))).quantize(PERCENT_STEP)
