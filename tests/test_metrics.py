import numpy as np
import pandas as pd
import pytest

from signal_backtester.engine import (
    EquityCurvePoint,
    Trade,
    compute_backtest_stats,
    compute_drawdown,
    compute_trade_metrics,
    warn_if_returns_constant,
    build_trade_frame,
)

DAY0 = pd.Timestamp("2024-03-01")


def _point(n: int, value: float, cash: float = 0.0, initial: float = 100.0) -> EquityCurvePoint:
    utilization = (value - cash) / value * 100.0 if value > 0 else 0.0
    return EquityCurvePoint(
        date=DAY0 + pd.Timedelta(days=n),
        portfolio_value=value,
        cumulative_return=(value - initial) / initial * 100.0,
        num_positions=0,
        cash_balance=cash,
        utilization=utilization,
    )


def _buy(ticker: str, value: float) -> Trade:
    return Trade(
        side="BUY",
        date=DAY0,
        ticker=ticker,
        price=10.0,
        shares=int(value / 10.0),
        value=value,
        signal_value=3.0,
        cash_before=0.0,
        cash_after=0.0,
        portfolio_value_before=0.0,
        portfolio_value_after=0.0,
    )


def _sell(ticker: str, entry_value: float, pnl: float, holding_days: int) -> Trade:
    return Trade(
        side="SELL",
        date=DAY0 + pd.Timedelta(days=holding_days),
        ticker=ticker,
        price=10.0,
        shares=int(entry_value / 10.0),
        value=entry_value + pnl,
        signal_value=3.0,
        cash_before=0.0,
        cash_after=0.0,
        portfolio_value_before=0.0,
        portfolio_value_after=0.0,
        entry_date=DAY0,
        entry_price=10.0,
        holding_days=holding_days,
        pnl=pnl,
        return_pct=pnl / entry_value * 100.0,
        close_reason="holding_period",
    )


def test_trade_metrics_match_hand_calculation():
    trades = [
        _buy("AAA", 1000.0),
        _buy("BBB", 2000.0),
        _buy("CCC", 3000.0),
        _sell("AAA", 1000.0, 100.0, 5),
        _sell("BBB", 2000.0, -50.0, 7),
        _sell("CCC", 3000.0, 0.0, 6),
    ]
    curve = [_point(0, 100.0, cash=40.0), _point(1, 100.0, cash=80.0)]

    metrics = compute_trade_metrics(trades, curve)

    assert metrics.total_trades == 3
    assert metrics.winning_trades == 1
    assert metrics.losing_trades == 2
    assert metrics.win_rate == pytest.approx(100.0 / 3.0)
    assert metrics.profit_factor == pytest.approx(2.0)
    assert metrics.avg_trade_size == pytest.approx(2000.0)
    assert metrics.best_trade == pytest.approx(10.0)
    assert metrics.worst_trade == pytest.approx(-2.5)
    assert metrics.avg_holding_days == pytest.approx(6.0)
    assert metrics.avg_cash_utilization == pytest.approx(40.0)


def test_profit_factor_is_capped_without_losses():
    trades = [_buy("AAA", 1000.0), _sell("AAA", 1000.0, 25.0, 5)]
    metrics = compute_trade_metrics(trades, [])
    assert metrics.profit_factor == 999.0
    assert np.isfinite(metrics.profit_factor)


def test_empty_ledger_degrades_to_zero():
    metrics = compute_trade_metrics([], [])
    assert metrics.total_trades == 0
    assert metrics.win_rate == 0.0
    assert metrics.profit_factor == 0.0
    assert metrics.avg_trade_size == 0.0
    assert metrics.best_trade == 0.0 and metrics.worst_trade == 0.0

    stats = compute_backtest_stats([], initial_capital=500.0)
    assert stats.final_value == 500.0
    assert stats.total_return == 0.0
    assert stats.sharpe_ratio == 0.0
    assert stats.max_drawdown == 0.0
    assert stats.annualized_return == 0.0


def test_portfolio_stats_from_equity_curve():
    values = [100.0, 110.0, 99.0, 121.0]
    curve = [_point(n, v) for n, v in enumerate(values)]

    stats = compute_backtest_stats(curve, initial_capital=100.0)

    returns = np.diff(values) / np.array(values[:-1])
    expected_sharpe = returns.mean() / returns.std() * np.sqrt(252)
    assert stats.final_value == pytest.approx(121.0)
    assert stats.total_return == pytest.approx(21.0)
    assert stats.annualized_return == pytest.approx(21.0 * 252 / 4)
    assert stats.sharpe_ratio == pytest.approx(expected_sharpe)
    assert stats.max_drawdown == pytest.approx(10.0)


def test_flat_equity_has_zero_sharpe_and_drawdown():
    curve = [_point(n, 100.0, cash=100.0) for n in range(5)]
    stats = compute_backtest_stats(curve, initial_capital=100.0)
    assert stats.sharpe_ratio == 0.0
    assert stats.max_drawdown == 0.0
    assert stats.final_value == 100.0


def test_drawdown_series_tracks_running_peak():
    equity = pd.Series([1.0, 1.2, 0.9, 1.5], index=pd.date_range("2024-01-01", periods=4))
    drawdown = compute_drawdown(equity)
    assert drawdown.iloc[2] == pytest.approx(0.9 / 1.2 - 1.0)
    assert drawdown.iloc[3] == 0.0


def test_warns_when_closed_returns_repeat(caplog):
    trades = [_sell(f"T{i}", 1000.0, 10.0, 5) for i in range(4)]
    with caplog.at_level("WARNING"):
        ratio = warn_if_returns_constant(build_trade_frame(trades))
    assert ratio == pytest.approx(0.25)
    assert "low variability" in caplog.text
