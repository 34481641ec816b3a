"""Performance metric calculations for backtests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .pnl import build_equity_curve, build_trade_frame, compute_drawdown
from .simulator import EquityCurvePoint, Trade

ANNUALISATION_FACTOR = 252
PROFIT_FACTOR_CAP = 999.0


@dataclass(frozen=True)
class TradeMetrics:
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    avg_trade_size: float = 0.0
    best_trade: float = 0.0
    worst_trade: float = 0.0
    avg_holding_days: float = 0.0
    avg_cash_utilization: float = 0.0


@dataclass(frozen=True)
class BacktestStats:
    initial_capital: float
    final_value: float
    total_return: float = 0.0
    annualized_return: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0


def compute_trade_metrics(trades: Sequence[Trade], equity_curve: Sequence[EquityCurvePoint]) -> TradeMetrics:
    """Aggregate closed-trade statistics.  Every ratio is 0 on an empty ledger."""

    frame = build_trade_frame(trades)
    sells = frame[frame["side"] == "SELL"]
    buys = frame[frame["side"] == "BUY"]
    utilization = [point.utilization for point in equity_curve]
    avg_utilization = float(np.mean(utilization)) if utilization else 0.0
    avg_trade_size = float(buys["value"].astype(float).mean()) if not buys.empty else 0.0
    if sells.empty:
        return TradeMetrics(avg_trade_size=avg_trade_size, avg_cash_utilization=avg_utilization)

    pnl = sells["pnl"].astype(float)
    returns = sells["return_pct"].astype(float)
    wins = pnl[pnl > 0]
    losses = pnl[pnl <= 0]
    gross_win = float(wins.sum())
    gross_loss = abs(float(losses.sum()))
    if gross_loss > 0:
        profit_factor = gross_win / gross_loss
    elif gross_win > 0:
        profit_factor = PROFIT_FACTOR_CAP
    else:
        profit_factor = 0.0

    total = int(len(sells))
    return TradeMetrics(
        total_trades=total,
        winning_trades=int(len(wins)),
        losing_trades=int(len(losses)),
        win_rate=len(wins) / total * 100.0,
        profit_factor=float(profit_factor),
        avg_trade_size=avg_trade_size,
        best_trade=float(returns.max()),
        worst_trade=float(returns.min()),
        avg_holding_days=float(sells["holding_days"].astype(float).mean()),
        avg_cash_utilization=avg_utilization,
    )


def compute_backtest_stats(
    equity_curve: Sequence[EquityCurvePoint],
    initial_capital: float,
    annualisation_factor: int = ANNUALISATION_FACTOR,
) -> BacktestStats:
    """Portfolio-level statistics from the daily equity curve.

    ``annualized_return`` scales the total return linearly by
    ``annualisation_factor / trading_days``; it is not a compounded rate.
    """

    initial_capital = float(initial_capital)
    equity = build_equity_curve(equity_curve)
    if equity.empty:
        return BacktestStats(initial_capital=initial_capital, final_value=initial_capital)

    final_value = float(equity.iloc[-1])
    total_return = (final_value - initial_capital) / initial_capital * 100.0
    trading_days = len(equity)
    annualized = total_return * (annualisation_factor / trading_days)

    sharpe = 0.0
    returns = equity.pct_change().dropna()
    if not returns.empty:
        vol = float(returns.std(ddof=0))
        if vol > 0:
            sharpe = float(returns.mean() / vol * np.sqrt(annualisation_factor))

    drawdown = compute_drawdown(equity)
    max_drawdown = float(-drawdown.min() * 100.0) if not drawdown.empty else 0.0

    return BacktestStats(
        initial_capital=initial_capital,
        final_value=final_value,
        total_return=float(total_return),
        annualized_return=float(annualized),
        sharpe_ratio=sharpe,
        max_drawdown=max(0.0, max_drawdown),
    )

