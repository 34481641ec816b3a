"""Serialisers for report payloads exposed to the frontend."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from signal_backtester.engine import BacktestResult, EquityCurvePoint, Position, Trade


def _day(value: Optional[pd.Timestamp]) -> Optional[str]:
    if value is None:
        return None
    return value.strftime("%Y-%m-%d")


def serialise_trades(trades: Sequence[Trade]) -> List[Dict[str, Any]]:
    """Return trade dictionaries suitable for JSON responses."""

    payload: List[Dict[str, Any]] = []
    for trade in trades:
        record: Dict[str, Any] = {
            "type": trade.side,
            "date": _day(trade.date),
            "ticker": trade.ticker,
            "price": float(trade.price),
            "shares": int(trade.shares),
            "value": float(trade.value),
            "signalValue": float(trade.signal_value),
            "cashBefore": float(trade.cash_before),
            "cashAfter": float(trade.cash_after),
            "portfolioValueBefore": float(trade.portfolio_value_before),
            "portfolioValueAfter": float(trade.portfolio_value_after),
        }
        if not trade.is_buy:
            record.update(
                {
                    "entryDate": _day(trade.entry_date),
                    "entryPrice": float(trade.entry_price),
                    "holdingDays": int(trade.holding_days),
                    "pnl": float(trade.pnl),
                    "returnPct": float(trade.return_pct),
                    "closeReason": trade.close_reason,
                }
            )
        payload.append(record)
    return payload


def serialise_positions(positions: Sequence[Position]) -> List[Dict[str, Any]]:
    return [
        {
            "ticker": pos.ticker,
            "entryDate": _day(pos.entry_date),
            "entryPrice": float(pos.entry_price),
            "shares": int(pos.shares),
            "entryValue": float(pos.entry_value),
            "signalValue": float(pos.signal_value),
        }
        for pos in positions
    ]


def serialise_equity_curve(points: Sequence[EquityCurvePoint]) -> List[Dict[str, Any]]:
    return [
        {
            "date": _day(point.date),
            "portfolioValue": round(float(point.portfolio_value), 6),
            "cumulativeReturn": round(float(point.cumulative_return), 6),
            "numPositions": int(point.num_positions),
            "cashBalance": round(float(point.cash_balance), 6),
            "utilization": round(float(point.utilization), 6),
        }
        for point in points
    ]


def serialise_result(result: BacktestResult) -> Dict[str, Any]:
    """Build the full ``BacktestResult`` response body."""

    config = result.config
    stats = result.stats
    metrics = result.trade_metrics
    return {
        "config": {
            "signalName": config.signal_name,
            "threshold": float(config.threshold),
            "startDate": _day(config.start_date),
            "endDate": _day(config.end_date),
            "initialCapital": float(config.initial_capital),
            "maxPositions": int(config.max_positions),
            "holdingPeriod": int(config.holding_period),
            "positionSizing": config.position_sizing,
            "useAlphaRanking": bool(config.use_alpha_ranking),
            "alphaMinThreshold": float(config.alpha_min_threshold),
        },
        "stats": {
            "initialCapital": stats.initial_capital,
            "finalValue": stats.final_value,
            "totalReturn": stats.total_return,
            "annualizedReturn": stats.annualized_return,
            "sharpeRatio": stats.sharpe_ratio,
            "maxDrawdown": stats.max_drawdown,
        },
        "tradeMetrics": {
            "totalTrades": metrics.total_trades,
            "winningTrades": metrics.winning_trades,
            "losingTrades": metrics.losing_trades,
            "winRate": metrics.win_rate,
            "profitFactor": metrics.profit_factor,
            "avgTradeSize": metrics.avg_trade_size,
            "bestTrade": metrics.best_trade,
            "worstTrade": metrics.worst_trade,
            "avgHoldingDays": metrics.avg_holding_days,
            "avgCashUtilization": metrics.avg_cash_utilization,
        },
        "trades": serialise_trades(result.trades),
        "activePositions": serialise_positions(result.active_positions),
        "equityCurve": serialise_equity_curve(result.equity_curve),
    }
