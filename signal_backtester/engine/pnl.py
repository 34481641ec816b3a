"""PnL helpers for the backtesting engine."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import pandas as pd

from .simulator import EquityCurvePoint, Trade

logger = logging.getLogger(__name__)


def build_equity_curve(points: Sequence[EquityCurvePoint]) -> pd.Series:
    """Return the daily portfolio value as a date-indexed series."""

    if not points:
        return pd.Series(dtype=float, name="equity")
    equity = pd.Series(
        [point.portfolio_value for point in points],
        index=pd.DatetimeIndex([point.date for point in points]),
        dtype=float,
    )
    equity.name = "equity"
    return equity


def build_trade_frame(trades: Sequence[Trade]) -> pd.DataFrame:
    """Return the ledger as a DataFrame, one row per fill."""

    columns = [
        "side",
        "date",
        "ticker",
        "price",
        "shares",
        "value",
        "signal_value",
        "holding_days",
        "pnl",
        "return_pct",
    ]
    if not trades:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame([{col: getattr(trade, col) for col in columns} for trade in trades], columns=columns)


def compute_drawdown(equity: pd.Series) -> pd.Series:
    """Compute fractional drawdown (``<= 0``) from an equity curve."""

    if equity is None or equity.empty:
        return pd.Series(dtype=float)
    running_max = equity.cummax()
    drawdown = equity / running_max - 1.0
    drawdown.name = "drawdown"
    return drawdown


def warn_if_returns_constant(trades: pd.DataFrame, threshold: float = 0.5) -> Optional[float]:
    """Emit a warning if distinct closed-trade returns fall below the configured ratio."""

    if trades is None or trades.empty or "return_pct" not in trades.columns:
        return None
    closed = trades["return_pct"].dropna()
    if closed.empty:
        return None
    distinct = closed.round(8).nunique()
    ratio = distinct / float(len(closed))
    if ratio < threshold:
        logger.warning(
            "Trade returns show low variability", extra={"distinct_ratio": ratio, "trade_count": len(closed)}
        )
    return ratio
