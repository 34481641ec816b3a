"""Run a complete backtest: validate, normalise signals, simulate, summarise."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .alpha import AlphaScores
from .config import BacktestConfig
from .errors import DataUnavailableError
from .metrics import BacktestStats, TradeMetrics, compute_backtest_stats, compute_trade_metrics
from .pnl import build_trade_frame, warn_if_returns_constant
from .prices import PriceRepository
from .signals import SignalPayload, apply_threshold, normalize_payload
from .simulator import EquityCurvePoint, Position, Trade, run_simulation, trading_calendar

logger = logging.getLogger(__name__)


@dataclass
class BacktestResult:
    config: BacktestConfig
    stats: BacktestStats
    trade_metrics: TradeMetrics
    trades: List[Trade]
    active_positions: List[Position]
    equity_curve: List[EquityCurvePoint]


def run_backtest(
    config: BacktestConfig,
    payload: SignalPayload,
    prices: PriceRepository,
    universe: Sequence[str],
    alpha: Optional[AlphaScores] = None,
    cancel_event: Optional[threading.Event] = None,
) -> BacktestResult:
    """Simulate ``config`` against a signal payload and a loaded price repository.

    Raises :class:`ConfigurationError` for an invalid config and
    :class:`DataUnavailableError` when the payload has no signal inside the
    requested range.  A run that opens no position still returns a result.
    """

    config.validate()

    normalised = [sig for sig in normalize_payload(payload, universe) if config.in_range(sig.date)]
    if not normalised:
        raise DataUnavailableError(config.signal_name)

    # every date with signal history is a trading day, even when no value passes the threshold
    days = trading_calendar(config, normalised)
    candidates = apply_threshold(normalised, config.threshold)
    logger.info(
        "Starting backtest",
        extra={
            "signal": config.signal_name,
            "threshold": config.threshold,
            "days": len(days),
            "candidates": len(candidates),
        },
    )

    simulation = run_simulation(
        config,
        candidates,
        prices,
        alpha=alpha,
        trading_days=days,
        cancel_event=cancel_event,
    )
    trade_metrics = compute_trade_metrics(simulation.trades, simulation.equity_curve)
    stats = compute_backtest_stats(simulation.equity_curve, config.initial_capital)
    warn_if_returns_constant(build_trade_frame(simulation.trades))

    logger.info(
        "Backtest completed",
        extra={
            "signal": config.signal_name,
            "trades": trade_metrics.total_trades,
            "sharpe": stats.sharpe_ratio,
            "final_value": stats.final_value,
        },
    )
    return BacktestResult(
        config=config,
        stats=stats,
        trade_metrics=trade_metrics,
        trades=simulation.trades,
        active_positions=simulation.active_positions,
        equity_curve=simulation.equity_curve,
    )
