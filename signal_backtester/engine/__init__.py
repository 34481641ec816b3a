"""Core backtesting engine primitives."""

from .alpha import AlphaScores, rank_candidates
from .backtest import BacktestResult, run_backtest
from .config import BacktestConfig
from .errors import BacktestCancelled, BacktestError, ConfigurationError, DataUnavailableError
from .metrics import BacktestStats, TradeMetrics, compute_backtest_stats, compute_trade_metrics
from .pnl import build_equity_curve, build_trade_frame, compute_drawdown, warn_if_returns_constant
from .prices import PriceRepository
from .signals import (
    BANK_UNIVERSE,
    SIGNAL_TYPES,
    PerTickerPayload,
    SectorPoint,
    SectorWidePayload,
    Signal,
    normalize_payload,
    payload_from_history,
    payload_from_source,
    transform_signals,
)
from .simulator import (
    DayOutcome,
    EquityCurvePoint,
    Position,
    SimulationResult,
    SimulationState,
    Trade,
    run_simulation,
    simulate_day,
)

__all__ = [
    "AlphaScores",
    "rank_candidates",
    "BacktestResult",
    "run_backtest",
    "BacktestConfig",
    "BacktestCancelled",
    "BacktestError",
    "ConfigurationError",
    "DataUnavailableError",
    "BacktestStats",
    "TradeMetrics",
    "compute_backtest_stats",
    "compute_trade_metrics",
    "build_equity_curve",
    "build_trade_frame",
    "compute_drawdown",
    "warn_if_returns_constant",
    "PriceRepository",
    "BANK_UNIVERSE",
    "SIGNAL_TYPES",
    "PerTickerPayload",
    "SectorPoint",
    "SectorWidePayload",
    "Signal",
    "normalize_payload",
    "payload_from_history",
    "payload_from_source",
    "transform_signals",
    "DayOutcome",
    "EquityCurvePoint",
    "Position",
    "SimulationResult",
    "SimulationState",
    "Trade",
    "run_simulation",
    "simulate_day",
]
