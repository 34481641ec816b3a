"""Day-by-day portfolio simulation.

The simulation is a fold of :func:`simulate_day` over the sorted trading
days.  Each call receives the state produced by the previous day and returns
a new :class:`SimulationState` together with the day's trades and equity
snapshot; nothing outside the returned values is mutated.

Within one day the order is fixed: matured positions are closed first, so
cash released by those sales is available to entries made the same day.
Entries are then filled one at a time in rank order, each sized as
``cash / free_slots`` using the cash and slots left by the previous fill.
"""

from __future__ import annotations

import logging
import math
import os
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .alpha import AlphaScores, rank_candidates
from .config import BacktestConfig
from .errors import BacktestCancelled
from .prices import PriceRepository
from .signals import Signal, signal_dates

logger = logging.getLogger(__name__)

CLOSE_HOLDING_PERIOD = "holding_period"


def _debug_logging_enabled() -> bool:
    value = os.getenv("BACKTEST_DEBUG_TRADES", "")
    return value.lower() in {"1", "true", "yes", "on"}


if _debug_logging_enabled():  # pragma: no cover - configuration branch
    logger.setLevel(logging.DEBUG)


@dataclass(frozen=True)
class Position:
    ticker: str
    entry_date: pd.Timestamp
    entry_price: float
    shares: int
    entry_value: float
    signal_value: float


@dataclass(frozen=True)
class Trade:
    side: str
    date: pd.Timestamp
    ticker: str
    price: float
    shares: int
    value: float
    signal_value: float
    cash_before: float
    cash_after: float
    portfolio_value_before: float
    portfolio_value_after: float
    entry_date: Optional[pd.Timestamp] = None
    entry_price: Optional[float] = None
    holding_days: Optional[int] = None
    pnl: Optional[float] = None
    return_pct: Optional[float] = None
    close_reason: Optional[str] = None

    @property
    def is_buy(self) -> bool:
        return self.side == "BUY"


@dataclass(frozen=True)
class EquityCurvePoint:
    date: pd.Timestamp
    portfolio_value: float
    cumulative_return: float
    num_positions: int
    cash_balance: float
    utilization: float


@dataclass(frozen=True)
class SimulationState:
    cash: float
    positions: Mapping[str, Position] = field(default_factory=dict)

    @classmethod
    def initial(cls, capital: float) -> "SimulationState":
        return cls(cash=float(capital), positions={})


@dataclass(frozen=True)
class DayOutcome:
    state: SimulationState
    trades: Tuple[Trade, ...]
    point: EquityCurvePoint


@dataclass
class SimulationResult:
    trades: List[Trade]
    equity_curve: List[EquityCurvePoint]
    final_state: SimulationState

    @property
    def active_positions(self) -> List[Position]:
        return [self.final_state.positions[t] for t in sorted(self.final_state.positions)]

    @property
    def trading_days(self) -> int:
        return len(self.equity_curve)


def mark_price(position: Position, day: pd.Timestamp, prices: PriceRepository) -> float:
    """Close for ``day``, or the entry price when the day has no quote."""

    price = prices.resolve(position.ticker, day)
    return position.entry_price if price is None else price


def portfolio_value(cash: float, positions: Mapping[str, Position], day: pd.Timestamp, prices: PriceRepository) -> float:
    return cash + sum(pos.shares * mark_price(pos, day, prices) for pos in positions.values())


def _close_matured(
    cash: float,
    positions: Dict[str, Position],
    day: pd.Timestamp,
    prices: PriceRepository,
    holding_period: int,
) -> Tuple[float, List[Trade]]:
    trades: List[Trade] = []
    for ticker in sorted(positions):
        position = positions[ticker]
        holding_days = (day - position.entry_date).days
        if holding_days < holding_period:
            continue
        price = prices.resolve(ticker, day)
        if price is None:
            logger.debug("No close for exit; using entry price", extra={"symbol": ticker, "ts": day})
            price = position.entry_price
        value_before = portfolio_value(cash, positions, day, prices)
        sell_value = position.shares * price
        pnl = sell_value - position.entry_value
        return_pct = pnl / position.entry_value * 100.0 if position.entry_value else 0.0
        cash_before = cash
        cash += sell_value
        del positions[ticker]
        value_after = portfolio_value(cash, positions, day, prices)
        logger.debug(
            "EXECUTE SELL",
            extra={"ts": day, "symbol": ticker, "qty": position.shares, "price": price, "pnl": pnl, "cash": cash},
        )
        trades.append(
            Trade(
                side="SELL",
                date=day,
                ticker=ticker,
                price=price,
                shares=position.shares,
                value=sell_value,
                signal_value=position.signal_value,
                cash_before=cash_before,
                cash_after=cash,
                portfolio_value_before=value_before,
                portfolio_value_after=value_after,
                entry_date=position.entry_date,
                entry_price=position.entry_price,
                holding_days=holding_days,
                pnl=pnl,
                return_pct=return_pct,
                close_reason=CLOSE_HOLDING_PERIOD,
            )
        )
    return cash, trades


def _unique_by_ticker(ranked: Iterable[Signal]) -> List[Signal]:
    seen = set()
    unique: List[Signal] = []
    for signal in ranked:
        if signal.ticker in seen:
            continue
        seen.add(signal.ticker)
        unique.append(signal)
    return unique


def _open_new(
    cash: float,
    positions: Dict[str, Position],
    day: pd.Timestamp,
    signals: Sequence[Signal],
    prices: PriceRepository,
    config: BacktestConfig,
    alpha: Optional[AlphaScores],
) -> Tuple[float, List[Trade]]:
    trades: List[Trade] = []
    max_positions = int(config.max_positions)
    if max_positions - len(positions) <= 0:
        return cash, trades
    threshold = float(config.threshold)
    candidates = [
        sig for sig in signals if sig.date == day and abs(sig.value) >= threshold and sig.ticker not in positions
    ]
    if not candidates:
        return cash, trades
    ranked = rank_candidates(
        candidates,
        day,
        alpha=alpha,
        use_alpha=config.use_alpha_ranking,
        min_threshold=config.alpha_min_threshold,
    )
    selected = _unique_by_ticker(ranked)[: max_positions - len(positions)]

    for signal in selected:
        free_slots = max_positions - len(positions)
        if free_slots <= 0:
            break
        price = prices.resolve(signal.ticker, day)
        if price is None:
            logger.debug("No close for entry; skipping candidate", extra={"symbol": signal.ticker, "ts": day})
            continue
        position_size = cash / free_slots
        shares = math.floor(position_size / price)
        cost = shares * price
        if shares <= 0 or cost > cash:
            logger.debug("Insufficient cash for entry", extra={"symbol": signal.ticker, "cash": cash})
            continue
        value_before = portfolio_value(cash, positions, day, prices)
        cash_before = cash
        cash -= cost
        positions[signal.ticker] = Position(
            ticker=signal.ticker,
            entry_date=day,
            entry_price=price,
            shares=shares,
            entry_value=cost,
            signal_value=signal.value,
        )
        value_after = portfolio_value(cash, positions, day, prices)
        logger.debug(
            "EXECUTE BUY",
            extra={"ts": day, "symbol": signal.ticker, "qty": shares, "price": price, "notional": cost, "cash": cash},
        )
        trades.append(
            Trade(
                side="BUY",
                date=day,
                ticker=signal.ticker,
                price=price,
                shares=shares,
                value=cost,
                signal_value=signal.value,
                cash_before=cash_before,
                cash_after=cash,
                portfolio_value_before=value_before,
                portfolio_value_after=value_after,
            )
        )
    return cash, trades


def snapshot(
    cash: float,
    positions: Mapping[str, Position],
    day: pd.Timestamp,
    prices: PriceRepository,
    initial_capital: float,
) -> EquityCurvePoint:
    value = portfolio_value(cash, positions, day, prices)
    utilization = (value - cash) / value * 100.0 if value > 0 else 0.0
    return EquityCurvePoint(
        date=day,
        portfolio_value=value,
        cumulative_return=(value - initial_capital) / initial_capital * 100.0,
        num_positions=len(positions),
        cash_balance=cash,
        utilization=utilization,
    )


def simulate_day(
    state: SimulationState,
    day: pd.Timestamp,
    signals: Sequence[Signal],
    prices: PriceRepository,
    config: BacktestConfig,
    alpha: Optional[AlphaScores] = None,
) -> DayOutcome:
    """Advance the portfolio by one trading day: close, then open, then snapshot."""

    positions = dict(state.positions)
    cash, closes = _close_matured(state.cash, positions, day, prices, int(config.holding_period))
    cash, opens = _open_new(cash, positions, day, signals, prices, config, alpha)
    point = snapshot(cash, positions, day, prices, float(config.initial_capital))
    return DayOutcome(
        state=SimulationState(cash=cash, positions=positions),
        trades=tuple(closes + opens),
        point=point,
    )


def trading_calendar(config: BacktestConfig, signals: Iterable[Signal]) -> List[pd.Timestamp]:
    """Distinct signal dates inside the configured range, ascending."""

    return [day for day in signal_dates(signals) if config.in_range(day)]


def run_simulation(
    config: BacktestConfig,
    signals: Sequence[Signal],
    prices: PriceRepository,
    alpha: Optional[AlphaScores] = None,
    trading_days: Optional[Iterable[pd.Timestamp]] = None,
    cancel_event: Optional[threading.Event] = None,
) -> SimulationResult:
    """Replay ``signals`` over the trading days and return the full ledger.

    ``trading_days`` defaults to the dates of ``signals`` within the config
    range.  When ``cancel_event`` is set, the run stops before the next day
    and raises :class:`BacktestCancelled` with the days completed so far.
    """

    if trading_days is None:
        days = trading_calendar(config, signals)
    else:
        normalized = {pd.Timestamp(day).normalize() for day in trading_days}
        days = sorted(day for day in normalized if config.in_range(day))

    by_day: Dict[pd.Timestamp, List[Signal]] = {}
    for signal in signals:
        by_day.setdefault(signal.date, []).append(signal)

    state = SimulationState.initial(config.initial_capital)
    trades: List[Trade] = []
    equity_curve: List[EquityCurvePoint] = []
    for day in days:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Backtest cancelled", extra={"ts": day, "completed_days": len(equity_curve)})
            raise BacktestCancelled(SimulationResult(trades, equity_curve, state))
        outcome = simulate_day(state, day, by_day.get(day, ()), prices, config, alpha)
        state = outcome.state
        trades.extend(outcome.trades)
        equity_curve.append(outcome.point)

    logger.info(
        "Simulation finished",
        extra={"days": len(days), "trades": len(trades), "open_positions": len(state.positions)},
    )
    return SimulationResult(trades=trades, equity_curve=equity_curve, final_state=state)
