"""Error taxonomy for the backtesting engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .simulator import SimulationResult


class BacktestError(Exception):
    """Base class for failures surfaced by a backtest run."""


class ConfigurationError(BacktestError, ValueError):
    """Raised when a ``BacktestConfig`` is rejected before simulation starts."""


class DataUnavailableError(BacktestError, LookupError):
    """Raised when no signal history exists for the requested type and range."""

    def __init__(self, signal_name: str, hint: Optional[str] = None) -> None:
        self.signal_name = signal_name
        self.hint = hint or "Populate historical signal data first (run the backfill job)."
        super().__init__(f"No signals found for '{signal_name}' in the requested date range")


class BacktestCancelled(BacktestError):
    """Raised when a run is cancelled between two simulated days.

    ``partial`` holds every trade and equity point produced by the days that
    completed before the cancellation was observed.
    """

    def __init__(self, partial: "SimulationResult") -> None:
        self.partial = partial
        super().__init__(f"Backtest cancelled after {len(partial.equity_curve)} simulated days")
