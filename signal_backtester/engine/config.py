"""Backtest request configuration."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping

import pandas as pd

from .errors import ConfigurationError

_CAMEL_ALIASES = {
    "signalName": "signal_name",
    "startDate": "start_date",
    "endDate": "end_date",
    "initialCapital": "initial_capital",
    "maxPositions": "max_positions",
    "holdingPeriod": "holding_period",
    "positionSizing": "position_sizing",
    "useAlphaRanking": "use_alpha_ranking",
    "alphaMinThreshold": "alpha_min_threshold",
}

POSITION_SIZING_MODES = frozenset({"equal"})


def _to_timestamp(value: Any) -> pd.Timestamp:
    ts = pd.Timestamp(value)
    if pd.isna(ts):
        raise ConfigurationError(f"Invalid date: {value!r}")
    return ts.normalize()


@dataclass(frozen=True)
class BacktestConfig:
    signal_name: str
    threshold: float
    start_date: pd.Timestamp
    end_date: pd.Timestamp
    initial_capital: float = 1_000_000.0
    max_positions: int = 5
    holding_period: int = 5
    position_sizing: str = "equal"
    use_alpha_ranking: bool = False
    alpha_min_threshold: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "start_date", _to_timestamp(self.start_date))
        object.__setattr__(self, "end_date", _to_timestamp(self.end_date))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "BacktestConfig":
        """Build a config from snake_case or camelCase keys, ignoring unknown ones."""

        names = {field.name for field in fields(cls)}
        data: Dict[str, Any] = {}
        for key, value in mapping.items():
            name = _CAMEL_ALIASES.get(key, key)
            if name in names and value is not None:
                data[name] = value
        missing = [name for name in ("signal_name", "threshold", "start_date", "end_date") if name not in data]
        if missing:
            raise ConfigurationError("Missing required config fields: " + ", ".join(missing))
        return cls(**data)

    def validate(self) -> "BacktestConfig":
        """Reject invalid configurations; returns ``self`` so calls can be chained."""

        if self.start_date > self.end_date:
            raise ConfigurationError("start_date must be on or before end_date")
        if not self.initial_capital > 0:
            raise ConfigurationError("initial_capital must be positive")
        if int(self.max_positions) < 1:
            raise ConfigurationError("max_positions must be at least 1")
        if int(self.holding_period) < 1:
            raise ConfigurationError("holding_period must be at least 1 day")
        if self.position_sizing not in POSITION_SIZING_MODES:
            raise ConfigurationError(f"Unsupported position_sizing: {self.position_sizing!r}")
        return self

    def in_range(self, date: pd.Timestamp) -> bool:
        return self.start_date <= date <= self.end_date

