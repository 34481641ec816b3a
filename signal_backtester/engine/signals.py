"""Signal normalisation.

Indicator services emit payloads in their own shapes.  This module decodes
them into one of two explicit payload variants and then flattens either
variant into a uniform stream of :class:`Signal` records:

* :class:`PerTickerPayload` – records already scoped to one instrument.
* :class:`SectorWidePayload` – one scalar per date.  Each point is broadcast
  to every ticker in the instrument universe; this is the documented policy
  for sector indicators such as LARS or VDI, not an error.

No numeric validation happens here beyond the threshold comparison.  Sources
are expected to drop absent or invalid values before handing data over.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

PORTFOLIO_TICKER = "PORTFOLIO"

# Oslo Børs savings-bank universe covered by the indicator services.
BANK_UNIVERSE: Tuple[str, ...] = (
    "DNB.OL",
    "SB1NO.OL",
    "SBNOR.OL",
    "MING.OL",
    "SPOL.OL",
    "NONG.OL",
    "MORG.OL",
    "SPOG.OL",
    "HELG.OL",
    "ROGS.OL",
    "RING.OL",
    "SOAG.OL",
    "SNOR.OL",
    "HGSB.OL",
    "JAREN.OL",
    "AURG.OL",
    "SKUE.OL",
    "MELG.OL",
    "SOGN.OL",
    "HSPG.OL",
    "VVL.OL",
    "BIEN.OL",
)


@dataclass(frozen=True)
class Signal:
    date: pd.Timestamp
    ticker: str
    value: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "date", pd.Timestamp(self.date).normalize())


@dataclass(frozen=True)
class SectorPoint:
    date: pd.Timestamp
    value: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "date", pd.Timestamp(self.date).normalize())


@dataclass(frozen=True)
class PerTickerPayload:
    signal_type: str
    records: Tuple[Signal, ...]


@dataclass(frozen=True)
class SectorWidePayload:
    signal_type: str
    points: Tuple[SectorPoint, ...]


SignalPayload = Union[PerTickerPayload, SectorWidePayload]


def _date(value: Any) -> pd.Timestamp:
    return pd.Timestamp(value).normalize()


def normalize_payload(payload: SignalPayload, universe: Sequence[str]) -> List[Signal]:
    """Flatten a payload into per-ticker signals without any threshold filter."""

    if isinstance(payload, PerTickerPayload):
        return list(payload.records)
    if isinstance(payload, SectorWidePayload):
        tickers = sorted(set(universe))
        return [
            Signal(date=point.date, ticker=ticker, value=point.value)
            for point in payload.points
            for ticker in tickers
        ]
    raise TypeError(f"Unsupported signal payload: {type(payload).__name__}")


def apply_threshold(signals: Iterable[Signal], threshold: float) -> List[Signal]:
    cutoff = float(threshold)
    return [signal for signal in signals if abs(signal.value) >= cutoff]


def transform_signals(payload: SignalPayload, threshold: float, universe: Sequence[str]) -> List[Signal]:
    """Return normalised signals whose magnitude reaches ``threshold``."""

    return apply_threshold(normalize_payload(payload, universe), threshold)


# ---------------------------------------------------------------------------
# Source adapters


def _within(date: pd.Timestamp, start: Optional[pd.Timestamp], end: Optional[pd.Timestamp]) -> bool:
    if start is not None and date < start:
        return False
    if end is not None and date > end:
        return False
    return True


def _time_series(signal_type: str, items: Any, value_key: str, start, end) -> SectorWidePayload:
    points: List[SectorPoint] = []
    for item in items or []:
        if item.get("date") is None or item.get(value_key) is None:
            continue
        date = _date(item["date"])
        if _within(date, start, end):
            points.append(SectorPoint(date=date, value=float(item[value_key])))
    return SectorWidePayload(signal_type, tuple(points))


def _abnormal_volume(raw: Mapping[str, Any], start, end) -> SignalPayload:
    # Only the current snapshot is published; it is dated at the range end.
    records = [
        Signal(date=end, ticker=item["ticker"], value=float(item["zScore"]))
        for item in raw.get("volumeData") or []
        if item.get("status") in {"Abnormal", "Moderate"} and item.get("zScore") is not None
    ]
    return PerTickerPayload("abnormal_volume", tuple(records))


def _ssi(raw: Mapping[str, Any], start, end) -> SignalPayload:
    records: List[Signal] = []
    for item in raw.get("ssiTimeSeries") or []:
        sectors = item.get("sectors")
        if not sectors or item.get("date") is None:
            continue
        date = _date(item["date"])
        if not _within(date, start, end):
            continue
        for sector, value in sectors.items():
            records.append(Signal(date=date, ticker=sector, value=float(value)))
    return PerTickerPayload("ssi", tuple(records))


def _alpha_engine(raw: Mapping[str, Any], start, end) -> SignalPayload:
    series = raw.get("timeSeries")
    if series:
        records = []
        for item in series:
            score = item.get("basEMA")
            if score is None or item.get("date") is None:
                continue
            date = _date(item["date"])
            if _within(date, start, end):
                records.append(Signal(date=date, ticker=item["ticker"], value=float(score)))
        return PerTickerPayload("alpha_engine", tuple(records))
    records = [
        Signal(date=end, ticker=item["ticker"], value=float(item["alphaScore"]))
        for item in raw.get("alphaScores") or []
        if item.get("alphaScore") is not None
    ]
    return PerTickerPayload("alpha_engine", tuple(records))


def _outlier_radar(raw: Mapping[str, Any], start, end) -> SignalPayload:
    records = [
        Signal(date=end, ticker=item["ticker"], value=float(item["outlierScore"]))
        for item in raw.get("outliers") or []
        if item.get("outlierScore") is not None
    ]
    return PerTickerPayload("outlier_radar", tuple(records))


_SOURCE_DECODERS: Dict[str, Callable[[Mapping[str, Any], Any, Any], SignalPayload]] = {
    "abnormal_volume": _abnormal_volume,
    "lars": lambda raw, start, end: _time_series("lars", raw.get("larsTimeSeries"), "lars", start, end),
    "rotation": lambda raw, start, end: _time_series(
        "rotation", raw.get("rotationTimeSeries"), "rotationScore", start, end
    ),
    "vdi": lambda raw, start, end: _time_series("vdi", raw.get("vdiTimeSeries"), "vdi", start, end),
    "ssi": _ssi,
    "alpha_engine": _alpha_engine,
    "outlier_radar": _outlier_radar,
}

SIGNAL_TYPES: Tuple[str, ...] = tuple(_SOURCE_DECODERS)


def payload_from_source(signal_type: str, raw: Mapping[str, Any], start: Any, end: Any) -> SignalPayload:
    """Decode a raw indicator-service response for ``signal_type``."""

    decoder = _SOURCE_DECODERS.get(signal_type)
    if decoder is None:
        raise ValueError(f"Unknown signal type: {signal_type}")
    return decoder(raw, _date(start), _date(end))


def payload_from_history(history: pd.DataFrame, signal_type: str) -> SignalPayload:
    """Decode persisted ``signal_history`` rows for one signal type.

    Rows tagged with the ``PORTFOLIO`` ticker are sector-wide.  A signal type
    is expected to be stored in one shape only; when both appear the
    sector-wide rows win.
    """

    if history is None or history.empty:
        return PerTickerPayload(signal_type, ())
    rows = history[history["signal_type"] == signal_type]
    rows = rows.dropna(subset=["date", "ticker", "signal_value"])
    rows = rows[rows["signal_value"].astype(float).map(math.isfinite)]
    rows = rows.sort_values(["date", "ticker"], kind="mergesort")
    sector_rows = rows[rows["ticker"] == PORTFOLIO_TICKER]
    if not sector_rows.empty:
        points = tuple(
            SectorPoint(date=_date(row.date), value=float(row.signal_value))
            for row in sector_rows.itertuples()
        )
        return SectorWidePayload(signal_type, points)
    records = tuple(
        Signal(date=_date(row.date), ticker=str(row.ticker), value=float(row.signal_value))
        for row in rows.itertuples()
    )
    return PerTickerPayload(signal_type, records)


def signal_dates(signals: Iterable[Signal]) -> List[pd.Timestamp]:
    return sorted({signal.date for signal in signals})
