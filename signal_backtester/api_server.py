from __future__ import annotations

import logging
import os
import pathlib
from functools import lru_cache
from typing import Any, Dict, List, Literal, Optional

import pandas as pd
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, validator

from signal_backtester.engine import (
    BANK_UNIVERSE,
    SIGNAL_TYPES,
    AlphaScores,
    BacktestConfig,
    ConfigurationError,
    DataUnavailableError,
    PriceRepository,
    payload_from_history,
    run_backtest as run_engine_backtest,
)
from signal_backtester.reports.serializer import serialise_result

logger = logging.getLogger(__name__)

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
DATA_DIR = pathlib.Path(os.getenv("SIGNAL_BACKTEST_DATA_DIR", str(PROJECT_ROOT / "data")))
ALPHA_SIGNAL = "alpha_engine"


def _parse_date(value: str) -> pd.Timestamp:
    try:
        ts = pd.to_datetime(value)
    except ValueError as exc:  # pragma: no cover
        raise HTTPException(status_code=400, detail=f"Invalid date: {value}") from exc
    if pd.isna(ts):
        raise HTTPException(status_code=400, detail=f"Invalid date: {value}")
    return ts.normalize()


app = FastAPI(title="Signal Backtester API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class BacktestParams(BaseModel):
    signalName: str
    threshold: float = Field(2.0, ge=0.0)
    startDate: str
    endDate: str
    initialCapital: float = 1_000_000.0
    maxPositions: int = 5
    holdingPeriod: int = 5
    positionSizing: Literal["equal"] = "equal"
    useAlphaRanking: bool = False
    alphaMinThreshold: float = 0.0
    universe: Optional[List[str]] = None

    @validator("universe")
    def _normalise(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        cleaned = [tok.strip().upper() for tok in v if tok.strip()]
        return cleaned or None


@lru_cache(maxsize=1)
def _load_signal_history() -> pd.DataFrame:
    path = DATA_DIR / "signal_history.feather"
    if not path.exists():
        return pd.DataFrame(columns=["date", "ticker", "signal_type", "signal_value"])
    df = pd.read_feather(path)
    df["date"] = pd.to_datetime(df["date"]).dt.normalize()
    return df


@lru_cache(maxsize=1)
def _load_price_repository() -> PriceRepository:
    path = DATA_DIR / "close_wide.feather"
    if not path.exists():
        raise FileNotFoundError(f"Missing price table: {path}")
    return PriceRepository.from_wide(pd.read_feather(path))


def _alpha_scores(history: pd.DataFrame) -> AlphaScores:
    rows = history[history["signal_type"] == ALPHA_SIGNAL]
    return AlphaScores.from_frame(rows, score_col="signal_value")


@app.get("/healthz")
def healthz() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/signals")
def list_signals() -> Dict[str, Any]:
    history = _load_signal_history()
    counts = history["signal_type"].value_counts().to_dict() if not history.empty else {}
    return {"signals": [{"name": name, "rows": int(counts.get(name, 0))} for name in SIGNAL_TYPES]}


@app.post("/run_backtest")
def run_backtest(payload: BacktestParams) -> Dict[str, Any]:
    start_ts = _parse_date(payload.startDate)
    end_ts = _parse_date(payload.endDate)
    try:
        config = BacktestConfig(
            signal_name=payload.signalName,
            threshold=payload.threshold,
            start_date=start_ts,
            end_date=end_ts,
            initial_capital=payload.initialCapital,
            max_positions=payload.maxPositions,
            holding_period=payload.holdingPeriod,
            position_sizing=payload.positionSizing,
            use_alpha_ranking=payload.useAlphaRanking,
            alpha_min_threshold=payload.alphaMinThreshold,
        ).validate()
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    history = _load_signal_history()
    signal_payload = payload_from_history(history, config.signal_name)
    alpha = _alpha_scores(history) if config.use_alpha_ranking else None
    try:
        prices = _load_price_repository()
    except FileNotFoundError as exc:
        raise HTTPException(
            status_code=503,
            detail={"error": str(exc), "hint": "Run the data pipeline to download price history."},
        ) from exc

    universe = payload.universe or list(BANK_UNIVERSE)
    try:
        result = run_engine_backtest(config, signal_payload, prices, universe, alpha=alpha)
    except DataUnavailableError as exc:
        raise HTTPException(status_code=404, detail={"error": str(exc), "hint": exc.hint}) from exc
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return serialise_result(result)
