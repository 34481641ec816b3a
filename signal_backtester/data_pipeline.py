"""Build the data layer consumed by the backtest API.

Downloads daily close history for the bank universe from Yahoo Finance via
``yfinance`` and, optionally, pulls raw indicator payloads from the signal
services over HTTP and appends them to the signal history table.

Run the module as a script to execute the full pipeline::

    python -m signal_backtester.data_pipeline --output-dir data --start 2024-01-01

Feather files written to the chosen directory:

* ``prices_long.feather`` – ``date``, ``symbol``, ``close``
* ``close_wide.feather`` – one row per date, one column per ticker
* ``signal_history.feather`` – ``date``, ``ticker``, ``signal_type``, ``signal_value``
"""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
import requests
import yfinance as yf

from signal_backtester.engine.signals import (
    BANK_UNIVERSE,
    PORTFOLIO_TICKER,
    SIGNAL_TYPES,
    PerTickerPayload,
    SectorWidePayload,
    SignalPayload,
    payload_from_source,
)

DEFAULT_START = "2024-01-01"
DEFAULT_CHUNK = 10
SIGNAL_FUNCTIONS = {name: "calculate-" + name.replace("_", "-") for name in SIGNAL_TYPES}
HISTORY_COLUMNS = ["date", "ticker", "signal_type", "signal_value"]


def _chunked(items: Iterable[str], size: int) -> Iterable[List[str]]:
    items_list = list(items)
    for i in range(0, len(items_list), size):
        yield items_list[i : i + size]


def download_close_history(
    symbols: List[str],
    start: str = DEFAULT_START,
    end: Optional[str] = None,
    chunk_size: int = DEFAULT_CHUNK,
    pause: float = 1.0,
    max_retries: int = 3,
) -> pd.DataFrame:
    """Download daily closes for all ``symbols`` using ``yfinance``."""
    frames: List[pd.DataFrame] = []
    for chunk_idx, chunk in enumerate(_chunked(symbols, chunk_size), start=1):
        attempt = 0
        while attempt < max_retries:
            try:
                data = yf.download(
                    chunk,
                    start=start,
                    end=end,
                    auto_adjust=False,
                    group_by="ticker",
                    progress=False,
                    threads=True,
                )
            except Exception as exc:  # network hiccup
                attempt += 1
                wait = pause * (2**attempt)
                print(
                    f"Chunk {chunk_idx}: download failed ({exc}); retry {attempt}/{max_retries} in {wait:.1f}s",
                    file=sys.stderr,
                )
                time.sleep(wait)
                continue

            if data.empty:
                attempt += 1
                wait = pause * (2**attempt)
                print(
                    f"Chunk {chunk_idx}: received empty frame; retry {attempt}/{max_retries} in {wait:.1f}s",
                    file=sys.stderr,
                )
                time.sleep(wait)
                continue

            try:
                stacked = data.stack(level=0, future_stack=True).reset_index()
            except TypeError:
                stacked = data.stack(level=0).reset_index()
            stacked.rename(columns={"Date": "date", "Ticker": "symbol", "Close": "close"}, inplace=True)
            stacked = stacked[["date", "symbol", "close"]].copy()
            stacked["date"] = pd.to_datetime(stacked["date"]).dt.tz_localize(None).dt.normalize()
            stacked.dropna(subset=["close"], inplace=True)
            frames.append(stacked)
            print(f"Chunk {chunk_idx}: downloaded {len(chunk)} tickers, {len(stacked)} rows", file=sys.stderr)
            break
        else:
            print(f"Chunk {chunk_idx}: giving up after {max_retries} retries", file=sys.stderr)
    if not frames:
        raise RuntimeError("No price data downloaded; check ticker list and network access")
    combined = pd.concat(frames, ignore_index=True)
    combined.drop_duplicates(subset=["symbol", "date"], keep="last", inplace=True)
    combined.sort_values(["symbol", "date"], inplace=True)
    combined.reset_index(drop=True, inplace=True)
    return combined


def build_close_wide(prices_long: pd.DataFrame) -> pd.DataFrame:
    """Pivot the long close table into the wide layout read by the API."""
    return prices_long.pivot(index="date", columns="symbol", values="close").sort_index().reset_index()


def fetch_signal_payload(endpoint: str, signal_type: str, days: int, timeout: float = 30.0) -> Dict[str, Any]:
    """POST to the indicator service for ``signal_type`` and return its JSON body."""

    url = f"{endpoint.rstrip('/')}/{SIGNAL_FUNCTIONS[signal_type]}"
    response = requests.post(url, json={"days": days}, timeout=timeout)
    response.raise_for_status()
    return response.json()


def payload_to_history_rows(payload: SignalPayload) -> pd.DataFrame:
    """Flatten a decoded payload into ``signal_history`` rows."""

    if isinstance(payload, SectorWidePayload):
        rows = [
            {"date": p.date, "ticker": PORTFOLIO_TICKER, "signal_type": payload.signal_type, "signal_value": p.value}
            for p in payload.points
        ]
    elif isinstance(payload, PerTickerPayload):
        rows = [
            {"date": s.date, "ticker": s.ticker, "signal_type": payload.signal_type, "signal_value": s.value}
            for s in payload.records
        ]
    else:
        raise TypeError(f"Unsupported signal payload: {type(payload).__name__}")
    return pd.DataFrame(rows, columns=HISTORY_COLUMNS)


def merge_signal_history(existing: Optional[pd.DataFrame], new_rows: pd.DataFrame) -> pd.DataFrame:
    """Upsert on ``(date, ticker, signal_type)``; existing rows are kept."""

    frames = [frame for frame in (existing, new_rows) if frame is not None and not frame.empty]
    if not frames:
        return pd.DataFrame(columns=HISTORY_COLUMNS)
    combined = pd.concat(frames, ignore_index=True)
    combined["date"] = pd.to_datetime(combined["date"]).dt.normalize()
    combined.drop_duplicates(subset=["date", "ticker", "signal_type"], keep="first", inplace=True)
    combined.sort_values(["signal_type", "date", "ticker"], inplace=True)
    return combined.reset_index(drop=True)


def backfill_signals(endpoint: str, start: str, end: str, days: int) -> pd.DataFrame:
    frames: List[pd.DataFrame] = []
    for signal_type in SIGNAL_TYPES:
        try:
            raw = fetch_signal_payload(endpoint, signal_type, days)
        except requests.RequestException as exc:
            print(f"Signal {signal_type}: fetch failed ({exc})", file=sys.stderr)
            continue
        rows = payload_to_history_rows(payload_from_source(signal_type, raw, start, end))
        print(f"Signal {signal_type}: {len(rows)} rows", file=sys.stderr)
        if not rows.empty:
            frames.append(rows)
    if not frames:
        return pd.DataFrame(columns=HISTORY_COLUMNS)
    return pd.concat(frames, ignore_index=True)


def run_pipeline(
    output_dir: Path,
    start: str = DEFAULT_START,
    end: Optional[str] = None,
    chunk_size: int = DEFAULT_CHUNK,
    signal_endpoint: Optional[str] = None,
    signal_days: int = 180,
) -> None:
    """Execute the full data pipeline and persist artifacts to ``output_dir``."""
    output_dir.mkdir(parents=True, exist_ok=True)
    requested = list(BANK_UNIVERSE)
    price_df = download_close_history(requested, start=start, end=end, chunk_size=chunk_size)
    downloaded = sorted(price_df["symbol"].unique())
    missing = sorted(set(requested) - set(downloaded))
    if missing:
        print(f"Missing {len(missing)} tickers: {', '.join(missing)}", file=sys.stderr)
    print(f"Combined price rows: {len(price_df):,}", file=sys.stderr)
    price_df.to_feather(output_dir / "prices_long.feather")
    build_close_wide(price_df).to_feather(output_dir / "close_wide.feather")
    print("Wrote close_wide.feather", file=sys.stderr)

    if signal_endpoint:
        history_path = output_dir / "signal_history.feather"
        existing = pd.read_feather(history_path) if history_path.exists() else None
        end_date = end or pd.Timestamp.today().strftime("%Y-%m-%d")
        fresh = backfill_signals(signal_endpoint, start, end_date, signal_days)
        merged = merge_signal_history(existing, fresh)
        merged.to_feather(history_path)
        print(f"Wrote signal_history.feather ({len(merged):,} rows)", file=sys.stderr)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build bank price and signal history bundle")
    parser.add_argument("--output-dir", default="data", type=Path, help="Directory for feather outputs")
    parser.add_argument("--start", default=DEFAULT_START, help="Start date (YYYY-MM-DD)")
    parser.add_argument("--end", default=None, help="Optional end date (YYYY-MM-DD)")
    parser.add_argument("--chunk-size", default=DEFAULT_CHUNK, type=int, help="Ticker batch size for downloads")
    parser.add_argument("--signal-endpoint", default=None, help="Base URL of the indicator services")
    parser.add_argument("--signal-days", default=180, type=int, help="Lookback passed to indicator services")
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    run_pipeline(
        output_dir=args.output_dir,
        start=args.start,
        end=args.end,
        chunk_size=args.chunk_size,
        signal_endpoint=args.signal_endpoint,
        signal_days=args.signal_days,
    )
