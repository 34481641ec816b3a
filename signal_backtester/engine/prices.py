"""Close-price lookup used by the simulator."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

PriceFetcher = Callable[[str, pd.Timestamp, pd.Timestamp], pd.Series]


class PriceRepository:
    """Resolve ``(ticker, date) -> close``.

    Histories are held in memory and must be loaded (or prefetched) before a
    simulation starts; ``resolve`` never performs I/O.
    """

    def __init__(self, closes: Optional[Dict[Tuple[str, pd.Timestamp], float]] = None) -> None:
        self._closes: Dict[Tuple[str, pd.Timestamp], float] = {}
        self._tickers: set = set()
        for (ticker, date), price in (closes or {}).items():
            self._store(ticker, date, price)

    def _store(self, ticker: str, date, price) -> None:
        if price is None or pd.isna(price):
            return
        price = float(price)
        if not np.isfinite(price) or price <= 0:
            return
        self._closes[(str(ticker), pd.Timestamp(date).normalize())] = price
        self._tickers.add(str(ticker))

    @classmethod
    def from_long(cls, frame: pd.DataFrame, price_col: str = "close") -> "PriceRepository":
        """Build from a long table with ``date``, ``symbol`` and ``price_col`` columns."""

        repo = cls()
        if frame is None or frame.empty:
            return repo
        symbol_col = "symbol" if "symbol" in frame.columns else "ticker"
        for row in frame[["date", symbol_col, price_col]].itertuples(index=False):
            repo._store(row[1], row[0], row[2])
        return repo

    @classmethod
    def from_wide(cls, frame: pd.DataFrame) -> "PriceRepository":
        """Build from a wide table: a ``date`` column plus one column per ticker."""

        repo = cls()
        if frame is None or frame.empty:
            return repo
        if "date" not in frame.columns:
            raise ValueError("Wide tables must include a 'date' column.")
        indexed = frame.copy()
        indexed["date"] = pd.to_datetime(indexed["date"])
        indexed = indexed.drop_duplicates(subset="date").set_index("date")
        for ticker in indexed.columns:
            for date, price in indexed[ticker].dropna().items():
                repo._store(ticker, date, price)
        return repo

    def add_history(self, ticker: str, closes: pd.Series) -> None:
        """Merge a date-indexed close series for ``ticker``."""

        for date, price in closes.items():
            self._store(ticker, date, price)

    def prefetch(
        self,
        tickers: Iterable[str],
        start: pd.Timestamp,
        end: pd.Timestamp,
        fetcher: PriceFetcher,
        max_workers: int = 8,
    ) -> "PriceRepository":
        """Fetch histories for all ``tickers`` in parallel and wait for every one.

        A failed fetch leaves that ticker without history; such a ticker
        never becomes eligible for entry.
        """

        symbols = sorted(set(tickers))
        results: Dict[str, pd.Series] = {}
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(fetcher, sym, start, end): sym for sym in symbols}
            for fut in as_completed(futures):
                sym = futures[fut]
                try:
                    results[sym] = fut.result()
                except Exception as exc:
                    logger.warning("Price fetch failed", extra={"symbol": sym, "error": str(exc)})
        # merge in ticker order so the repository contents do not depend on completion order
        for sym in symbols:
            if sym in results and results[sym] is not None:
                self.add_history(sym, results[sym])
        logger.info("Prefetched price histories", extra={"requested": len(symbols), "loaded": len(results)})
        return self

    def resolve(self, ticker: str, date: pd.Timestamp) -> Optional[float]:
        return self._closes.get((ticker, date))

    def has_history(self, ticker: str) -> bool:
        return ticker in self._tickers

    @property
    def tickers(self) -> Tuple[str, ...]:
        return tuple(sorted(self._tickers))
