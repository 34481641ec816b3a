"""Optional alpha-score overlay for candidate ranking."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .signals import Signal


class AlphaScores:
    """Auxiliary per-date, per-ticker scores consulted when ranking candidates."""

    def __init__(self, scores: Optional[Mapping[Tuple[Any, str], float]] = None) -> None:
        self._scores: Dict[pd.Timestamp, Dict[str, float]] = {}
        for (date, ticker), score in (scores or {}).items():
            self.set(date, ticker, score)

    def set(self, date: Any, ticker: str, score: float) -> None:
        if score is None or pd.isna(score):
            return
        day = pd.Timestamp(date).normalize()
        self._scores.setdefault(day, {})[ticker] = float(score)

    @classmethod
    def from_frame(cls, frame: pd.DataFrame, score_col: str = "score") -> "AlphaScores":
        alpha = cls()
        if frame is None or frame.empty:
            return alpha
        for row in frame[["date", "ticker", score_col]].itertuples(index=False):
            alpha.set(row[0], row[1], row[2])
        return alpha

    def for_date(self, date: pd.Timestamp) -> Dict[str, float]:
        return self._scores.get(date, {})

    def has_date(self, date: pd.Timestamp) -> bool:
        return bool(self._scores.get(date))


def rank_by_signal(candidates: Iterable[Signal]) -> List[Signal]:
    return sorted(candidates, key=lambda sig: (-sig.value, sig.ticker))


def rank_candidates(
    candidates: Sequence[Signal],
    day: pd.Timestamp,
    alpha: Optional[AlphaScores] = None,
    use_alpha: bool = False,
    min_threshold: float = 0.0,
) -> List[Signal]:
    """Order today's candidates, best first.

    With the overlay enabled and scores present for ``day``, candidates
    without a score or scoring below ``min_threshold`` are dropped and the
    rest are ordered by score.  Otherwise candidates are ordered by signal
    value.
    """

    if not use_alpha or alpha is None or not alpha.has_date(day):
        return rank_by_signal(candidates)
    scores = alpha.for_date(day)
    eligible = [sig for sig in candidates if sig.ticker in scores and scores[sig.ticker] >= min_threshold]
    return sorted(eligible, key=lambda sig: (-scores[sig.ticker], -sig.value, sig.ticker))
