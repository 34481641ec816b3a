import pandas as pd
import pytest

from signal_backtester.engine import (
    AlphaScores,
    PerTickerPayload,
    PriceRepository,
    SectorPoint,
    SectorWidePayload,
    Signal,
    normalize_payload,
    payload_from_history,
    payload_from_source,
    rank_candidates,
    transform_signals,
)

D1 = pd.Timestamp("2024-05-02")
D2 = pd.Timestamp("2024-05-03")


def test_per_ticker_signals_pass_through_threshold_on_magnitude():
    payload = PerTickerPayload(
        "abnormal_volume",
        (Signal(D1, "DNB.OL", 2.5), Signal(D1, "MING.OL", -3.0), Signal(D1, "SPOL.OL", 1.2)),
    )
    result = transform_signals(payload, threshold=2.0, universe=["ignored"])
    assert [(s.ticker, s.value) for s in result] == [("DNB.OL", 2.5), ("MING.OL", -3.0)]


def test_sector_wide_signals_broadcast_to_universe():
    payload = SectorWidePayload("lars", (SectorPoint(D1, 0.8), SectorPoint(D2, 0.1)))
    result = transform_signals(payload, threshold=0.5, universe=["B", "A", "B"])
    assert [(s.date, s.ticker, s.value) for s in result] == [(D1, "A", 0.8), (D1, "B", 0.8)]
    assert len(normalize_payload(payload, ["A", "B"])) == 4


def test_unknown_payload_type_is_rejected():
    with pytest.raises(TypeError):
        normalize_payload(["not", "a", "payload"], ["A"])


def test_time_series_sources_decode_and_clip_to_range():
    raw = {
        "larsTimeSeries": [
            {"date": "2024-05-01", "lars": 0.9},
            {"date": "2024-05-02", "lars": 0.7},
            {"date": "2024-05-03", "lars": None},
        ]
    }
    payload = payload_from_source("lars", raw, "2024-05-02", "2024-05-31")
    assert isinstance(payload, SectorWidePayload)
    assert payload.points == (SectorPoint(D1, 0.7),)

    rotation = payload_from_source(
        "rotation", {"rotationTimeSeries": [{"date": "2024-05-02", "rotationScore": -1.5}]}, D1, D1
    )
    assert rotation.points == (SectorPoint(D1, -1.5),)


def test_snapshot_sources_are_dated_at_range_end():
    raw = {
        "volumeData": [
            {"ticker": "DNB.OL", "zScore": 2.4, "status": "Abnormal"},
            {"ticker": "MING.OL", "zScore": 0.3, "status": "Normal"},
        ]
    }
    payload = payload_from_source("abnormal_volume", raw, "2024-05-01", "2024-05-03")
    assert payload.records == (Signal(D2, "DNB.OL", 2.4),)

    radar = payload_from_source("outlier_radar", {"outliers": [{"ticker": "SB1NO.OL", "outlierScore": -3.1}]}, D1, D2)
    assert radar.records == (Signal(D2, "SB1NO.OL", -3.1),)


def test_alpha_engine_prefers_time_series_and_ssi_uses_sector_labels():
    alpha_raw = {
        "timeSeries": [{"date": "2024-05-02", "ticker": "DNB.OL", "basEMA": 1.7}],
        "alphaScores": [{"ticker": "MING.OL", "alphaScore": 9.0}],
    }
    assert payload_from_source("alpha_engine", alpha_raw, D1, D2).records == (Signal(D1, "DNB.OL", 1.7),)

    ssi_raw = {"ssiTimeSeries": [{"date": "2024-05-03", "sectors": {"Large": 1.2, "Small": -0.4}}]}
    records = payload_from_source("ssi", ssi_raw, D1, D2).records
    assert [(s.ticker, s.value) for s in records] == [("Large", 1.2), ("Small", -0.4)]

    with pytest.raises(ValueError):
        payload_from_source("unknown", {}, D1, D2)


def test_history_rows_decode_sector_and_ticker_variants():
    history = pd.DataFrame(
        [
            {"date": D1, "ticker": "PORTFOLIO", "signal_type": "vdi", "signal_value": 1.1},
            {"date": D2, "ticker": "DNB.OL", "signal_type": "abnormal_volume", "signal_value": 2.2},
            {"date": D1, "ticker": "MING.OL", "signal_type": "abnormal_volume", "signal_value": 3.3},
        ]
    )
    vdi = payload_from_history(history, "vdi")
    assert isinstance(vdi, SectorWidePayload) and vdi.points == (SectorPoint(D1, 1.1),)

    volume = payload_from_history(history, "abnormal_volume")
    assert isinstance(volume, PerTickerPayload)
    assert [s.ticker for s in volume.records] == ["MING.OL", "DNB.OL"]
    assert payload_from_history(history, "lars").records == ()


def test_history_rows_with_non_finite_values_are_dropped_for_both_shapes():
    history = pd.DataFrame(
        [
            {"date": D1, "ticker": "PORTFOLIO", "signal_type": "vdi", "signal_value": float("inf")},
            {"date": D2, "ticker": "PORTFOLIO", "signal_type": "vdi", "signal_value": 1.4},
            {"date": D1, "ticker": "DNB.OL", "signal_type": "ssi", "signal_value": float("-inf")},
            {"date": D2, "ticker": "DNB.OL", "signal_type": "ssi", "signal_value": 0.8},
        ]
    )
    assert payload_from_history(history, "vdi").points == (SectorPoint(D2, 1.4),)
    assert payload_from_history(history, "ssi").records == (Signal(D2, "DNB.OL", 0.8),)
    assert payload_from_history(history.iloc[:1], "vdi").records == ()


def test_price_repository_from_wide_and_long_tables():
    wide = pd.DataFrame({"date": ["2024-05-02", "2024-05-03"], "DNB.OL": [210.0, None], "MING.OL": [0.0, 150.0]})
    repo = PriceRepository.from_wide(wide)
    assert repo.resolve("DNB.OL", D1) == 210.0
    assert repo.resolve("DNB.OL", D2) is None
    assert repo.resolve("MING.OL", D1) is None
    assert repo.tickers == ("DNB.OL", "MING.OL")

    long = pd.DataFrame({"date": [D1], "symbol": ["SPOL.OL"], "close": [130.5]})
    assert PriceRepository.from_long(long).resolve("SPOL.OL", D1) == 130.5


def test_prefetch_waits_for_every_ticker_and_tolerates_failures():
    def fetcher(symbol, start, end):
        if symbol == "BAD":
            raise RuntimeError("boom")
        return pd.Series([100.0, 101.0], index=pd.DatetimeIndex([D1, D2]))

    repo = PriceRepository().prefetch(["A", "BAD", "B"], D1, D2, fetcher, max_workers=3)

    assert repo.resolve("A", D2) == 101.0
    assert repo.resolve("B", D1) == 100.0
    assert not repo.has_history("BAD")


def test_rank_candidates_falls_back_without_scores():
    candidates = [Signal(D1, "A", 1.0), Signal(D1, "B", 4.0), Signal(D1, "C", 4.0)]
    assert [s.ticker for s in rank_candidates(candidates, D1)] == ["B", "C", "A"]

    alpha = AlphaScores.from_frame(pd.DataFrame({"date": [D1, D1], "ticker": ["A", "C"], "score": [0.9, 0.4]}))
    ranked = rank_candidates(candidates, D1, alpha=alpha, use_alpha=True, min_threshold=0.0)
    assert [s.ticker for s in ranked] == ["A", "C"]
    assert [s.ticker for s in rank_candidates(candidates, D2, alpha=alpha, use_alpha=True)] == ["B", "C", "A"]
