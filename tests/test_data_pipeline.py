import pandas as pd

from signal_backtester import data_pipeline
from signal_backtester.engine import payload_from_history, payload_from_source


class _FakeResponse:
    def __init__(self, body):
        self._body = body

    def raise_for_status(self):
        return None

    def json(self):
        return self._body


def test_backfill_round_trips_through_history_table(monkeypatch):
    bodies = {
        "calculate-lars": {"larsTimeSeries": [{"date": "2024-05-02", "lars": 0.6}]},
        "calculate-abnormal-volume": {
            "volumeData": [{"ticker": "DNB.OL", "zScore": 2.1, "status": "Abnormal"}]
        },
    }
    calls = []

    def fake_post(url, json, timeout):
        calls.append(url)
        return _FakeResponse(bodies.get(url.rsplit("/", 1)[-1], {}))

    monkeypatch.setattr(data_pipeline.requests, "post", fake_post)

    rows = data_pipeline.backfill_signals("http://signals.local/functions/", "2024-05-01", "2024-05-03", days=30)

    assert "http://signals.local/functions/calculate-lars" in calls
    lars = rows[rows["signal_type"] == "lars"]
    assert lars["ticker"].tolist() == ["PORTFOLIO"]
    history = data_pipeline.merge_signal_history(None, rows)
    assert payload_from_history(history, "lars").points[0].value == 0.6
    volume = payload_from_history(history, "abnormal_volume").records
    assert [(s.ticker, s.value, s.date) for s in volume] == [("DNB.OL", 2.1, pd.Timestamp("2024-05-03"))]


def test_merge_keeps_existing_rows_on_conflict():
    existing = pd.DataFrame(
        [{"date": pd.Timestamp("2024-05-02"), "ticker": "PORTFOLIO", "signal_type": "vdi", "signal_value": 1.0}]
    )
    raw = {"vdiTimeSeries": [{"date": "2024-05-02", "vdi": 9.0}, {"date": "2024-05-03", "vdi": 2.0}]}
    fresh = data_pipeline.payload_to_history_rows(payload_from_source("vdi", raw, "2024-05-01", "2024-05-31"))

    merged = data_pipeline.merge_signal_history(existing, fresh)

    assert merged["signal_value"].tolist() == [1.0, 2.0]


def test_close_wide_pivot():
    long = pd.DataFrame(
        {
            "date": pd.to_datetime(["2024-05-02", "2024-05-02", "2024-05-03"]),
            "symbol": ["DNB.OL", "MING.OL", "DNB.OL"],
            "close": [200.0, 150.0, 201.0],
        }
    )
    wide = data_pipeline.build_close_wide(long)
    assert list(wide.columns) == ["date", "DNB.OL", "MING.OL"]
    assert wide["DNB.OL"].tolist() == [200.0, 201.0]
