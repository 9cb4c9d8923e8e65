from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from market.window import CandleWindow
from shared.models.models import Candle


def _candle(i: int, close: float = 100.0, volume: float = 1.0) -> Candle:
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=15 * i)
    return Candle(open_time=ts, open=close, high=close + 1, low=close - 1, close=close, volume=volume)


def test_window_evicts_oldest_when_full():
    w = CandleWindow(capacity=3)
    for i in range(5):
        w.append(_candle(i, close=100 + i))
    assert len(w) == 3
    assert w.closes() == [102, 103, 104]
    assert w.last is not None and w.last.close == 104


def test_window_keeps_insertion_order_and_frame_columns():
    w = CandleWindow(capacity=10)
    w.extend([_candle(i, close=float(i), volume=float(i * 2)) for i in range(4)])
    df = w.to_frame()
    assert list(df.columns) == ["ts", "open", "high", "low", "close", "volume"]
    assert df["close"].tolist() == [0.0, 1.0, 2.0, 3.0]
    assert w.volumes() == [0.0, 2.0, 4.0, 6.0]
    assert [c.close for c in w] == [0.0, 1.0, 2.0, 3.0]


def test_empty_window():
    w = CandleWindow()
    assert len(w) == 0
    assert w.last is None
    assert w.to_frame().empty


def test_window_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        CandleWindow(capacity=0)
