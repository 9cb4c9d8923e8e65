from __future__ import annotations

import time
from typing import Any

import pytest
import requests

from market.client import BinanceMarketClient, candle_from_rest_row, kline_stream_name

MIN15 = 15 * 60 * 1000


class FakeResponse:
    def __init__(self, payload: Any, status: int = 200):
        self.payload = payload
        self.status = status

    def raise_for_status(self) -> None:
        if self.status >= 400:
            raise requests.HTTPError(f"HTTP {self.status}")

    def json(self) -> Any:
        return self.payload


class FakeSession:
    def __init__(self, payload: Any, status: int = 200):
        self.payload = payload
        self.status = status
        self.requests: list[dict[str, Any]] = []

    def get(self, url: str, params=None, timeout=None):
        self.requests.append({"url": url, "params": params, "timeout": timeout})
        return FakeResponse(self.payload, self.status)


def _row(open_ms: int, close: float) -> list[Any]:
    return [open_ms, "1.0", "2.0", "0.5", str(close), "10.0", open_ms + MIN15 - 1, "0", 1, "0", "0", "0"]


def test_kline_stream_name_is_lowercase():
    assert kline_stream_name("BTCUSDT", "15m") == "btcusdt@kline_15m"


def test_candle_from_rest_row():
    c = candle_from_rest_row(_row(0, 1.5), symbol="BTCUSDT")
    assert c.close == 1.5 and c.volume == 10.0 and c.high == 2.0
    assert c.close_time is not None and c.open_time < c.close_time
    assert c.symbol == "BTCUSDT"


def test_fetch_klines_drops_still_open_candle_and_sorts():
    now_ms = int(time.time() * 1000)
    start = now_ms - 3 * MIN15 - MIN15 // 2
    rows = [_row(start + MIN15, 2.0), _row(start, 1.0), _row(start + 2 * MIN15, 3.0), _row(start + 3 * MIN15, 4.0)]
    session = FakeSession(rows)
    client = BinanceMarketClient(base_url="https://api.example.com/", session=session)

    candles = client.fetch_klines("BTCUSDT", "15m", limit=4)

    assert [c.close for c in candles] == [1.0, 2.0, 3.0]
    req = session.requests[0]
    assert req["url"] == "https://api.example.com/api/v3/klines"
    assert req["params"] == {"symbol": "BTCUSDT", "interval": "15m", "limit": 4}


def test_fetch_klines_http_error_propagates():
    client = BinanceMarketClient(session=FakeSession([], status=500))
    with pytest.raises(requests.HTTPError):
        client.fetch_klines("BTCUSDT", "15m")


def test_rest_price():
    session = FakeSession({"symbol": "BTCUSDT", "price": "43210.5"})
    client = BinanceMarketClient(session=session)
    assert client.rest_price("BTCUSDT") == 43210.5
    assert session.requests[0]["url"].endswith("/api/v3/ticker/price")
