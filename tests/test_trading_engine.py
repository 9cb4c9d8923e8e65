from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import pytest

from engine.trading_engine import TradingEngine
from shared.config.schema import MainConfig
from shared.state.journal import SqliteJournal

T0 = int(datetime(2024, 1, 1, tzinfo=timezone.utc).timestamp() * 1000)
MIN15 = 15 * 60 * 1000
CLOSES = [100, 102, 104, 103, 101, 99, 98, 98.5, 99.5, 100.5]
VOLUMES = [10.0] * 9 + [20.0]


def _kline(i: int, open_: float, close: float, volume: float) -> str:
    return json.dumps(
        {
            "e": "kline",
            "k": {
                "t": T0 + i * MIN15,
                "T": T0 + (i + 1) * MIN15 - 1,
                "s": "BTCUSDT",
                "o": str(open_),
                "h": str(max(open_, close)),
                "l": str(min(open_, close)),
                "c": str(close),
                "v": str(volume),
                "x": True,
            },
        }
    )


def _messages() -> list[str]:
    msgs = [json.dumps({"result": None, "id": 1})]
    for i, (c, v) in enumerate(zip(CLOSES, VOLUMES)):
        o = 99.6 if i == len(CLOSES) - 1 else c
        msgs.append(_kline(i, o, c, v))
    return msgs


class _Stream:
    def __init__(self, messages: list[str]):
        self.messages = list(messages)
        self.sent: list[str] = []
        self.closed = asyncio.Event()

    async def send(self, msg: str) -> None:
        self.sent.append(msg)

    async def close(self) -> None:
        self.closed.set()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.messages:
            return self.messages.pop(0)
        await self.closed.wait()
        raise StopAsyncIteration

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class _Connector:
    def __init__(self):
        self.streams: list[_Stream] = []

    def __call__(self, url: str) -> _Stream:
        stream = _Stream(_messages())
        self.streams.append(stream)
        return stream


class _MarketClient:
    ws_url = "wss://example.invalid/ws"

    def fetch_klines(self, symbol, interval, limit=100):
        raise AssertionError("backfill disabled")

    def rest_price(self, symbol):
        return 100.0


def _cfg(tmp_path, **overrides) -> MainConfig:
    raw = {
        "symbol": "btcusdt",
        "interval": "15m",
        "mode": "paper",
        "feed": {"window_size": 50, "backfill": False, "price_poll_secs": 0},
        "strategy": {"fast_period": 3, "slow_period": 5, "volume_period": 3, "rsi_period": 4},
        "journal": {"enabled": True, "path": str(tmp_path / "journal.sqlite3")},
        "logging": {"file": None},
    }
    raw.update(overrides)
    return MainConfig.model_validate(raw)


def test_engine_runs_feed_into_position_machine(tmp_path):
    connector = _Connector()
    engine = TradingEngine(
        cfg_obj=_cfg(tmp_path), max_candles=len(CLOSES), market_client=_MarketClient(), connect=connector
    )
    result = engine.run()

    summary = result.summary
    assert summary["state"] == "LONG"
    assert summary["entry_price"] == pytest.approx(100.5)
    assert summary["trades"] == 1
    assert summary["candles_processed"] == len(CLOSES)
    assert summary["feed"]["connect_count"] == 1
    assert summary["feed"]["candles_received"] == len(CLOSES)

    sub = json.loads(connector.streams[0].sent[0])
    assert sub["method"] == "SUBSCRIBE" and sub["params"] == ["btcusdt@kline_15m"]

    assert result.artifacts is not None
    journal = SqliteJournal(result.artifacts["journal_path"])
    kinds = [r["kind"] for r in journal.iter_records()]
    assert kinds == ["BUY", "status"]
    trades = journal.load_trades()
    assert trades[0]["buy_price"] == pytest.approx(100.5)
    assert trades[0]["sell_time"] is None
    journal.close()


def test_engine_force_exit_and_status(tmp_path):
    engine = TradingEngine(cfg_obj=_cfg(tmp_path), market_client=_MarketClient(), connect=_Connector())
    engine.build()
    assert engine.status()["state"] == "FLAT"
    assert engine.force_exit()["status"] == "warning"


def test_engine_refuses_live_mode_without_allow_live(tmp_path):
    cfg = _cfg(tmp_path, mode="live", exchange={"api_key": "k", "api_secret": "s"})
    engine = TradingEngine(cfg_obj=cfg, market_client=_MarketClient(), connect=_Connector())
    with pytest.raises(ValueError, match="allow_live"):
        engine.build()


def test_engine_rejects_window_smaller_than_warmup(tmp_path):
    cfg = _cfg(tmp_path, feed={"window_size": 5, "backfill": False, "price_poll_secs": 0})
    with pytest.raises(ValueError, match="window_size"):
        TradingEngine(cfg_obj=cfg, market_client=_MarketClient(), connect=_Connector()).build()


def test_force_exit_before_build_raises():
    with pytest.raises(RuntimeError):
        TradingEngine().force_exit()
