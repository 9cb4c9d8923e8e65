"""Binance 行情 REST 客户端与 kline 消息解析。"""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from typing import Any

import requests

from shared.models.models import Candle
from shared.utils.logging import setup_logger

DEFAULT_BASE_URL = "https://api.binance.com"
DEFAULT_WS_URL = "wss://stream.binance.com:9443/ws"


def _ms_to_dt(ms: int | float) -> datetime:
    return datetime.fromtimestamp(int(ms) / 1000, tz=timezone.utc)


def kline_stream_name(symbol: str, interval: str) -> str:
    """订阅频道名，例如 `btcusdt@kline_15m`。"""
    return f"{symbol.lower()}@kline_{interval}"


def candle_from_rest_row(row: list[Any], symbol: str | None = None) -> Candle:
    """REST /api/v3/klines 的一行：[openTime, o, h, l, c, v, closeTime, ...]。"""
    return Candle(
        open_time=_ms_to_dt(row[0]),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
        close_time=_ms_to_dt(row[6]),
        symbol=symbol,
    )


def parse_kline_message(data: dict[str, Any]) -> Candle | None:
    """解析 WS kline 推送；未收盘（k.x 为 false）或非 kline 消息返回 None。

    Raises
    ------
    ValueError
        kline 字段缺失或数值无法解析。
    """
    kline = data.get("k")
    if kline is None and isinstance(data.get("data"), dict):
        # 组合流格式：{"stream": "...", "data": {...}}
        kline = data["data"].get("k")
    if not isinstance(kline, dict):
        return None
    if not kline.get("x"):
        return None
    try:
        return Candle(
            open_time=_ms_to_dt(kline["t"]),
            open=float(kline["o"]),
            high=float(kline["h"]),
            low=float(kline["l"]),
            close=float(kline["c"]),
            volume=float(kline["v"]),
            close_time=_ms_to_dt(kline["T"]) if kline.get("T") is not None else None,
            symbol=kline.get("s"),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"malformed kline payload: {exc}") from exc


def decode_message(raw: str | bytes) -> dict[str, Any]:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("message is not a JSON object")
    return data


class BinanceMarketClient:
    """Binance 现货行情 REST：历史 K 线回填 + 最新价。"""

    def __init__(
        self,
        base_url: str | None = DEFAULT_BASE_URL,
        ws_url: str | None = DEFAULT_WS_URL,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        logger=None,
    ):
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.ws_url = ws_url or DEFAULT_WS_URL
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logger or setup_logger("market-binance")

    def fetch_klines(self, symbol: str, interval: str, limit: int = 100) -> list[Candle]:
        """拉取最近 limit 根已收盘 K 线（按时间升序）。

        REST 返回的最后一根通常仍在形成中（closeTime 在未来），这里丢弃。
        """
        url = f"{self.base_url}/api/v3/klines"
        resp = self.session.get(
            url, params={"symbol": symbol, "interval": interval, "limit": int(limit)}, timeout=self.timeout
        )
        resp.raise_for_status()
        rows = resp.json()
        now_ms = int(time.time() * 1000)
        candles = [candle_from_rest_row(r, symbol=symbol) for r in rows if int(r[6]) < now_ms]
        candles.sort(key=lambda c: c.open_time)
        return candles

    def rest_price(self, symbol: str) -> float:
        """通过 REST 拉取最新成交价。"""
        url = f"{self.base_url}/api/v3/ticker/price"
        resp = self.session.get(url, params={"symbol": symbol}, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()
        return float(data["price"])
