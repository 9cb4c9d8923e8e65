"""实时 K 线行情 feed（WebSocket）。

职责：
1. 启动时先用 REST 回填最近 N 根已收盘 K 线，指标在第一根实时 K 线前就已预热；
2. 维持唯一一条 kline 订阅，只把收盘（final）K 线写入窗口并触发评估；
3. 断线后固定间隔无限重连，每次重连重新发送订阅；窗口跨重连保留；
4. watchdog：超过阈值没有收到任何消息就强制关闭连接并重连（防半开连接）。

状态：DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED（无终态，直到 stop()）。
重连期间错过的 K 线不会补齐，也不按时间戳去重。
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import time
from enum import Enum
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import WebSocketException

from market.client import BinanceMarketClient, decode_message, kline_stream_name, parse_kline_message
from market.window import CandleWindow
from shared.models.models import Candle
from shared.utils.logging import setup_logger

OnCandle = Callable[[Candle], Awaitable[None]]
Connect = Callable[[str], Any]


class FeedState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"


def _default_connect(url: str):
    # 协议层 ping 由 websockets 在同一连接上自动回 pong
    return websockets.connect(url, open_timeout=10, close_timeout=5, ping_interval=20, ping_timeout=20)


class MarketDataFeed:
    """单品种/单周期 kline feed。

    Parameters
    ----------
    client:
        REST 客户端（回填用），其 `ws_url` 为 WebSocket 地址。
    window:
        共享的 K 线窗口。
    on_candle:
        每根收盘 K 线写入窗口后 await 的回调（持仓评估）。
    connect:
        传输层工厂 `connect(url)`，返回 async context manager；测试可注入假连接。
    clock:
        单调时钟，watchdog 用。
    """

    def __init__(
        self,
        client: BinanceMarketClient,
        window: CandleWindow,
        on_candle: OnCandle,
        *,
        symbol: str,
        interval: str,
        backfill: bool = True,
        backfill_limit: int | None = None,
        reconnect_delay: float = 5.0,
        watchdog_timeout: float = 60.0,
        watchdog_interval: float = 15.0,
        connect: Connect | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger=None,
    ):
        self.client = client
        self.window = window
        self.on_candle = on_candle
        self.symbol = symbol.upper()
        self.interval = interval
        self.backfill_enabled = backfill
        # REST 最后一根在形成中会被丢弃，多要一根
        self.backfill_limit = backfill_limit or window.capacity + 1
        self.reconnect_delay = float(reconnect_delay)
        self.watchdog_timeout = float(watchdog_timeout)
        self.watchdog_interval = float(watchdog_interval)
        self._connect = connect or _default_connect
        self.clock = clock
        self.logger = logger or setup_logger("feed")

        self.state = FeedState.DISCONNECTED
        self.last_message_at: float | None = None
        self.connect_count = 0
        self.reconnect_count = 0
        self.watchdog_trips = 0
        self.messages_received = 0
        self.candles_received = 0

        self._running = False
        self._ws: Any = None
        self._request_ids = itertools.count(1)

    @property
    def stream(self) -> str:
        return kline_stream_name(self.symbol, self.interval)

    @property
    def running(self) -> bool:
        return self._running

    def _set_state(self, state: FeedState) -> None:
        if state != self.state:
            self.logger.debug("Feed state %s -> %s", self.state.value, state.value)
        self.state = state

    async def backfill(self) -> int:
        """REST 回填；失败时降级为空窗口，只靠实时 K 线积累。"""
        if not self.backfill_enabled:
            return 0
        try:
            candles = await asyncio.to_thread(
                self.client.fetch_klines, self.symbol, self.interval, self.backfill_limit
            )
        except Exception as exc:
            self.logger.warning("Backfill failed, starting with empty window: %s", exc)
            return 0
        candles = candles[-self.window.capacity :]
        self.window.extend(candles)
        self.logger.info("Backfilled %s candles for %s %s", len(candles), self.symbol, self.interval)
        return len(candles)

    async def start(self) -> None:
        """回填后进入连接循环，直到 stop()。"""
        self._running = True
        await self.backfill()
        if not self._running:
            self.logger.info("Feed stopped during backfill")
            return
        watchdog = asyncio.create_task(self._watchdog_loop())
        try:
            await self._connection_loop()
        finally:
            self._running = False
            watchdog.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watchdog

    async def stop(self) -> None:
        self._running = False
        await self._close_transport()

    async def _connection_loop(self) -> None:
        while self._running:
            self._set_state(FeedState.CONNECTING)
            try:
                async with self._connect(self.client.ws_url) as ws:
                    self._ws = ws
                    self.connect_count += 1
                    await self._subscribe(ws)
                    self._set_state(FeedState.CONNECTED)
                    self.last_message_at = self.clock()
                    self.logger.info("Connected to %s (%s)", self.client.ws_url, self.stream)
                    async for raw in ws:
                        await self.on_message(raw)
                        if not self._running:
                            break
                self.logger.warning("Connection closed")
            except (WebSocketException, OSError, asyncio.TimeoutError) as exc:
                self.logger.warning("WS error: %s", exc)
            except Exception as exc:
                self.logger.exception("Unexpected feed error: %s", exc)
            finally:
                self._ws = None
                self._set_state(FeedState.DISCONNECTED)

            if not self._running:
                break
            self.reconnect_count += 1
            self.logger.info("Reconnecting in %.1fs...", self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

    async def _subscribe(self, ws) -> None:
        msg = {"method": "SUBSCRIBE", "params": [self.stream], "id": next(self._request_ids)}
        await ws.send(json.dumps(msg))
        self.logger.info("Subscribed to %s", self.stream)

    async def on_message(self, raw: str | bytes) -> Candle | None:
        """处理一条传输层消息；只有收盘 K 线会进入窗口并触发评估。"""
        self.last_message_at = self.clock()
        self.messages_received += 1

        try:
            data = decode_message(raw)
        except ValueError as exc:
            # json.JSONDecodeError / UnicodeDecodeError 都是 ValueError
            self.logger.warning("Dropping malformed message: %s", exc)
            return None

        if "ping" in data or data.get("msg") == "ping":
            await self._send_pong(data)
            return None
        if "error" in data:
            # 订阅被拒绝时不会再有 K 线，只能靠看门狗重连
            self.logger.warning("Exchange error reply (id=%s): %s", data.get("id"), data["error"])
            return None
        if "id" in data and "result" in data:
            # 订阅确认
            return None

        try:
            candle = parse_kline_message(data)
        except ValueError as exc:
            self.logger.warning("Dropping kline: %s", exc)
            return None
        if candle is None:
            return None
        if candle.symbol and candle.symbol.upper() != self.symbol:
            self.logger.warning("Ignoring kline for unexpected symbol %s", candle.symbol)
            return None

        self.window.append(candle)
        self.candles_received += 1
        self.logger.info(
            "Candle closed | %s | close=%s | vol=%s | %s",
            self.symbol,
            candle.close,
            candle.volume,
            candle.open_time.isoformat(),
        )
        try:
            await self.on_candle(candle)
        except Exception as exc:
            self.logger.exception("Candle handler failed: %s", exc)
        return candle

    async def _send_pong(self, data: dict[str, Any]) -> None:
        ws = self._ws
        if ws is None:
            return
        payload = {"pong": data["ping"]} if "ping" in data else {"msg": "pong"}
        try:
            await ws.send(json.dumps(payload))
        except (WebSocketException, OSError) as exc:
            self.logger.warning("Pong failed: %s", exc)

    async def check_watchdog(self) -> bool:
        """距上一条消息超过阈值则强制断开（由连接循环负责重连）。返回是否触发。"""
        if self.state != FeedState.CONNECTED or self.last_message_at is None:
            return False
        silence = self.clock() - self.last_message_at
        if silence <= self.watchdog_timeout:
            return False
        self.watchdog_trips += 1
        self.logger.warning("Watchdog: no message for %.1fs, forcing reconnect", silence)
        await self._close_transport()
        return True

    async def _watchdog_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.watchdog_interval)
            await self.check_watchdog()

    async def _close_transport(self) -> None:
        ws = self._ws
        if ws is None:
            return
        try:
            await ws.close()
        except (WebSocketException, OSError) as exc:
            self.logger.warning("Error while closing transport: %s", exc)
