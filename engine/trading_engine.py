"""实盘/纸面/干跑交易引擎（TradingEngine）。

流程：配置 → broker / journal / 窗口 / 持仓状态机 → 行情 feed + 最新价轮询 → 总结。
对外只暴露 `run()`、`status()`、`force_exit()`（替代原先的 HTTP 控制面）。
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any

import requests

from broker.base import Broker, BrokerMode
from broker.binance import BinanceBroker
from broker.paper_broker import PaperBroker
from engine.base_engine import BaseEngine, EngineResult
from factors.indicator_set import IndicatorSet
from market.client import BinanceMarketClient
from market.feed import Connect, MarketDataFeed
from market.window import CandleWindow
from shared.config.config_loader import load_config
from shared.config.schema import MainConfig
from shared.models.models import Candle
from shared.notify.telegram import TelegramNotifier
from shared.state.journal import FanoutJournal, JournalPort, SqliteJournal
from shared.utils.logging import setup_logger
from strategy.position_machine import PositionStateMachine
from strategy.volume_trend import VolumeTrendParams


class TradingEngine(BaseEngine):
    """单品种 K 线交易引擎。

    `market_client` / `broker` / `connect` 可注入，便于离线测试。
    """

    def __init__(
        self,
        *,
        cfg_path: str = "config/config.yml",
        cfg_obj: MainConfig | None = None,
        max_candles: int | None = None,
        market_client: BinanceMarketClient | None = None,
        broker: Broker | None = None,
        connect: Connect | None = None,
    ):
        self._cfg_path = cfg_path
        self._cfg_obj = cfg_obj
        self._max_candles = max_candles
        self._market_client = market_client
        self._broker = broker
        self._connect = connect

        self.cfg: MainConfig | None = None
        self.broker: Broker | None = None
        self.journal: JournalPort | None = None
        self.window: CandleWindow | None = None
        self.machine: PositionStateMachine | None = None
        self.market_client: BinanceMarketClient | None = None
        self.feed: MarketDataFeed | None = None
        self.candles_processed = 0
        self._sqlite: SqliteJournal | None = None
        self.logger = setup_logger("engine")

    def _load_cfg(self) -> MainConfig:
        return self._cfg_obj or load_config(self._cfg_path)

    def _logger(self, name: str):
        cfg = self.cfg
        assert cfg is not None
        return setup_logger(name, level=cfg.logging.level, log_file=cfg.logging.file)

    def build(self) -> None:
        """按配置装配所有组件（不触网）。"""
        cfg = self._load_cfg()
        self.cfg = cfg
        self.logger = self._logger("engine")

        params = VolumeTrendParams.from_mapping(cfg.strategy.params)
        indicators = IndicatorSet(
            fast_period=params.fast_period,
            slow_period=params.slow_period,
            volume_period=params.volume_period,
            rsi_period=params.rsi_period,
        )
        if indicators.min_candles > cfg.feed.window_size:
            raise ValueError(
                f"feed.window_size={cfg.feed.window_size} is smaller than the "
                f"{indicators.min_candles} candles the indicators need"
            )
        self.broker = self._broker or self._build_broker(cfg)
        self.journal = self._build_journal(cfg)
        self.window = CandleWindow(capacity=cfg.feed.window_size)
        self.machine = PositionStateMachine(
            self.broker,
            symbol=cfg.symbol,
            params=params,
            indicators=indicators,
            journal=self.journal,
            logger=self._logger("position"),
        )
        self.market_client = self._market_client or BinanceMarketClient(
            base_url=cfg.exchange.base_url,
            ws_url=cfg.exchange.ws_url,
            timeout=cfg.exchange.timeout,
            logger=self._logger("market-binance"),
        )
        self.feed = MarketDataFeed(
            self.market_client,
            self.window,
            self._on_candle,
            symbol=cfg.symbol,
            interval=cfg.interval,
            backfill=cfg.feed.backfill,
            reconnect_delay=cfg.feed.reconnect_delay,
            watchdog_timeout=cfg.feed.watchdog_timeout,
            watchdog_interval=cfg.feed.watchdog_interval,
            connect=self._connect,
            logger=self._logger("feed"),
        )
        self.logger.info(
            "Engine ready | %s %s | mode=%s | broker=%s | warmup=%s candles",
            cfg.symbol,
            cfg.interval,
            cfg.mode,
            type(self.broker).__name__,
            indicators.min_candles,
        )

    @staticmethod
    def _build_broker(cfg: MainConfig) -> Broker:
        mode = BrokerMode(cfg.mode)
        if mode in {BrokerMode.DRY_RUN, BrokerMode.PAPER}:
            return PaperBroker(mode=mode, qty_step=cfg.exchange.qty_step)
        return BinanceBroker(
            base_url=cfg.exchange.base_url,
            api_key=cfg.exchange.api_key or "",
            api_secret=cfg.exchange.api_secret or "",
            symbol=cfg.symbol,
            mode=mode,
            allow_live=cfg.exchange.allow_live,
            qty_step=cfg.exchange.qty_step,
            recv_window=cfg.exchange.recv_window,
            timeout=cfg.exchange.timeout,
        )

    def _build_journal(self, cfg: MainConfig) -> JournalPort | None:
        sinks: list[JournalPort] = []
        if cfg.journal.enabled:
            self._sqlite = SqliteJournal(cfg.journal.path)
            sinks.append(self._sqlite)
        tg = cfg.notify.telegram
        if tg.enabled:
            sinks.append(TelegramNotifier(tg.token or "", tg.chat_id or "", timeout=tg.timeout))
        if not sinks:
            return None
        return FanoutJournal(sinks)

    def run(self) -> EngineResult:
        if self.machine is None:
            self.build()
        try:
            asyncio.run(self._run_async())
        except KeyboardInterrupt:
            self.logger.info("Interrupted, shutting down.")
        finally:
            summary = self.status()
            self._record_final_status(summary)
            if self._sqlite is not None:
                self._sqlite.close()
        artifacts = {"journal_path": str(self._sqlite.path)} if self._sqlite is not None else None
        return EngineResult(summary=summary, artifacts=artifacts)

    async def _run_async(self) -> None:
        assert self.feed is not None and self.cfg is not None
        poller = None
        if self.cfg.feed.price_poll_secs > 0:
            poller = asyncio.create_task(self._poll_prices(self.cfg.feed.price_poll_secs))
        try:
            await self.feed.start()
        finally:
            if poller is not None:
                poller.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await poller

    async def _on_candle(self, candle: Candle) -> None:
        assert self.machine is not None and self.window is not None and self.feed is not None
        # 评估可能同步下单，放到线程里，事件循环继续处理心跳
        await asyncio.to_thread(self.machine.evaluate, self.window)
        self.candles_processed += 1
        if self._max_candles is not None and self.candles_processed >= self._max_candles:
            self.logger.info("Reached max_candles=%s, stopping.", self._max_candles)
            await self.feed.stop()

    async def _poll_prices(self, interval: float) -> None:
        assert self.market_client is not None and self.machine is not None and self.cfg is not None
        while True:
            try:
                price = await asyncio.to_thread(self.market_client.rest_price, self.cfg.symbol)
            except (requests.RequestException, ValueError, KeyError) as exc:
                self.logger.warning("Price poll failed: %s", exc)
            else:
                await asyncio.to_thread(self.machine.update_price, price)
            await asyncio.sleep(interval)

    def status(self) -> dict[str, Any]:
        """持仓 + 最新价 + feed 计数。"""
        if self.machine is None:
            return {}
        out = self.machine.status()
        feed = self.feed
        if feed is not None:
            out["feed"] = {
                "state": feed.state.value,
                "connect_count": feed.connect_count,
                "reconnect_count": feed.reconnect_count,
                "watchdog_trips": feed.watchdog_trips,
                "messages_received": feed.messages_received,
                "candles_received": feed.candles_received,
                "window": len(feed.window),
            }
        out["candles_processed"] = self.candles_processed
        return out

    def force_exit(self) -> dict[str, Any]:
        """手动平仓；可在任意线程调用，与行情评估共用同一把锁。"""
        if self.machine is None:
            raise RuntimeError("Engine is not built")
        return self.machine.force_exit()

    def _record_final_status(self, summary: dict[str, Any]) -> None:
        if self.journal is None:
            return
        try:
            self.journal.record("status", summary)
        except Exception as exc:
            self.logger.warning("Final status record failed: %s", exc)
