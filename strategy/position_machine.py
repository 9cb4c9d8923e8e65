"""持仓状态机（FLAT / LONG）。

每根收盘 K 线调用一次 `evaluate(window)`：
- FLAT：入场六条件全部满足且不在冷却期 -> BUY 意图；
- LONG：先用收盘价抬高 high_water_mark，再按优先级检查离场 -> SELL 意图。

意图同步提交给 broker，只有 FILLED 才改变持仓（不做乐观更新）；
未成交的意图直接丢弃，下一根 K 线重新评估。
所有对持仓的读写都经过同一把锁（行情评估、价格轮询、手动平仓互斥）。
"""

from __future__ import annotations

import threading
import time
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Callable

from broker.base import Broker
from factors.indicator_set import IndicatorSet, IndicatorSnapshot
from market.window import CandleWindow
from shared.models.models import ExecutionResult, Position, PositionState, Side, TradeIntent
from shared.state.journal import JournalPort
from shared.utils.client_order_id import make_client_order_id
from shared.utils.logging import setup_logger
from strategy.volume_trend import REASON_MANUAL, VolumeTrendParams, check_entry, exit_reason


class PositionStateMachine:
    """两状态持仓机，独占 Position。"""

    def __init__(
        self,
        broker: Broker,
        *,
        symbol: str,
        params: VolumeTrendParams | None = None,
        indicators: IndicatorSet | None = None,
        journal: JournalPort | None = None,
        clock: Callable[[], float] = time.time,
        logger=None,
    ):
        self.broker = broker
        self.symbol = symbol
        self.params = params or VolumeTrendParams()
        self.indicators = indicators or IndicatorSet(
            fast_period=self.params.fast_period,
            slow_period=self.params.slow_period,
            volume_period=self.params.volume_period,
            rsi_period=self.params.rsi_period,
        )
        self.journal = journal
        self.clock = clock
        self.logger = logger or setup_logger("position")

        self.position = Position()
        self.last_price: float | None = None
        self.last_snapshot: IndicatorSnapshot | None = None
        self.last_trade_ts: float | None = None
        self.trade_count = 0
        self._order_seq = 0
        self._lock = threading.RLock()

    @property
    def state(self) -> PositionState:
        return self.position.state

    def evaluate(self, window: CandleWindow) -> TradeIntent | None:
        """对最新一根收盘 K 线做一次评估，返回本次发出的意图（无则 None）。"""
        with self._lock:
            candle = window.last
            if candle is None:
                return None
            self.last_price = candle.close

            snap = self.indicators.compute(window)
            if snap is None:
                self.logger.debug(
                    "Warming up: %s/%s candles, skip evaluation", len(window), self.indicators.min_candles
                )
                return None
            self.last_snapshot = snap

            if self.position.is_long:
                return self._evaluate_exit(snap, candle.open_time)
            return self._evaluate_entry(snap, candle.open_time)

    def _evaluate_entry(self, snap: IndicatorSnapshot, candle_time: datetime) -> TradeIntent | None:
        check = check_entry(snap, self.params)
        if not check.passed:
            self.logger.debug("No entry: %s", check)
            return None
        if self._in_cooldown():
            self.logger.info("Entry signal suppressed by cooldown (%ss)", self.params.cooldown_secs)
            return None

        intent = TradeIntent(side=Side.BUY, price=snap.close, reason="entry", indicators=snap.to_dict())
        self.logger.info(
            "BUY signal close=%.6f fast=%.6f slow=%.6f rsi=%.2f vol=%.4f avg_vol=%.4f",
            snap.close,
            snap.fast_ma,
            snap.slow_ma,
            snap.rsi,
            snap.volume,
            snap.volume_ma_prev,
        )
        self._execute(intent, candle_time)
        return intent

    def _evaluate_exit(self, snap: IndicatorSnapshot, candle_time: datetime) -> TradeIntent | None:
        pos = self.position
        # 先更新峰值，移动止损才能反映真实高点
        pos.high_water_mark = max(pos.high_water_mark, snap.close)

        reason = exit_reason(
            snap,
            self.params,
            entry_price=pos.entry_price,
            high_water_mark=pos.high_water_mark,
        )
        if reason is None:
            return None

        intent = TradeIntent(side=Side.SELL, price=snap.close, reason=reason, indicators=snap.to_dict())
        self.logger.info(
            "SELL signal (%s) close=%.6f entry=%.6f hwm=%.6f", reason, snap.close, pos.entry_price, pos.high_water_mark
        )
        self._execute(intent, candle_time)
        return intent

    def _in_cooldown(self) -> bool:
        if self.last_trade_ts is None or self.params.cooldown_secs <= 0:
            return False
        return (self.clock() - self.last_trade_ts) < self.params.cooldown_secs

    def _execute(self, intent: TradeIntent, candle_time: datetime | None) -> ExecutionResult | None:
        """提交意图；成交后才更新持仓并写 journal。"""
        if (intent.side == Side.BUY) == self.position.is_long:
            raise RuntimeError(f"{intent.side.value} intent while position is {self.position.state.value}")

        quantity = self.params.quantity if intent.side == Side.BUY else self.position.quantity
        self._order_seq += 1
        cid = make_client_order_id(
            symbol=self.symbol,
            side=intent.side.value,
            candle_time=candle_time,
            seq=self._order_seq,
            reason=intent.reason,
        )
        try:
            res = self.broker.submit(intent.side, quantity, reference_price=intent.price, client_order_id=cid)
        except Exception as exc:
            self.logger.error("%s submission failed, position unchanged: %s", intent.side.value, exc)
            return None

        if not res.filled:
            self.logger.warning(
                "%s not filled (status=%s), position stays %s", intent.side.value, res.status, self.position.state.value
            )
            return res

        fill_price = res.executed_price
        if not fill_price or fill_price <= 0:
            self.logger.warning(
                "%s filled without executed price, falling back to signal price %.6f", intent.side.value, intent.price
            )
            fill_price = intent.price
        fill_qty = res.executed_qty if res.executed_qty > 0 else quantity

        if intent.side == Side.BUY:
            self._open_long(intent, res, fill_price, fill_qty)
        else:
            self._close_long(intent, res, fill_price)
        self.last_trade_ts = self.clock()
        self.trade_count += 1
        return res

    def _open_long(self, intent: TradeIntent, res: ExecutionResult, fill_price: float, fill_qty: float) -> None:
        now = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        self.position = Position(
            state=PositionState.LONG,
            entry_price=fill_price,
            high_water_mark=fill_price,
            entry_time=now,
            quantity=fill_qty,
        )
        self.logger.info("Position LONG %s qty=%s entry=%.6f", self.symbol, fill_qty, fill_price)
        self._journal(
            "BUY",
            {
                "ts": now.isoformat(),
                "symbol": self.symbol,
                "price": fill_price,
                "signal_price": intent.price,
                "quantity": fill_qty,
                "order_id": res.order_id,
                "reason": intent.reason,
                "indicators": intent.indicators,
            },
        )

    def _close_long(self, intent: TradeIntent, res: ExecutionResult, fill_price: float) -> None:
        pos = self.position
        now = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        profit = (fill_price - pos.entry_price) * pos.quantity
        roi_pct = (fill_price / pos.entry_price - 1) * 100 if pos.entry_price else 0.0
        payload = {
            "ts": now.isoformat(),
            "symbol": self.symbol,
            "price": fill_price,
            "signal_price": intent.price,
            "entry_price": pos.entry_price,
            "high_water_mark": pos.high_water_mark,
            "quantity": pos.quantity,
            "order_id": res.order_id,
            "reason": intent.reason,
            "profit": profit,
            "roi_pct": roi_pct,
        }
        self.position = Position()
        self.logger.info(
            "Position FLAT %s exit=%.6f reason=%s profit=%.6f (%+.2f%%)",
            self.symbol,
            fill_price,
            intent.reason,
            profit,
            roi_pct,
        )
        self._journal("SELL", payload)

    def _journal(self, kind: str, payload: dict[str, Any]) -> None:
        if self.journal is None:
            return
        try:
            self.journal.record(kind, payload)
        except Exception as exc:
            self.logger.warning("Journal record %s failed: %s", kind, exc)

    def update_price(self, price: float) -> None:
        """低频最新价刷新：供状态展示，并在持仓时抬高 high_water_mark。"""
        with self._lock:
            self.last_price = float(price)
            if self.position.is_long:
                self.position.high_water_mark = max(self.position.high_water_mark, self.last_price)

    def force_exit(self) -> dict[str, Any]:
        """手动平仓：走与指标离场相同的 SELL 路径，reason = manual。"""
        with self._lock:
            if not self.position.is_long:
                return {"status": "warning", "message": "No open position to sell."}

            price = self.last_price or self.position.entry_price
            indicators = self.last_snapshot.to_dict() if self.last_snapshot else {}
            intent = TradeIntent(side=Side.SELL, price=price, reason=REASON_MANUAL, indicators=indicators)
            self.logger.info("Manual SELL requested at %.6f", price)
            res = self._execute(intent, None)
            if res is None or not res.filled:
                return {"status": "error", "message": "Manual sell was not filled."}
            return {"status": "success", "result": asdict(res)}

    def status(self) -> dict[str, Any]:
        """只读快照：持仓 + 最新价。"""
        with self._lock:
            pos = self.position
            current = self.last_price
            unrealized = 0.0
            if pos.is_long and current and pos.entry_price:
                unrealized = (current / pos.entry_price - 1) * 100
            return {
                "symbol": self.symbol,
                "state": pos.state.value,
                "entry_price": pos.entry_price,
                "current_price": current,
                "unrealized_percent": unrealized,
                "high_water_mark": pos.high_water_mark,
                "quantity": pos.quantity,
                "entry_time": pos.entry_time.isoformat() if pos.entry_time else None,
                "trades": self.trade_count,
            }
