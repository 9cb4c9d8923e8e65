"""核心数据结构：Candle/TradeIntent/Position/ExecutionResult。"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Side(str, Enum):
    """交易方向（仅现货多头：买入开仓 / 卖出平仓）。"""

    BUY = "BUY"
    SELL = "SELL"


class PositionState(str, Enum):
    """持仓状态机的两个状态。"""

    FLAT = "FLAT"
    LONG = "LONG"


@dataclass(frozen=True)
class Candle:
    """已收盘 K 线（收盘后不可变）。"""
    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: datetime | None = None
    symbol: str | None = None

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open


@dataclass(frozen=True)
class TradeIntent:
    """规则评估产生的交易意图（尚未成交）。"""
    side: Side
    price: float     # 触发信号时的收盘价/最新价，仅供参考
    reason: str
    indicators: dict[str, Any] = field(default_factory=dict)


@dataclass
class Position:
    """持仓快照（由 PositionStateMachine 独占维护）。"""
    state: PositionState = PositionState.FLAT
    entry_price: float = 0.0
    high_water_mark: float = 0.0
    entry_time: datetime | None = None
    quantity: float = 0.0

    @property
    def is_long(self) -> bool:
        return self.state == PositionState.LONG


@dataclass(frozen=True)
class ExecutionResult:
    """下单结果。只有 status == FILLED 才视为成交。"""
    status: str
    executed_price: float | None = None
    executed_qty: float = 0.0
    order_id: str | None = None
    raw: dict[str, Any] | None = None

    @property
    def filled(self) -> bool:
        return self.status == "FILLED"
