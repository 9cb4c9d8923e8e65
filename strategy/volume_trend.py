"""量价趋势规则：均线趋势 + 放量 + OBV + RSI 入场，止损/止盈/移动止损/指标反转离场。

这里只做“判断”，不持有任何状态；持仓与下单由 PositionStateMachine 负责。
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping

from factors.indicator_set import IndicatorSnapshot

REASON_STOP_LOSS = "stop-loss"
REASON_TAKE_PROFIT = "take-profit"
REASON_TRAILING_STOP = "trailing-stop"
REASON_RSI_OVERBOUGHT = "rsi-overbought"
REASON_TREND_REVERSAL = "trend-reversal"
REASON_MANUAL = "manual"


@dataclass(frozen=True)
class VolumeTrendParams:
    """策略参数（百分比均为小数，0.02 = 2%）。"""

    fast_period: int = 9
    slow_period: int = 21
    volume_period: int = 20
    rsi_period: int = 14
    rsi_overbought: float = 70.0
    min_volume_factor: float = 1.5
    stop_loss_pct: float = 0.02
    take_profit_pct: float = 0.04
    trailing_stop_pct: float = 0.015
    min_trend_strength: float = 0.0003
    cooldown_secs: float = 30.0
    quantity: float = 0.01

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValueError("quantity must be > 0")
        for name in ("stop_loss_pct", "take_profit_pct", "trailing_stop_pct"):
            val = getattr(self, name)
            if not 0 < val < 1:
                raise ValueError(f"{name} must be in (0, 1)")
        if not 50 < self.rsi_overbought <= 100:
            raise ValueError("rsi_overbought must be in (50, 100]")
        if self.cooldown_secs < 0:
            raise ValueError("cooldown_secs must be >= 0")

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any] | None) -> "VolumeTrendParams":
        """从配置字典构建；未知字段直接报错，避免 typo 静默失效。"""
        params = dict(params or {})
        allowed = {f.name for f in fields(cls)}
        unknown = sorted(k for k in params if k not in allowed)
        if unknown:
            raise ValueError(f"Unknown strategy params: {', '.join(unknown)}")
        return cls(**params)


@dataclass(frozen=True)
class EntryCheck:
    """入场六条件的逐项结果，便于日志排查。"""

    uptrend: bool
    high_volume: bool
    obv_increasing: bool
    price_above_fast_ma: bool
    rsi_ok: bool
    bullish: bool

    @property
    def passed(self) -> bool:
        return all(
            (
                self.uptrend,
                self.high_volume,
                self.obv_increasing,
                self.price_above_fast_ma,
                self.rsi_ok,
                self.bullish,
            )
        )


def check_entry(snap: IndicatorSnapshot, params: VolumeTrendParams) -> EntryCheck:
    """评估入场条件（全部满足才允许买入）。"""
    return EntryCheck(
        uptrend=snap.fast_ma > snap.slow_ma and snap.fast_ma_slope > params.min_trend_strength,
        high_volume=snap.volume > snap.volume_ma_prev * params.min_volume_factor,
        obv_increasing=snap.obv_increasing,
        price_above_fast_ma=snap.close > snap.fast_ma,
        rsi_ok=50.0 < snap.rsi < params.rsi_overbought,
        bullish=snap.close > snap.open,
    )


def exit_reason(
    snap: IndicatorSnapshot,
    params: VolumeTrendParams,
    *,
    entry_price: float,
    high_water_mark: float,
) -> str | None:
    """按固定优先级返回第一个触发的离场原因；都不满足返回 None。

    调用方需先用本根收盘价更新 high_water_mark。
    """
    close = snap.close
    if close <= entry_price * (1 - params.stop_loss_pct):
        return REASON_STOP_LOSS
    if close >= entry_price * (1 + params.take_profit_pct):
        return REASON_TAKE_PROFIT
    if close <= high_water_mark * (1 - params.trailing_stop_pct):
        return REASON_TRAILING_STOP
    if snap.rsi >= params.rsi_overbought:
        return REASON_RSI_OVERBOUGHT
    if snap.fast_ma < snap.slow_ma:
        return REASON_TREND_REVERSAL
    return None
