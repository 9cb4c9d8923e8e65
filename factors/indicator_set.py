"""指标集合：CandleWindow -> IndicatorSnapshot。

每根收盘 K 线对整个窗口做一次全量重算（窗口有界，开销可以接受）。
结果只依赖窗口内容，同样的窗口得到逐位相同的快照。
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any

from factors.base import Factor, apply_factors
from factors.ma import MAFactor
from factors.obv import OBVFactor
from factors.rsi import NEUTRAL_RSI, RSIFactor
from market.window import CandleWindow

# 除最长回看期外额外需要的 K 线数（OBV 连续三根判断等）
DEFAULT_MARGIN = 3


@dataclass(frozen=True)
class IndicatorSnapshot:
    """最新一根已收盘 K 线上的指标快照。"""

    fast_ma: float
    fast_ma_prev: float
    slow_ma: float
    volume_ma: float        # 含当前 K 线的成交量均线
    volume_ma_prev: float   # 截止上一根 K 线的成交量均线（入场放量判断用）
    rsi: float
    obv: tuple[float, float, float]  # 最近三个 OBV 值（旧 -> 新）
    open: float
    close: float
    volume: float

    @property
    def fast_ma_slope(self) -> float:
        return self.fast_ma - self.fast_ma_prev

    @property
    def obv_increasing(self) -> bool:
        a, b, c = self.obv
        return c > b > a

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["obv"] = list(self.obv)
        return data


class IndicatorSet:
    """按固定参数计算快线/慢线/量能均线、RSI 与 OBV。"""

    def __init__(
        self,
        fast_period: int = 9,
        slow_period: int = 21,
        volume_period: int = 20,
        rsi_period: int = 14,
        margin: int = DEFAULT_MARGIN,
    ):
        if min(fast_period, slow_period, volume_period, rsi_period) <= 0:
            raise ValueError("indicator periods must be > 0")
        if margin < 0:
            raise ValueError("margin must be >= 0")
        self.fast_period = int(fast_period)
        self.slow_period = int(slow_period)
        self.volume_period = int(volume_period)
        self.rsi_period = int(rsi_period)
        self.margin = int(margin)

        self.factors: list[Factor] = [
            MAFactor(window=self.fast_period, out_col="ma_fast"),
            MAFactor(window=self.slow_period, out_col="ma_slow", with_prev=False),
            MAFactor(window=self.volume_period, price_col="volume", out_col="ma_volume"),
            RSIFactor(period=self.rsi_period, out_col="rsi"),
            OBVFactor(out_col="obv"),
        ]

    @property
    def lookback(self) -> int:
        """计算全部指标（含前一根的快线/量能均线）所需的最少 K 线数。"""
        return max(
            self.fast_period + 1,
            self.slow_period,
            self.volume_period + 1,
            self.rsi_period + 1,
        )

    @property
    def min_candles(self) -> int:
        # OBV 判断至少需要三根
        return max(self.lookback + self.margin, 3)

    def is_ready(self, window: CandleWindow) -> bool:
        return len(window) >= self.min_candles

    def compute(self, window: CandleWindow) -> IndicatorSnapshot | None:
        """计算最新快照；窗口长度不足时返回 None（本根 K 线不做评估）。"""
        if not self.is_ready(window):
            return None

        df = apply_factors(window.to_frame(), self.factors)
        last = df.iloc[-1]
        obv = df["obv"].iloc[-3:].astype(float).tolist()

        rsi = float(last["rsi"])
        if math.isnan(rsi):
            rsi = NEUTRAL_RSI

        return IndicatorSnapshot(
            fast_ma=float(last["ma_fast"]),
            fast_ma_prev=float(last["ma_fast_prev"]),
            slow_ma=float(last["ma_slow"]),
            volume_ma=float(last["ma_volume"]),
            volume_ma_prev=float(last["ma_volume_prev"]),
            rsi=rsi,
            obv=(obv[0], obv[1], obv[2]),
            open=float(last["open"]),
            close=float(last["close"]),
            volume=float(last["volume"]),
        )
