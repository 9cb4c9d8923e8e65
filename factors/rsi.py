"""RSI 因子（Wilder 平滑）。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

NEUTRAL_RSI = 50.0


def wilder_rsi(closes: list[float] | np.ndarray, period: int) -> np.ndarray:
    """逐根计算 Wilder RSI。

    - 前 period 个涨跌幅的简单平均作为种子，之后 avg = (avg*(p-1) + x) / p；
    - 平均跌幅为 0：平均涨幅 > 0 时为 100，否则（完全无波动）为 50；
    - 数据不足 period+1 根的位置为 NaN。
    """
    values = np.asarray(closes, dtype=float)
    out = np.full(values.shape[0], np.nan)
    if period <= 0 or values.shape[0] < period + 1:
        return out

    deltas = np.diff(values)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = float(gains[:period].sum()) / period
    avg_loss = float(losses[:period].sum()) / period
    out[period] = _rsi_from_averages(avg_gain, avg_loss)

    for i in range(period, deltas.shape[0]):
        avg_gain = (avg_gain * (period - 1) + float(gains[i])) / period
        avg_loss = (avg_loss * (period - 1) + float(losses[i])) / period
        out[i + 1] = _rsi_from_averages(avg_gain, avg_loss)
    return out


def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0.0:
        return 100.0 if avg_gain > 0.0 else NEUTRAL_RSI
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


@dataclass(frozen=True)
class RSIFactor:
    """相对强弱指数（RSI，Wilder 版本）。"""

    period: int = 14
    price_col: str = "close"
    out_col: str | None = None
    name: str = "rsi"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("RSI period must be > 0")
        object.__setattr__(
            self,
            "params",
            {
                "period": self.period,
                "price_col": self.price_col,
                "out_col": self.out_col,
            },
        )

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        if self.price_col not in df.columns:
            raise ValueError(f"RSIFactor requires column: {self.price_col}")
        out = self.out_col or f"rsi_{self.period}"
        df[out] = wilder_rsi(df[self.price_col].to_numpy(dtype=float), self.period)
        return df
