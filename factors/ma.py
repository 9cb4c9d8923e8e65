"""SMA 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd


@dataclass(frozen=True)
class MAFactor:
    """简单移动平均（SMA），可同时给出上一根 K 线的均线值。

    - `price_col` 可以是 close，也可以是 volume（成交量均线）；
    - `with_prev=True` 时额外写入 `<out>_prev` 列（均线右移一位）：
      快线斜率与放量判断都要用“截止上一根”的均线。
    """

    window: int
    price_col: str = "close"
    out_col: str | None = None
    with_prev: bool = True
    name: str = "sma"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.window <= 0:
            raise ValueError("MA window must be > 0")
        object.__setattr__(
            self,
            "params",
            {"window": self.window, "price_col": self.price_col, "out_col": self.out_col},
        )

    @property
    def column(self) -> str:
        return self.out_col or f"sma_{self.price_col}_{self.window}"

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        if self.price_col not in df.columns:
            raise ValueError(f"MAFactor requires column: {self.price_col}")
        ma = df[self.price_col].astype(float).rolling(self.window, min_periods=self.window).mean()
        df[self.column] = ma
        if self.with_prev:
            df[f"{self.column}_prev"] = ma.shift(1)
        return df
