"""OBV（On-Balance Volume）因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class OBVFactor:
    """累计带符号成交量：收盘价上涨加成交量，下跌减成交量，持平不变。

    第一根 K 线的 OBV 为 0。
    """

    price_col: str = "close"
    volume_col: str = "volume"
    out_col: str | None = None
    name: str = "obv"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(
            self,
            "params",
            {
                "price_col": self.price_col,
                "volume_col": self.volume_col,
                "out_col": self.out_col,
            },
        )

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        for col in (self.price_col, self.volume_col):
            if col not in df.columns:
                raise ValueError(f"OBVFactor requires column: {col}")
        out = self.out_col or "obv"
        direction = np.sign(df[self.price_col].astype(float).diff().fillna(0.0))
        df[out] = (direction * df[self.volume_col].astype(float)).cumsum()
        return df
