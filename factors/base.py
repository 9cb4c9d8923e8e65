"""因子（Factors/Features）抽象协议。

约定：因子层是“纯计算”，输入 CandleFrame（pandas DataFrame，按时间升序），
输出添加列后的 DataFrame；同样的输入必须得到同样的输出。
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol

import pandas as pd


class Factor(Protocol):
    """因子协议：`compute(df) -> df`。"""

    name: str
    params: Mapping[str, Any]

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        """对输入 df 添加/更新因子列并返回 df。"""


def apply_factors(df: pd.DataFrame, factors: list[Factor]) -> pd.DataFrame:
    for f in factors:
        df = f.compute(df)
    return df
