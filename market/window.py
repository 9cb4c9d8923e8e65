"""固定容量的 K 线窗口（FIFO）。"""

from __future__ import annotations

from collections import deque
from typing import Iterable, Iterator

import pandas as pd

from shared.models.models import Candle


class CandleWindow:
    """按时间顺序保存最近 N 根已收盘 K 线。

    插入顺序即时间顺序；超过容量时淘汰最旧的一根。
    只由行情 feed（及启动时的 backfill）写入。
    """

    def __init__(self, capacity: int = 100):
        if capacity <= 0:
            raise ValueError("window capacity must be > 0")
        self.capacity = int(capacity)
        self._candles: deque[Candle] = deque(maxlen=self.capacity)

    def append(self, candle: Candle) -> None:
        self._candles.append(candle)

    def extend(self, candles: Iterable[Candle]) -> None:
        for candle in candles:
            self.append(candle)

    def __len__(self) -> int:
        return len(self._candles)

    def __iter__(self) -> Iterator[Candle]:
        return iter(self._candles)

    @property
    def last(self) -> Candle | None:
        return self._candles[-1] if self._candles else None

    def closes(self) -> list[float]:
        return [c.close for c in self._candles]

    def volumes(self) -> list[float]:
        return [c.volume for c in self._candles]

    def to_frame(self) -> pd.DataFrame:
        """转成因子层使用的 CandleFrame（每行一根 K 线）。"""
        rows = [
            {
                "ts": c.open_time,
                "open": c.open,
                "high": c.high,
                "low": c.low,
                "close": c.close,
                "volume": c.volume,
            }
            for c in self._candles
        ]
        return pd.DataFrame(rows, columns=["ts", "open", "high", "low", "close", "volume"])
