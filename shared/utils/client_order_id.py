"""订单幂等 ID（newClientOrderId）生成。

同一根 K 线上的同一交易意图得到同一个 ID；长度用 hash 压缩到交易所限制以内（<= 36）。
"""

from __future__ import annotations

import hashlib
from datetime import datetime


def make_client_order_id(
    *,
    symbol: str,
    side: str,
    candle_time: datetime | None,
    seq: int,
    reason: str | None = None,
) -> str:
    raw = "|".join(
        [
            str(symbol),
            str(side),
            candle_time.isoformat() if candle_time is not None else "",
            str(int(seq)),
            str(reason or ""),
        ]
    )
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:24]
    return f"kt_{digest}"
