"""模拟 broker（dry-run / paper）。

两种模式都使用真实行情给出的参考价在本地撮合，不向交易所下单；
区别只在订单号前缀与日志标记。
"""

from __future__ import annotations

import itertools

from broker.base import Broker, BrokerMode
from shared.models.models import ExecutionResult, Side
from shared.utils.logging import setup_logger
from shared.utils.precision import floor_to_step


class PaperBroker(Broker):
    """纸面交易 broker：按 reference_price（可加滑点）立即全部成交。"""

    def __init__(
        self,
        *,
        mode: BrokerMode = BrokerMode.PAPER,
        qty_step: float | None = None,
        slippage_bp: float = 0.0,
    ):
        if mode not in {BrokerMode.PAPER, BrokerMode.DRY_RUN}:
            raise ValueError(f"invalid mode for PaperBroker: {mode.value}")
        self.mode = mode
        self.qty_step = qty_step
        self.slippage_bp = float(slippage_bp)
        self.logger = setup_logger("paper-broker")
        self._seq = itertools.count(1)
        self.orders: list[ExecutionResult] = []

    def submit(
        self,
        side: Side,
        quantity: float,
        *,
        reference_price: float | None = None,
        client_order_id: str | None = None,
    ) -> ExecutionResult:
        side = Side(side)
        if reference_price is None or reference_price <= 0:
            # 没有价格就无法模拟成交
            return ExecutionResult(status="REJECTED", raw={"error": "missing reference price"})

        qty = floor_to_step(quantity, self.qty_step) if self.qty_step else float(quantity)
        if qty <= 0:
            return ExecutionResult(status="REJECTED", raw={"error": f"quantity {quantity} below qty_step"})

        slip = self.slippage_bp / 10_000
        price = reference_price * (1 + slip) if side == Side.BUY else reference_price * (1 - slip)
        order_id = client_order_id or f"{self.mode.value}-{next(self._seq)}"
        res = ExecutionResult(
            status="FILLED",
            executed_price=price,
            executed_qty=qty,
            order_id=order_id,
            raw={"side": side.value, "qty": qty, "price": price, "mode": self.mode.value},
        )
        self.orders.append(res)
        self.logger.info("[%s ORDER] %s qty=%s price=%.6f", self.mode.value.upper(), side.value, qty, price)
        return res
