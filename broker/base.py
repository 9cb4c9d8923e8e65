"""下单执行端口（TradeExecutionPort）与运行模式定义。"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

from shared.models.models import ExecutionResult, Side


class BrokerMode(Enum):
    """Broker 运行模式枚举。"""

    DRY_RUN = "dry-run"
    PAPER = "paper"
    LIVE = "live"
    LIVE_TESTNET = "live-testnet"
    LIVE_MAINNET = "live-mainnet"


LIVE_MODES = {BrokerMode.LIVE, BrokerMode.LIVE_TESTNET, BrokerMode.LIVE_MAINNET}


class Broker(ABC):
    """交易执行抽象层：同步请求/响应，只认 FILLED。

    状态机把下单视为原子操作：要么成交，要么不成交，不处理部分成交。
    """

    mode: BrokerMode

    @abstractmethod
    def submit(
        self,
        side: Side,
        quantity: float,
        *,
        reference_price: float | None = None,
        client_order_id: str | None = None,
    ) -> ExecutionResult:
        """提交一笔市价单。

        Parameters
        ----------
        side:
            BUY / SELL。
        quantity:
            下单数量（基础资产）。
        reference_price:
            触发信号时的价格；实盘仅用于日志，纸面盘按此价成交。
        client_order_id:
            可选的幂等 ID。

        Returns
        -------
        ExecutionResult
            `status == "FILLED"` 表示成交；其余任何状态都视为未成交。
        """
        ...
