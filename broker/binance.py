"""Binance 现货实盘 broker（签名 REST 市价单）。

仅在 allow_live=True 且 mode 为 LIVE_* 时才会真实下单。
"""

import hashlib
import hmac
import time
from urllib.parse import urlencode

import requests

from broker.base import LIVE_MODES, Broker, BrokerMode
from shared.models.models import ExecutionResult, Side
from shared.utils.logging import setup_logger
from shared.utils.precision import format_qty


class BinanceBroker(Broker):
    """对接 Binance 的实盘 broker。

    Notes
    -----
    - 数量按 qty_step 向下取整；
    - 成交价优先用 cummulativeQuoteQty / executedQty（成交均价），否则取 fills[0].price；
    - 网络/HTTP 错误统一返回 status="ERROR"，不向上抛出。
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_secret: str,
        symbol: str,
        mode: BrokerMode = BrokerMode.LIVE,
        allow_live: bool = False,
        qty_step: float | None = None,
        recv_window: int = 10000,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ):
        if mode not in LIVE_MODES:
            raise ValueError(f"invalid mode for BinanceBroker: {mode.value}")
        if not allow_live:
            raise ValueError("Live trading requested but exchange.allow_live is false")
        if not api_key or not api_secret:
            raise ValueError("Live trading requires exchange.api_key and exchange.api_secret")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.api_secret = api_secret.encode()
        self.symbol = symbol
        self.mode = mode
        self.qty_step = qty_step
        self.recv_window = int(recv_window)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = setup_logger("binance-broker")

    def _sign(self, params: dict) -> str:
        qs = urlencode(params)
        return hmac.new(self.api_secret, qs.encode(), hashlib.sha256).hexdigest()

    def _request(self, method: str, path: str, params: dict) -> dict:
        params["timestamp"] = int(time.time() * 1000)
        params["recvWindow"] = self.recv_window
        params["signature"] = self._sign(params)
        headers = {"X-MBX-APIKEY": self.api_key}
        url = f"{self.base_url}{path}"
        resp = self.session.request(method, url, params=params, headers=headers, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def submit(
        self,
        side: Side,
        quantity: float,
        *,
        reference_price: float | None = None,
        client_order_id: str | None = None,
    ) -> ExecutionResult:
        qty_str = format_qty(quantity, self.qty_step)
        if float(qty_str) <= 0:
            return ExecutionResult(status="ERROR", raw={"error": f"quantity {quantity} below qty_step"})

        params = {
            "symbol": self.symbol,
            "side": Side(side).value,
            "type": "MARKET",
            "quantity": qty_str,
        }
        if client_order_id:
            params["newClientOrderId"] = client_order_id

        self.logger.info(
            "Submit %s %s qty=%s ref_price=%s", params["side"], self.symbol, qty_str, reference_price
        )
        try:
            res = self._request("POST", "/api/v3/order", params)
        except (requests.RequestException, ValueError) as exc:
            self.logger.error("Order failed: %s", exc)
            return ExecutionResult(status="ERROR", raw={"error": str(exc)})

        self.logger.info("Order placed: %s", res)
        status = str(res.get("status") or "UNKNOWN").upper()
        return ExecutionResult(
            status=status,
            executed_price=self._extract_price(res),
            executed_qty=_to_float(res.get("executedQty")) or 0.0,
            order_id=str(res["orderId"]) if res.get("orderId") is not None else None,
            raw=res,
        )

    @staticmethod
    def _extract_price(order_res: dict) -> float | None:
        qty = _to_float(order_res.get("executedQty"))
        quote = _to_float(order_res.get("cummulativeQuoteQty"))
        if qty and quote:
            return quote / qty
        fills = order_res.get("fills") or []
        if fills:
            return _to_float(fills[0].get("price"))
        return _to_float(order_res.get("price")) or None


def _to_float(value) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
