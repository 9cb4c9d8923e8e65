"""Telegram 成交通知（作为一个 journal sink 使用）。"""

from __future__ import annotations

from typing import Any

import requests

from shared.utils.logging import setup_logger


class TelegramNotifier:
    """只对 BUY/SELL 记录发送消息，其它 kind 忽略。

    发送失败只记日志，不抛异常。
    """

    API_URL = "https://api.telegram.org"

    def __init__(self, token: str, chat_id: str, *, timeout: float = 5.0, session: requests.Session | None = None):
        self.token = token
        self.chat_id = chat_id
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = setup_logger("notify-telegram")

    def record(self, kind: str, payload: dict[str, Any]) -> None:
        text = format_trade_message(kind, payload)
        if text is None:
            return
        self.send(text)

    def send(self, text: str) -> bool:
        url = f"{self.API_URL}/bot{self.token}/sendMessage"
        try:
            resp = self.session.post(
                url,
                json={"chat_id": self.chat_id, "text": text, "parse_mode": "HTML"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            self.logger.warning("Telegram notification failed: %s", exc)
            return False
        return True


def format_trade_message(kind: str, payload: dict[str, Any]) -> str | None:
    symbol = payload.get("symbol") or ""
    price = float(payload.get("price") or 0.0)
    if kind == "BUY":
        return f"BUY {symbol}\nprice: {price:.6f}\nqty: {payload.get('quantity')}\nreason: {payload.get('reason')}"
    if kind == "SELL":
        profit = float(payload.get("profit") or 0.0)
        roi = float(payload.get("roi_pct") or 0.0)
        return (
            f"SELL {symbol}\nprice: {price:.6f}\nqty: {payload.get('quantity')}\n"
            f"reason: {payload.get('reason')}\nprofit: {profit:.4f} ({roi:+.2f}%)"
        )
    return None
