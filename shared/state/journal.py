"""交易日志端口（JournalPort）与 SQLite 实现。

设计
----
- `record(kind, payload)`：追加一条结构化记录（BUY/SELL/status）。
- SQLite，append-only：`records` 保存原始事件；`trades` 保存买卖配对的往返交易。
- 调用方负责吞掉异常（日志失败绝不影响交易决策）。
"""

from __future__ import annotations

import json
import sqlite3
import threading
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Protocol

from shared.utils.logging import setup_logger


class JournalPort(Protocol):
    def record(self, kind: str, payload: dict[str, Any]) -> None:
        """追加一条记录；失败可以抛异常，由调用方记录日志。"""


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _json_dumps(obj: Any) -> str:
    if is_dataclass(obj):
        obj = asdict(obj)  # type: ignore
    return json.dumps(obj, ensure_ascii=False, default=str, allow_nan=False)


class FanoutJournal:
    """把同一条记录转发给多个 sink，单个 sink 失败不影响其它 sink。"""

    def __init__(self, sinks: Iterable[JournalPort]):
        self.sinks = list(sinks)
        self.logger = setup_logger("journal")

    def record(self, kind: str, payload: dict[str, Any]) -> None:
        for sink in self.sinks:
            try:
                sink.record(kind, payload)
            except Exception as exc:
                self.logger.warning("Journal sink %s failed for %s: %s", type(sink).__name__, kind, exc)


class SqliteJournal:
    """SQLite 交易日志。

    连接会被 worker 线程使用（下单在线程里执行），所以关闭同线程检查并用锁串行化。
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.path, isolation_level=None, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS records (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              kind TEXT NOT NULL,
              ts TEXT NOT NULL,
              payload_json TEXT NOT NULL
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS trades (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              symbol TEXT,
              quantity REAL NOT NULL,
              buy_time TEXT NOT NULL,
              buy_price REAL NOT NULL,
              buy_reason TEXT,
              sell_time TEXT DEFAULT NULL,
              sell_price REAL DEFAULT NULL,
              sell_reason TEXT DEFAULT NULL,
              result REAL DEFAULT NULL
            );
            """
        )

    def record(self, kind: str, payload: dict[str, Any]) -> None:
        ts = str(payload.get("ts") or _utc_now_iso())
        with self._lock:
            self._conn.execute(
                "INSERT INTO records (kind, ts, payload_json) VALUES (?, ?, ?);",
                (str(kind), ts, _json_dumps(payload)),
            )
            if kind == "BUY":
                self._open_trade(ts, payload)
            elif kind == "SELL":
                self._close_trade(ts, payload)

    def _open_trade(self, ts: str, payload: dict[str, Any]) -> None:
        self._conn.execute(
            """
            INSERT INTO trades (symbol, quantity, buy_time, buy_price, buy_reason)
            VALUES (?, ?, ?, ?, ?);
            """,
            (
                payload.get("symbol"),
                float(payload.get("quantity") or 0.0),
                ts,
                float(payload["price"]),
                payload.get("reason"),
            ),
        )

    def _close_trade(self, ts: str, payload: dict[str, Any]) -> None:
        row = self._conn.execute(
            "SELECT id FROM trades WHERE sell_time IS NULL ORDER BY id DESC LIMIT 1;"
        ).fetchone()
        if row is None:
            return
        self._conn.execute(
            """
            UPDATE trades SET sell_time = ?, sell_price = ?, sell_reason = ?, result = ?
            WHERE id = ?;
            """,
            (
                ts,
                float(payload["price"]),
                payload.get("reason"),
                float(payload["profit"]) if payload.get("profit") is not None else None,
                int(row[0]),
            ),
        )

    def iter_records(self, kind: str | None = None) -> list[dict[str, Any]]:
        sql = "SELECT id, kind, ts, payload_json FROM records"
        args: tuple[Any, ...] = ()
        if kind is not None:
            sql += " WHERE kind = ?"
            args = (kind,)
        sql += " ORDER BY id ASC;"
        with self._lock:
            rows = self._conn.execute(sql, args).fetchall()
        return [{"id": r[0], "kind": r[1], "ts": r[2], "payload": json.loads(r[3])} for r in rows]

    def load_trades(self) -> list[dict[str, Any]]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM trades ORDER BY id ASC;")
            cols = [c[0] for c in cur.description]
            return [{cols[i]: row[i] for i in range(len(cols))} for row in cur.fetchall()]
