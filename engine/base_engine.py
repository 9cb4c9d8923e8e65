"""引擎基类。

引擎只负责装配与驱动：行情 → 窗口 → 持仓状态机 → 执行 / 日志，
具体规则都在各组件里。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class EngineResult:
    """引擎运行结果（统一出口）。"""

    summary: dict[str, Any]
    artifacts: dict[str, Any] | None = None


class BaseEngine(ABC):
    """引擎抽象基类。"""

    @abstractmethod
    def run(self) -> EngineResult:
        raise NotImplementedError

    @abstractmethod
    def status(self) -> dict[str, Any]:
        raise NotImplementedError
