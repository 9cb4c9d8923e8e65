"""
轻量日志封装。

Notes
-----
`setup_logger` 会避免重复添加 handler，否则多次调用会出现重复日志。
日志级别默认取环境变量 `LOG_LEVEL`（未设置时为 INFO）。
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def resolve_level(level: int | str | None) -> int:
    """把 "debug" / "INFO" / 10 之类的写法统一成 int；None 时读 LOG_LEVEL。"""
    if isinstance(level, int):
        return level
    name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logger(
    name: str = "trading", level: int | str | None = None, log_file: str | Path | None = None
) -> logging.Logger:
    """
    创建或获取命名 logger。

    Parameters
    ----------
    name:
        Logger 名称。
    level:
        日志级别（int 或名称）；None 时读取 LOG_LEVEL。
    log_file:
        可选的追加写入文件（例如 operations.log），同一路径只添加一次。

    Returns
    -------
    logging.Logger
        已配置的 logger。
    """
    logger = logging.getLogger(name)
    logger.setLevel(resolve_level(level))
    logger.propagate = False

    fmt = logging.Formatter(LOG_FORMAT)
    has_stream = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler) for h in logger.handlers
    )
    if not has_stream:
        ch = logging.StreamHandler()
        ch.setFormatter(fmt)
        logger.addHandler(ch)

    if log_file is not None:
        path = Path(log_file).resolve()
        has_file = any(
            isinstance(h, logging.FileHandler) and Path(h.baseFilename) == path for h in logger.handlers
        )
        if not has_file:
            path.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(path, encoding="utf-8")
            fh.setFormatter(fmt)
            logger.addHandler(fh)

    return logger
