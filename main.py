"""klinetrader 统一命令行入口。

子命令：

- `runner`：实时/纸面/干跑主循环。连接行情，驱动持仓状态机。
- `check-config`：加载并校验配置，打印生效后的配置（密钥打码）。
- `test`：运行 pytest。
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from typing import Any

from engine.trading_engine import TradingEngine
from shared.config.config_loader import load_config


@dataclass
class CliArgs:
    """命令行参数结构。

    config: 配置文件路径
    task: 要运行的任务类型 (runner/check-config/test)
    """
    config: str
    task: str
    max_candles: int | None = None  # 仅用于 debug，收到多少根收盘 K 线后停止
    include_live_tests: bool = False


def build_parser() -> argparse.ArgumentParser:
    """构建 CLI 参数解析器。"""
    parser = argparse.ArgumentParser(prog="klinetrader", description="单品种 K 线量价趋势机器人")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument(
            "--config",
            default=default,
            help="配置文件路径 (默认: config/config.yml)",
        )

    # 允许 `python main.py --config ... runner`（全局）与 `python main.py runner --config ...`（子命令）
    _add_config_arg(parser, default="config/config.yml")

    sub = parser.add_subparsers(dest="task")

    p_runner = sub.add_parser("runner", help="实盘/纸面/干跑主循环")
    _add_config_arg(p_runner, default=argparse.SUPPRESS)
    p_runner.add_argument(
        "--max-candles",
        type=int,
        default=None,
        help="处理多少根收盘 K 线后退出（用于 dry-run/调试）",
    )

    p_check = sub.add_parser("check-config", help="校验并打印配置")
    _add_config_arg(p_check, default=argparse.SUPPRESS)

    p_test = sub.add_parser("test", help="运行 pytest（默认跳过 live）")
    _add_config_arg(p_test, default=argparse.SUPPRESS)
    p_test.add_argument(
        "--include-live",
        action="store_true",
        help="包含 @pytest.mark.live 测试（可能联网）",
    )

    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    """解析命令行参数；不带子命令时默认 runner。"""
    parser = build_parser()
    ns = parser.parse_args(argv)
    task = ns.task or "runner"
    config = getattr(ns, "config", "config/config.yml")
    return CliArgs(
        config=str(config),
        task=task,
        max_candles=getattr(ns, "max_candles", None),
        include_live_tests=bool(getattr(ns, "include_live", False)),
    )


def _redact(cfg_dict: dict[str, Any]) -> dict[str, Any]:
    exchange = cfg_dict.get("exchange") or {}
    for key in ("api_key", "api_secret"):
        if exchange.get(key):
            exchange[key] = "***"
    telegram = (cfg_dict.get("notify") or {}).get("telegram") or {}
    if telegram.get("token"):
        telegram["token"] = "***"
    return cfg_dict


def main(argv: list[str] | None = None) -> Any:
    """程序主入口，返回对应子命令的结果（通常为 summary dict）。"""
    args = parse_args(argv)

    if args.task == "runner":
        return TradingEngine(cfg_path=args.config, max_candles=args.max_candles).run().summary

    if args.task == "check-config":
        cfg = load_config(args.config)
        dumped = _redact(cfg.model_dump())
        print(json.dumps(dumped, indent=2, ensure_ascii=False))
        return dumped

    if args.task == "test":
        import pytest

        pytest_args = ["-q"]
        if not args.include_live_tests:
            pytest_args += ["-m", "not live"]
        return pytest.main(pytest_args)

    raise ValueError(f"Unknown task: {args.task}")


if __name__ == "__main__":
    main()
