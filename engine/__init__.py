"""交易引擎层（engine）。

`TradingEngine.run() -> EngineResult` 装配并驱动行情 feed 与持仓状态机；
命令行入口在仓库根目录 `main.py`。
"""
