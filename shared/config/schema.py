"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为强类型的边界协议；
- 启动阶段尽早失败，避免 typo/类型错误在实盘里隐蔽爆炸；
- 业务代码只读属性，不做 `cfg.get(...)`。
"""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ExchangeConfig(BaseModel):
    """交易所配置。"""
    name: str = "binance"
    base_url: str = "https://api.binance.com"
    ws_url: str = "wss://stream.binance.com:9443/ws"

    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    allow_live: bool = False

    qty_step: Optional[float] = None
    recv_window: int = 10000
    timeout: float = 10.0

    model_config = ConfigDict(extra="forbid")


class FeedConfig(BaseModel):
    """行情 feed 配置（秒）。"""
    window_size: int = Field(default=100, gt=0)
    backfill: bool = True
    reconnect_delay: float = Field(default=5.0, ge=0)
    watchdog_timeout: float = Field(default=60.0, gt=0)
    watchdog_interval: float = Field(default=15.0, gt=0)
    price_poll_secs: float = Field(default=5.0, ge=0)
    model_config = ConfigDict(extra="forbid")


class StrategyConfig(BaseModel):
    """策略配置（type + params）。

    config_loader 允许把参数直接写在 `strategy:` 下，这里统一挪进 `params`，
    schema 仍保持严格（forbid extra keys）。
    """
    type: Literal["volume_trend"] = "volume_trend"
    params: Dict[str, Any] = Field(default_factory=dict)
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _pack_flat_params(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if "params" in data and isinstance(data.get("params"), dict) and set(data.keys()) <= {"type", "params"}:
            return data
        strat_type = data.get("type", "volume_trend")
        params = {k: v for k, v in data.items() if k not in {"type", "params"}}
        existing = data.get("params")
        if isinstance(existing, dict):
            params = {**params, **existing}
        return {"type": strat_type, "params": params}


class JournalConfig(BaseModel):
    """本地交易日志（SQLite）配置。"""
    enabled: bool = True
    path: str = "dataset/state/journal.sqlite3"
    model_config = ConfigDict(extra="forbid")


class TelegramConfig(BaseModel):
    """Telegram 成交通知。"""
    enabled: bool = False
    token: Optional[str] = None
    chat_id: Optional[str] = None
    timeout: float = 5.0
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _require_credentials(self) -> "TelegramConfig":
        if self.enabled and (not self.token or not self.chat_id):
            raise ValueError("notify.telegram.enabled requires token and chat_id")
        return self


class NotifyConfig(BaseModel):
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    model_config = ConfigDict(extra="forbid")


class LoggingConfig(BaseModel):
    """日志配置；level 为空时取环境变量 LOG_LEVEL。"""
    level: Optional[str] = None
    file: Optional[str] = "logs/operations.log"
    model_config = ConfigDict(extra="forbid")


class MainConfig(BaseModel):
    """应用总配置。"""
    symbol: str
    interval: str = "15m"
    mode: Literal["dry-run", "paper", "live", "live-testnet", "live-mainnet"] = "paper"

    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    feed: FeedConfig = Field(default_factory=FeedConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    journal: JournalConfig = Field(default_factory=JournalConfig)
    notify: NotifyConfig = Field(default_factory=NotifyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol must not be empty")
        return v

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.replace("_", "-").lower()
        return v
