from pathlib import Path

import pytest
from pydantic import ValidationError

from shared.config.config_loader import load_config
from shared.config.schema import MainConfig

SAMPLE_CFG = Path(__file__).resolve().parents[1] / "config" / "config.yml"


def test_load_config_expands_env_and_returns_mainconfig(monkeypatch: pytest.MonkeyPatch):
    assert SAMPLE_CFG.exists(), "示例配置缺失"

    monkeypatch.setenv("BINANCE_API_KEY", "dummy_key")
    monkeypatch.setenv("BINANCE_API_SECRET", "dummy_secret")

    cfg = load_config(SAMPLE_CFG, load_env=False)
    assert isinstance(cfg, MainConfig)
    assert cfg.symbol == "BTCUSDT"
    assert cfg.interval == "15m"
    assert cfg.mode == "paper"
    assert cfg.exchange.api_key == "dummy_key"
    assert cfg.exchange.allow_live is False
    assert cfg.feed.window_size == 100
    assert cfg.strategy.type == "volume_trend"
    # 扁平写法被挪进 params
    assert cfg.strategy.params["fast_period"] == 9
    assert cfg.strategy.params["trailing_stop_pct"] == 0.015


def test_load_config_missing_env_raises(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("BINANCE_API_KEY", raising=False)
    monkeypatch.delenv("BINANCE_API_SECRET", raising=False)

    with pytest.raises(ValueError) as exc:
        load_config(SAMPLE_CFG, load_env=False)
    assert "Missing environment variable" in str(exc.value)


def test_load_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config("does/not/exist.yml")


def test_load_config_rejects_unknown_keys(tmp_path):
    p = tmp_path / "cfg.yml"
    p.write_text("symbol: ethusdt\nfeed:\n  window_sise: 50\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_config(p, load_env=False)


def test_load_config_reads_dotenv_without_overriding(tmp_path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("KT_TEST_KEY", raising=False)
    monkeypatch.setenv("KT_TEST_SECRET", "from-env")
    (tmp_path / ".env").write_text("KT_TEST_KEY=from-file\nKT_TEST_SECRET=ignored\n", encoding="utf-8")
    p = tmp_path / "cfg.yml"
    p.write_text(
        "symbol: ethusdt\nmode: LIVE_TESTNET\nexchange:\n  api_key: ${KT_TEST_KEY}\n  api_secret: ${KT_TEST_SECRET}\n",
        encoding="utf-8",
    )
    try:
        cfg = load_config(p)
    finally:
        monkeypatch.delenv("KT_TEST_KEY", raising=False)

    assert cfg.symbol == "ETHUSDT"
    assert cfg.mode == "live-testnet"
    assert cfg.exchange.api_key == "from-file"
    assert cfg.exchange.api_secret == "from-env"


def test_telegram_enabled_requires_credentials():
    with pytest.raises(ValidationError):
        MainConfig.model_validate({"symbol": "BTCUSDT", "notify": {"telegram": {"enabled": True}}})


def test_strategy_nested_params_are_kept():
    cfg = MainConfig.model_validate({"symbol": "BTCUSDT", "strategy": {"params": {"quantity": 0.5}}})
    assert cfg.strategy.params == {"quantity": 0.5}
