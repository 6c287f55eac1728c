"""Unit tests for trading config and settings validation"""

import logging

import pytest

from pool_sniper.config import Settings
from pool_sniper.config.trading_config import (
    TradingConfig,
    load_trading_config,
    save_trading_config,
)
from pool_sniper.core.models import TakeProfitStage
from pool_sniper.exceptions import ConfigurationException
from pool_sniper.utils.logging import ColoredFormatter, setup_logging


class TestTradingConfig:
    def test_defaults_are_valid(self):
        assert TradingConfig().validate() == []

    def test_default_ladder(self):
        stages = TradingConfig().exits.stages
        assert [(s.multiplier, s.sell_fraction) for s in stages] == [(2.0, 0.25), (3.0, 0.5)]

    def test_single_shot(self):
        config = TradingConfig.single_shot(2.0)
        assert config.exits.stages == [TakeProfitStage(multiplier=2.0, sell_fraction=1.0, name="target")]
        assert config.validate() == []

    def test_from_dict_builds_stages(self):
        config = TradingConfig.from_dict({
            "exits": {"stages": [{"multiplier": 4.0, "sell_fraction": 1.0}], "timeout_sec": 0},
            "execution": {"buy_usd": 10},
        })
        assert config.exits.stages[0].label == "4x"
        assert config.exits.timeout_sec == 0
        assert config.execution.buy_usd == 10

    def test_validation_collects_errors(self):
        config = TradingConfig.from_dict({
            "exits": {"stages": [{"multiplier": 0.5, "sell_fraction": 1.5}], "stop_loss_fraction": 1.2},
            "discovery": {"mode": "carrier-pigeon"},
        })
        errors = config.validate()
        assert len(errors) == 4
        assert any("discovery mode" in e for e in errors)

    def test_duplicate_stage_names_rejected(self):
        config = TradingConfig()
        config.exits.stages = [
            TakeProfitStage(2.0, 0.5, name="tp"),
            TakeProfitStage(3.0, 0.5, name="tp"),
        ]
        assert any("unique" in e for e in config.validate())

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("STOP_LOSS_PCT", "35")
        monkeypatch.setenv("BUY_USD", "12.5")
        config = TradingConfig().apply_env_overrides()
        assert config.exits.stop_loss_fraction == pytest.approx(0.35)
        assert config.execution.buy_usd == 12.5

    def test_yaml_roundtrip(self, tmp_path):
        path = tmp_path / "trading.yaml"
        save_trading_config(TradingConfig.single_shot(3.0), str(path))
        loaded = load_trading_config(str(path))
        assert loaded.exits.stages[0].multiplier == 3.0

    def test_missing_file_uses_defaults(self, tmp_path):
        assert load_trading_config(str(tmp_path / "nope.yaml")).validate() == []


class TestSettings:
    def test_live_mode_requires_private_key(self):
        settings = Settings(PAPER_TRADING_MODE=False, BIRDEYE_API_KEY="key")
        with pytest.raises(ConfigurationException) as exc:
            settings.validate()
        assert "SOLANA_PRIVATE_KEY" in str(exc.value)

    def test_paper_mode_without_key_is_fine(self):
        Settings(PAPER_TRADING_MODE=True, BIRDEYE_API_KEY="key").validate()

    def test_missing_birdeye_key(self):
        with pytest.raises(ConfigurationException):
            Settings(BIRDEYE_API_KEY="").validate()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("RPC_URL", "https://rpc.example.com")
        monkeypatch.delenv("WSS_URL", raising=False)
        monkeypatch.delenv("TRADING_CONFIG_PATH", raising=False)
        monkeypatch.setenv("PAPER_TRADING_MODE", "false")
        settings = Settings.from_env()
        assert settings.WSS_URL == "wss://rpc.example.com"
        assert settings.PAPER_TRADING_MODE is False


class TestLogging:
    def test_setup_creates_log_file(self, tmp_path):
        root = logging.getLogger()
        saved = (root.level, list(root.handlers))
        try:
            setup_logging(Settings(LOG_DIR=str(tmp_path / "logs"), LOG_LEVEL="DEBUG"))
            logging.getLogger("pool_sniper.test").info("NEW POOL abc")
            for handler in root.handlers:
                handler.flush()
            assert "NEW POOL abc" in (tmp_path / "logs" / "bot.log").read_text()
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = saved[1]
            root.setLevel(saved[0])

    def test_keyword_colours(self):
        formatter = ColoredFormatter()
        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "REJECT %s", ("m",), None)
        assert formatter.color_for(record) == ColoredFormatter.GREY
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "BUY %s", ("m",), None)
        assert formatter.format(record).startswith(ColoredFormatter.GREEN)
