"""
Tests for Settings loading, per-pair overrides and validation.
"""
from dataclasses import replace
from decimal import Decimal

import pytest

from src.config.config import Settings
from src.config.config_validator import ConfigValidator, ValidationSeverity, validate_and_log
from src.config.pair_config import load_pair_overrides

ENV_KEYS = [
    "DCA_PAIR", "DCA_BASE_ORDER_SIZE", "DCA_SAFETY_ORDER_SIZE", "DCA_TARGET_PROFIT_PCT",
    "DCA_MAX_SAFETY_TRADES", "DCA_MAX_ACTIVE_SAFETY_TRADES", "DCA_PRICE_DEVIATION_PCT",
    "DCA_SAFETY_VOLUME_SCALE", "DCA_SAFETY_STEP_SCALE", "DCA_PAPER_TRADING",
    "BINANCE_API_KEY", "BINANCE_API_SECRET", "DCA_STRATEGY_FILE", "DCA_STRATEGY",
    "DCA_START_ORDER_TYPE", "DCA_DEAL_START_CONDITION", "DCA_SCHEDULE_INTERVAL_SEC",
]


@pytest.fixture
def env(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("DCA_PAIR", "ethusdt")
    monkeypatch.setenv("DCA_BASE_ORDER_SIZE", "25.5")
    monkeypatch.setenv("DCA_SAFETY_ORDER_SIZE", "50")
    monkeypatch.setenv("DCA_MAX_SAFETY_TRADES", "4")
    monkeypatch.setenv("DCA_PRICE_DEVIATION_PCT", "1.5")
    monkeypatch.setenv("DCA_SAFETY_STEP_SCALE", "1.1")
    monkeypatch.setenv("BINANCE_API_KEY", "key")
    monkeypatch.setenv("BINANCE_API_SECRET", "secret")
    monkeypatch.setenv("DCA_STRATEGY_FILE", str(tmp_path / "missing.yaml"))
    return monkeypatch


class TestSettings:
    def test_load_from_env(self, env):
        cfg = Settings.load()
        assert cfg.pair == "ETHUSDT"
        assert cfg.base_order_size == Decimal("25.5")
        assert cfg.max_safety_trades == 4
        assert cfg.max_active_safety_trades == 0
        assert cfg.paper_trading is True
        assert cfg.schedule_interval_sec == 60.0

    def test_strategy_snapshot(self, env):
        strategy = Settings.load().strategy()
        assert strategy.pair == "ETHUSDT"
        assert strategy.price_deviation_percentage == Decimal("1.5")
        assert strategy.safety_order_step_scale == Decimal("1.1")
        assert strategy.strategy == "LONG"

    def test_yaml_overrides(self, env, tmp_path):
        path = tmp_path / "strategy.yaml"
        path.write_text("ETHUSDT:\n  target_profit_percentage: 2.5\n  max_safety_trades_count: 7\n  pair: XRPUSDT\n")
        env.setenv("DCA_STRATEGY_FILE", str(path))

        strategy = Settings.load().strategy()
        assert strategy.target_profit_percentage == Decimal("2.5")
        assert strategy.max_safety_trades_count == 7
        assert strategy.pair == "ETHUSDT"

    def test_dump_masks_secrets(self, env):
        dumped = Settings.load().dump()
        assert dumped["api_key"] == "***"
        assert dumped["api_secret"] == "***"


class TestPairOverrides:
    def test_missing_file(self, tmp_path):
        assert load_pair_overrides(str(tmp_path / "nope.yaml")) == {}

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("BTCUSDT: [unclosed\n")
        assert load_pair_overrides(str(path)) == {}

    def test_non_mapping_entries_skipped(self, tmp_path):
        path = tmp_path / "strategy.yaml"
        path.write_text("btcusdt:\n  base_order_size: 20\nETHUSDT: 5\n")
        assert load_pair_overrides(str(path)) == {"BTCUSDT": {"base_order_size": 20}}


class TestConfigValidator:
    @pytest.fixture
    def cfg(self, env):
        return Settings.load()

    def test_valid_config(self, cfg):
        result = ConfigValidator().validate(cfg)
        assert result.valid
        assert not result.has_errors()

    def test_missing_credentials(self, cfg):
        result = ConfigValidator().validate(replace(cfg, api_key=None))
        assert not result.valid
        assert any(i.field == "api_key" for i in result.get_errors())

    @pytest.mark.parametrize("field_name,value", [
        ("base_order_size", Decimal("0")),
        ("target_profit_pct", Decimal("100")),
        ("price_deviation_pct", Decimal("0")),
        ("safety_step_scale", Decimal("0")),
        ("max_active_safety_trades", -1),
        ("max_safety_trades", -1),
    ])
    def test_out_of_range(self, cfg, field_name, value):
        result = ConfigValidator().validate(replace(cfg, **{field_name: value}))
        assert any(i.field == field_name for i in result.get_errors())

    @pytest.mark.parametrize("field_name,value", [
        ("strategy_name", "SHORT"),
        ("start_order_type", "MARKET"),
        ("deal_start_condition", "RSI"),
    ])
    def test_unsupported_variants(self, cfg, field_name, value):
        result = ConfigValidator().validate(replace(cfg, **{field_name: value}))
        assert any(i.field == field_name for i in result.get_errors())

    def test_live_trading_warns(self, cfg):
        result = ConfigValidator().validate(replace(cfg, paper_trading=False))
        assert result.valid
        assert any(i.field == "paper_trading" for i in result.get_warnings())

    def test_ladder_past_full_deviation_warns(self, cfg):
        result = ConfigValidator().validate(
            replace(cfg, price_deviation_pct=Decimal("30"), safety_step_scale=Decimal("1"), max_safety_trades=4)
        )
        warnings = [i for i in result.issues if i.severity == ValidationSeverity.WARNING]
        assert any(i.field == "max_safety_trades" for i in warnings)

    def test_validate_and_log(self, cfg, caplog):
        assert validate_and_log(replace(cfg, api_secret="")) is False
