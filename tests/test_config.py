"""
Tests for environment loading and the startup validator.
"""

from decimal import Decimal

import pytest

from ethgrid.config.config import Settings, env_bool
from ethgrid.config.config_validator import ConfigValidator, ValidationSeverity, validate_and_log
from ethgrid.core.errors import InvalidConfiguration


GRID_VARS = [
    "GRID_LEVELS", "GRID_SPACING_PERCENT", "GRID_AMOUNT_PER_LEVEL", "GRID_BASE_PRICE",
    "GRID_PAPER_TRADING", "GRID_PAPER_RNG_SEED", "GRID_SR_METHOD", "HL_PRIVATE_KEY",
    "DUNE_API_KEY", "WEBHOOK_URL", "WEBHOOK_TYPE", "GRID_PRICE_CHECK_INTERVAL_SEC",
    "GRID_PAPER_INITIAL_USDC",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in GRID_VARS:
        monkeypatch.delenv(key, raising=False)


class TestEnvBool:
    @pytest.mark.parametrize("raw,expected", [("1", True), ("true", True), ("YES", True), ("0", False), ("off", False)])
    def test_values(self, monkeypatch, raw, expected):
        monkeypatch.setenv("X_FLAG", raw)
        assert env_bool("X_FLAG", not expected) is expected

    def test_default(self, monkeypatch):
        monkeypatch.delenv("X_FLAG", raising=False)
        assert env_bool("X_FLAG", True) is True


class TestSettingsLoad:
    def test_defaults(self):
        cfg = Settings.load()
        assert cfg.grid_levels == 10
        assert cfg.grid_spacing_pct == Decimal("2")
        assert cfg.amount_per_level == Decimal("100")
        assert cfg.base_price == 0
        assert cfg.paper_trading is True
        assert cfg.paper_rng_seed is None
        assert cfg.pair == "ETH/USDC"
        assert cfg.sr_method == "simple"

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("GRID_LEVELS", "20")
        monkeypatch.setenv("GRID_SPACING_PERCENT", "1.25")
        monkeypatch.setenv("GRID_BASE_PRICE", "3050")
        monkeypatch.setenv("GRID_PAPER_RNG_SEED", "42")
        monkeypatch.setenv("GRID_SR_METHOD", "Percentile")
        cfg = Settings.load()
        assert cfg.grid_levels == 20
        assert cfg.grid_spacing_pct == Decimal("1.25")
        assert cfg.base_price == Decimal("3050")
        assert cfg.paper_rng_seed == 42
        assert cfg.sr_method == "percentile"

    @pytest.mark.parametrize("key,value", [
        ("GRID_LEVELS", "ten"),
        ("GRID_LEVELS", "1"),
        ("GRID_SPACING_PERCENT", "0"),
        ("GRID_SPACING_PERCENT", "NaN"),
        ("GRID_AMOUNT_PER_LEVEL", "-5"),
        ("GRID_BASE_PRICE", "-1"),
        ("GRID_SR_METHOD", "fibonacci"),
        ("WEBHOOK_TYPE", "teams"),
    ])
    def test_invalid_values(self, monkeypatch, key, value):
        monkeypatch.setenv(key, value)
        with pytest.raises(InvalidConfiguration):
            Settings.load()

    def test_live_needs_private_key(self, monkeypatch):
        monkeypatch.setenv("GRID_PAPER_TRADING", "false")
        with pytest.raises(InvalidConfiguration):
            Settings.load()

    def test_dump_redacts_secrets(self, monkeypatch):
        monkeypatch.setenv("DUNE_API_KEY", "secret-key")
        dumped = Settings.load().dump()
        assert dumped["dune_api_key"] == "***"
        assert dumped["grid_spacing_pct"] == "2"
        assert Settings.load().dump(redact=False)["dune_api_key"] == "secret-key"


class TestConfigValidator:
    def test_defaults_are_valid_with_warnings(self):
        result = ConfigValidator().validate(Settings.load())
        assert result.valid
        assert any(i.field == "dune_api_key" for i in result.get_warnings())

    def test_out_of_range_is_error(self, monkeypatch):
        monkeypatch.setenv("GRID_LEVELS", "500")
        result = ConfigValidator().validate(Settings.load())
        assert not result.valid
        assert result.get_errors()[0].field == "grid_levels"

    def test_underfunded_paper_wallet_warns(self, monkeypatch):
        monkeypatch.setenv("GRID_PAPER_INITIAL_USDC", "200")
        result = ConfigValidator().validate(Settings.load())
        assert any(i.field == "paper_initial_quote" for i in result.get_warnings())

    def test_odd_level_count_warns(self, monkeypatch):
        monkeypatch.setenv("GRID_LEVELS", "9")
        result = ConfigValidator().validate(Settings.load())
        assert any(i.field == "grid_levels" and i.severity is ValidationSeverity.WARNING for i in result.issues)

    def test_custom_validator(self):
        validator = ConfigValidator()
        validator.register_validator(lambda cfg: [])
        assert validator.validate(Settings.load()).valid

    def test_validate_and_log(self, monkeypatch, caplog):
        monkeypatch.setenv("GRID_PRICE_CHECK_INTERVAL_SEC", "5000")
        assert validate_and_log(Settings.load()) is False
        assert "price_check_interval" in caplog.text
