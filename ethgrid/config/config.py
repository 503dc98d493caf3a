"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv

from ethgrid.core.errors import InvalidConfiguration
from ethgrid.core.utils import to_decimal
from ethgrid.infra.logging_cfg import LOGGER_NAME

load_dotenv()

SECRET_FIELDS = {"dune_api_key", "private_key", "webhook_url", "metrics_token"}


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None or val == "":
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise InvalidConfiguration(f"{key}={raw!r} is not an integer") from exc


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise InvalidConfiguration(f"{key}={raw!r} is not a number") from exc


def _decimal_env(key: str, default: str) -> Decimal:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return Decimal(default)
    try:
        value = to_decimal(raw.strip())
    except ValueError as exc:
        raise InvalidConfiguration(f"{key}={raw!r} is not a number") from exc
    if not value.is_finite():
        raise InvalidConfiguration(f"{key}={raw!r} is not finite")
    return value


@dataclass(frozen=True)
class Settings:
    # Grid
    grid_levels: int
    grid_spacing_pct: Decimal
    amount_per_level: Decimal
    base_price: Decimal  # 0 = use the S/R midpoint
    slippage_tolerance_pct: Decimal
    # Loop timing (seconds unless noted)
    price_check_interval: float
    status_report_interval_min: float
    post_trade_cooldown: float
    # Price feed
    coingecko_url: str
    price_min: Decimal
    price_max: Decimal
    # Paper trading
    paper_trading: bool
    paper_initial_eth: Decimal
    paper_initial_quote: Decimal
    paper_slippage_pct: Decimal
    paper_simulate_gas: bool
    paper_rng_seed: Optional[int]
    gas_price_gwei: Decimal
    gas_multiplier: Decimal
    gas_limit: int
    # Support / resistance
    dune_api_key: Optional[str]
    dune_base_url: str
    sr_method: str
    sr_lookback_days: int
    sr_refresh_hours: float
    sr_change_threshold_pct: Decimal
    sr_check_interval: float
    # Live execution
    base_url: str
    spot_pair: str
    base_token: str
    quote_symbol: str
    private_key: Optional[str]
    account_address: Optional[str]
    # Runtime
    state_dir: str
    http_timeout: float
    log_file: Optional[str]
    log_level: str
    metrics_port: int
    metrics_token: Optional[str]
    webhook_url: Optional[str]
    webhook_type: str
    bot_name: str

    @property
    def pair(self) -> str:
        return f"ETH/{self.quote_symbol}"

    def dump(self, redact: bool = True) -> dict:
        """Settings as a dict for logging; secrets are masked unless ``redact`` is False."""
        data = {}
        for key, value in self.__dict__.items():
            if redact and key in SECRET_FIELDS and value:
                value = "***"
            data[key] = str(value) if isinstance(value, Decimal) else value
        return data

    @classmethod
    def load(cls) -> "Settings":
        seed_raw = os.getenv("GRID_PAPER_RNG_SEED")
        cfg = cls(
            grid_levels=_int_env("GRID_LEVELS", 10),
            grid_spacing_pct=_decimal_env("GRID_SPACING_PERCENT", "2"),
            amount_per_level=_decimal_env("GRID_AMOUNT_PER_LEVEL", "100"),
            base_price=_decimal_env("GRID_BASE_PRICE", "0"),
            slippage_tolerance_pct=_decimal_env("GRID_SLIPPAGE_TOLERANCE", "1.5"),
            price_check_interval=_float_env("GRID_PRICE_CHECK_INTERVAL_SEC", 30.0),
            status_report_interval_min=_float_env("GRID_STATUS_REPORT_INTERVAL_MIN", 60.0),
            post_trade_cooldown=_float_env("GRID_POST_TRADE_COOLDOWN_SEC", 60.0),
            coingecko_url=os.getenv("COINGECKO_URL", "https://api.coingecko.com/api/v3"),
            price_min=_decimal_env("GRID_PRICE_MIN", "100"),
            price_max=_decimal_env("GRID_PRICE_MAX", "100000"),
            paper_trading=env_bool("GRID_PAPER_TRADING", True),
            paper_initial_eth=_decimal_env("GRID_PAPER_INITIAL_ETH", "1.0"),
            paper_initial_quote=_decimal_env("GRID_PAPER_INITIAL_USDC", "1000"),
            paper_slippage_pct=_decimal_env("GRID_PAPER_SLIPPAGE_PERCENT", "0.5"),
            paper_simulate_gas=env_bool("GRID_PAPER_SIMULATE_GAS", True),
            paper_rng_seed=_int_env("GRID_PAPER_RNG_SEED", 0) if seed_raw else None,
            gas_price_gwei=_decimal_env("GRID_GAS_PRICE_GWEI", "20"),
            gas_multiplier=_decimal_env("GRID_GAS_MULTIPLIER", "1.2"),
            gas_limit=_int_env("GRID_GAS_LIMIT", 250000),
            dune_api_key=os.getenv("DUNE_API_KEY") or None,
            dune_base_url=os.getenv("DUNE_BASE_URL", "https://api.dune.com/api/v1"),
            sr_method=os.getenv("GRID_SR_METHOD", "simple").strip().lower(),
            sr_lookback_days=_int_env("GRID_SR_LOOKBACK_DAYS", 14),
            sr_refresh_hours=_float_env("GRID_SR_REFRESH_HOURS", 48.0),
            sr_change_threshold_pct=_decimal_env("GRID_SR_CHANGE_THRESHOLD", "5"),
            sr_check_interval=_float_env("GRID_SR_CHECK_INTERVAL_SEC", 3600.0),
            base_url=os.getenv("HL_BASE_URL", "https://api.hyperliquid.xyz"),
            spot_pair=os.getenv("HL_SPOT_PAIR", "UETH/USDC"),
            base_token=os.getenv("HL_BASE_TOKEN", "UETH"),
            quote_symbol=os.getenv("GRID_QUOTE_SYMBOL", "USDC"),
            private_key=os.getenv("HL_PRIVATE_KEY") or None,
            account_address=os.getenv("HL_ACCOUNT_ADDRESS") or None,
            state_dir=os.getenv("GRID_STATE_DIR", "state"),
            http_timeout=_float_env("GRID_HTTP_TIMEOUT", 10.0),
            log_file=os.getenv("GRID_LOG_FILE", "ethgrid.log") or None,
            log_level=os.getenv("GRID_LOG_LEVEL", "INFO").upper(),
            metrics_port=_int_env("GRID_METRICS_PORT", 9095),
            metrics_token=os.getenv("GRID_METRICS_TOKEN") or None,
            webhook_url=os.getenv("WEBHOOK_URL") or None,
            webhook_type=os.getenv("WEBHOOK_TYPE", "auto").strip().lower(),
            bot_name=os.getenv("GRID_BOT_NAME", "EthGridTrader"),
        )
        cfg._validate()
        _log_loaded(cfg)
        return cfg

    def resolve_signer(self):
        from eth_account import Account

        if not self.private_key:
            raise InvalidConfiguration("Missing HL_PRIVATE_KEY for live trading")
        return Account.from_key(self.private_key)

    def resolve_account(self) -> str:
        if self.account_address:
            return self.account_address
        return self.resolve_signer().address

    def _validate(self) -> None:
        if self.grid_levels < 2:
            raise InvalidConfiguration("GRID_LEVELS must be >= 2")
        if self.grid_spacing_pct <= 0:
            raise InvalidConfiguration("GRID_SPACING_PERCENT must be > 0")
        if self.amount_per_level <= 0:
            raise InvalidConfiguration("GRID_AMOUNT_PER_LEVEL must be > 0")
        if self.base_price < 0:
            raise InvalidConfiguration("GRID_BASE_PRICE must be >= 0 (0 = use S/R midpoint)")
        if not 0 <= self.slippage_tolerance_pct < 100:
            raise InvalidConfiguration("GRID_SLIPPAGE_TOLERANCE must be in [0, 100)")
        if self.price_check_interval <= 0 or self.sr_check_interval <= 0:
            raise InvalidConfiguration("Loop intervals must be > 0")
        if self.status_report_interval_min <= 0:
            raise InvalidConfiguration("GRID_STATUS_REPORT_INTERVAL_MIN must be > 0")
        if self.post_trade_cooldown < 0:
            raise InvalidConfiguration("GRID_POST_TRADE_COOLDOWN_SEC must be >= 0")
        if self.price_min <= 0 or self.price_min >= self.price_max:
            raise InvalidConfiguration("GRID_PRICE_MIN must be > 0 and < GRID_PRICE_MAX")
        if self.paper_initial_eth < 0 or self.paper_initial_quote < 0:
            raise InvalidConfiguration("Paper balances must be >= 0")
        if not 0 <= self.paper_slippage_pct < 100:
            raise InvalidConfiguration("GRID_PAPER_SLIPPAGE_PERCENT must be in [0, 100)")
        if self.gas_price_gwei < 0 or self.gas_multiplier <= 0 or self.gas_limit <= 0:
            raise InvalidConfiguration("Gas settings must be positive")
        if self.sr_method not in ("simple", "percentile"):
            raise InvalidConfiguration("GRID_SR_METHOD must be 'simple' or 'percentile'")
        if self.sr_lookback_days <= 0 or self.sr_refresh_hours <= 0:
            raise InvalidConfiguration("S/R lookback and refresh must be > 0")
        if self.sr_change_threshold_pct <= 0:
            raise InvalidConfiguration("GRID_SR_CHANGE_THRESHOLD must be > 0")
        if self.webhook_type not in ("auto", "slack", "discord", "generic"):
            raise InvalidConfiguration("WEBHOOK_TYPE must be auto, slack, discord or generic")
        if not self.paper_trading and not self.private_key:
            raise InvalidConfiguration("Live trading requires HL_PRIVATE_KEY (or set GRID_PAPER_TRADING=true)")


def _log_loaded(cfg: Settings) -> None:
    """Log the effective grid settings once so overrides are obvious."""
    logger = logging.getLogger(LOGGER_NAME)
    payload = {
        "event": "config_loaded",
        "mode": "paper" if cfg.paper_trading else "live",
        "levels": cfg.grid_levels,
        "spacing_pct": str(cfg.grid_spacing_pct),
        "amount_per_level": str(cfg.amount_per_level),
        "base_price": str(cfg.base_price),
        "sr_method": cfg.sr_method,
    }
    logger.info(json.dumps(payload))
