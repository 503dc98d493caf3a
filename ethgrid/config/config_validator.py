"""
Startup configuration review.

Settings._validate() already rejects malformed values. This module adds the
softer layer: range checks with suggestions, cross-field requirements and
warnings for configurations that run but probably should not.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Tuple

from ethgrid.infra.logging_cfg import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)


class ValidationSeverity(Enum):
    ERROR = auto()    # Blocks startup
    WARNING = auto()  # Logged, startup continues


@dataclass
class ValidationIssue:
    field: str
    message: str
    severity: ValidationSeverity
    value: Any = None
    suggestion: Optional[str] = None


@dataclass
class ValidationResult:
    valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)

    def get_errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    def get_warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]


class ConfigValidator:
    """
    Checks:
    - Numeric values are within sane ranges
    - Cross-field requirements (live trading needs credentials)
    - Risky but valid configurations
    """

    # (min, max)
    NUMERIC_RANGES: Dict[str, Tuple[float, float]] = {
        "grid_levels": (2, 200),
        "grid_spacing_pct": (0.05, 50.0),
        "amount_per_level": (1.0, 1_000_000.0),
        "slippage_tolerance_pct": (0.0, 10.0),
        "price_check_interval": (1.0, 3600.0),
        "post_trade_cooldown": (0.0, 3600.0),
        "status_report_interval_min": (1.0, 10_080.0),
        "paper_slippage_pct": (0.0, 10.0),
        "sr_lookback_days": (1, 365),
        "sr_change_threshold_pct": (0.1, 100.0),
        "sr_check_interval": (60.0, 7 * 86_400.0),
        "http_timeout": (1.0, 120.0),
    }

    # (if_field_falsy, then_required, message)
    CONDITIONAL_REQUIREMENTS: List[Tuple[str, str, str]] = [
        ("paper_trading", "private_key", "Live trading requires HL_PRIVATE_KEY"),
    ]

    def __init__(self) -> None:
        self._custom_validators: List[Callable[[Any], List[ValidationIssue]]] = []

    def register_validator(self, validator: Callable[[Any], List[ValidationIssue]]) -> None:
        self._custom_validators.append(validator)

    def validate(self, cfg) -> ValidationResult:
        issues: List[ValidationIssue] = []
        issues.extend(self._validate_numeric_ranges(cfg))
        issues.extend(self._validate_conditional(cfg))
        issues.extend(self._check_risky_configs(cfg))
        for validator in self._custom_validators:
            issues.extend(validator(cfg) or [])
        has_errors = any(i.severity == ValidationSeverity.ERROR for i in issues)
        return ValidationResult(valid=not has_errors, issues=issues)

    def _validate_numeric_ranges(self, cfg) -> List[ValidationIssue]:
        issues = []
        for field_name, (min_val, max_val) in self.NUMERIC_RANGES.items():
            value = getattr(cfg, field_name, None)
            if value is None:
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"Required numeric field '{field_name}' is missing",
                    severity=ValidationSeverity.ERROR,
                ))
                continue
            num_value = float(value)
            if num_value < min_val:
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"'{field_name}' value {value} is below minimum {min_val}",
                    severity=ValidationSeverity.ERROR,
                    value=value,
                    suggestion=f"Set to at least {min_val}",
                ))
            elif num_value > max_val:
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"'{field_name}' value {value} is above maximum {max_val}",
                    severity=ValidationSeverity.ERROR,
                    value=value,
                    suggestion=f"Set to at most {max_val}",
                ))
        return issues

    def _validate_conditional(self, cfg) -> List[ValidationIssue]:
        issues = []
        for if_field, then_required, message in self.CONDITIONAL_REQUIREMENTS:
            if not getattr(cfg, if_field, False) and not getattr(cfg, then_required, None):
                issues.append(ValidationIssue(
                    field=then_required,
                    message=message,
                    severity=ValidationSeverity.ERROR,
                ))
        return issues

    def _check_risky_configs(self, cfg) -> List[ValidationIssue]:
        issues = []

        if not cfg.dune_api_key and cfg.base_price <= 0:
            issues.append(ValidationIssue(
                field="dune_api_key",
                message="No DUNE_API_KEY: grid will center on the current price (+/-10% fallback range)",
                severity=ValidationSeverity.WARNING,
                suggestion="Set DUNE_API_KEY or GRID_BASE_PRICE",
            ))

        if cfg.base_price > 0:
            issues.append(ValidationIssue(
                field="base_price",
                message=f"GRID_BASE_PRICE={cfg.base_price} pins the grid center; S/R midpoints are ignored",
                severity=ValidationSeverity.WARNING,
                value=cfg.base_price,
            ))

        if cfg.paper_trading:
            half = Decimal(cfg.grid_levels // 2)
            quote_needed = half * cfg.amount_per_level
            if quote_needed > cfg.paper_initial_quote:
                issues.append(ValidationIssue(
                    field="paper_initial_quote",
                    message=(
                        f"Paper quote balance {cfg.paper_initial_quote} cannot fund all {half} buy levels "
                        f"({quote_needed} needed)"
                    ),
                    severity=ValidationSeverity.WARNING,
                    value=cfg.paper_initial_quote,
                ))
        else:
            issues.append(ValidationIssue(
                field="paper_trading",
                message="LIVE trading is enabled: real funds will be swapped",
                severity=ValidationSeverity.WARNING,
            ))

        if cfg.price_check_interval < 10:
            issues.append(ValidationIssue(
                field="price_check_interval",
                message=f"Price checks every {cfg.price_check_interval}s may hit CoinGecko rate limits",
                severity=ValidationSeverity.WARNING,
                value=cfg.price_check_interval,
                suggestion="Use 10s or more",
            ))

        if cfg.grid_spacing_pct < Decimal("0.5"):
            issues.append(ValidationIssue(
                field="grid_spacing_pct",
                message=f"Spacing {cfg.grid_spacing_pct}% is tight; fees and gas may exceed the grid edge",
                severity=ValidationSeverity.WARNING,
                value=cfg.grid_spacing_pct,
            ))

        if cfg.grid_levels % 2:
            issues.append(ValidationIssue(
                field="grid_levels",
                message=f"Odd GRID_LEVELS={cfg.grid_levels}: the center itself becomes a sell level and fills as soon as price reaches it",
                severity=ValidationSeverity.WARNING,
                value=cfg.grid_levels,
            ))

        return issues


def validate_config(cfg) -> ValidationResult:
    return ConfigValidator().validate(cfg)


def validate_and_log(cfg, logger_instance: Optional[logging.Logger] = None) -> bool:
    """
    Validate config and log every issue.

    Returns:
        True if there are no errors.
    """
    log = logger_instance or logger
    result = validate_config(cfg)

    for issue in result.get_errors():
        msg = f"CONFIG ERROR: {issue.message}"
        if issue.suggestion:
            msg += f" (suggestion: {issue.suggestion})"
        log.error(msg)

    for issue in result.get_warnings():
        msg = f"CONFIG WARNING: {issue.message}"
        if issue.suggestion:
            msg += f" (suggestion: {issue.suggestion})"
        log.warning(msg)

    if result.valid:
        log.info("Configuration validation passed")
    else:
        log.error(f"Configuration validation failed with {len(result.get_errors())} error(s)")
    return result.valid
