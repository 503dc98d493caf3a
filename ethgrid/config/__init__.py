"""
Configuration package.

Environment loading and startup validation.
"""

from ethgrid.config.config import Settings, env_bool
from ethgrid.config.config_validator import ConfigValidator, validate_and_log, validate_config

__all__ = [
    "Settings",
    "env_bool",
    "ConfigValidator",
    "validate_and_log",
    "validate_config",
]
