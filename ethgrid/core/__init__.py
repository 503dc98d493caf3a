"""
Core utilities package.

This package contains the error taxonomy and small shared helpers.
"""

from ethgrid.core.errors import (
    ExecutionFailed,
    GridTraderError,
    InsufficientBalance,
    InvalidConfiguration,
    PersistenceError,
    PriceUnavailable,
    SignalUnavailable,
    SlippageExceeded,
)
from ethgrid.core.utils import now_ms, optional_decimal, to_decimal

__all__ = [
    "ExecutionFailed",
    "GridTraderError",
    "InsufficientBalance",
    "InvalidConfiguration",
    "PersistenceError",
    "PriceUnavailable",
    "SignalUnavailable",
    "SlippageExceeded",
    "now_ms",
    "optional_decimal",
    "to_decimal",
]
