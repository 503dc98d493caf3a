"""
Utility helpers.
"""

from __future__ import annotations

import time
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


def now_ms() -> int:
    return int(time.time() * 1000)


def to_decimal(value: Any) -> Decimal:
    """
    Convert a number or numeric string to Decimal without float artifacts.

    Floats go through str() so 0.1 becomes Decimal("0.1") rather than the
    binary expansion.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"not a decimal: {value!r}") from exc


def optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return to_decimal(value)


def fmt_usd(value: Decimal) -> str:
    return f"${value:,.2f}"


def fmt_qty(value: Decimal, places: int = 6) -> str:
    return f"{value:.{places}f}"
