"""
Market data package.

External price and support/resistance sources.
"""

from ethgrid.market_data.price_feed import CoinGeckoPriceSource
from ethgrid.market_data.sr_source import (
    DuneSRSource,
    SRSignal,
    build_sr_query,
    fallback_signal,
)

__all__ = [
    "CoinGeckoPriceSource",
    "DuneSRSource",
    "SRSignal",
    "build_sr_query",
    "fallback_signal",
]
