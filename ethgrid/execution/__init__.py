"""
Execution package.

Paper and live backends behind one ``execute(level, price)`` contract.
"""

from ethgrid.execution.backend import Balances, ExecutionBackend, ExecutionResult
from ethgrid.execution.live_exchange import HyperliquidSpotBackend, SwapResult, parse_order_response
from ethgrid.execution.paper_wallet import (
    PaperExecutionBackend,
    PaperStats,
    PaperTrade,
    PaperWallet,
    estimate_gas_eth,
)

__all__ = [
    "Balances",
    "ExecutionBackend",
    "ExecutionResult",
    "HyperliquidSpotBackend",
    "SwapResult",
    "parse_order_response",
    "PaperExecutionBackend",
    "PaperStats",
    "PaperTrade",
    "PaperWallet",
    "estimate_gas_eth",
]
