"""
Engine package.

The trading control loop and its read-only view.
"""

from ethgrid.engine.trading_engine import (
    EngineConfig,
    EnginePhase,
    EngineView,
    TradingEngine,
    round_trip_profit,
)

__all__ = [
    "EngineConfig",
    "EnginePhase",
    "EngineView",
    "TradingEngine",
    "round_trip_profit",
]
