"""
State package.

Persisted records and the JSON stores behind them.
"""

from ethgrid.state.persistence import JsonPersistence
from ethgrid.state.records import EngineState, SRRecord, TradeRecord
from ethgrid.state.state_store import AtomicStateStore, StateStore

__all__ = [
    "JsonPersistence",
    "EngineState",
    "SRRecord",
    "TradeRecord",
    "AtomicStateStore",
    "StateStore",
]
