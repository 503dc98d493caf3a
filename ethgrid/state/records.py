"""
Persisted records: engine snapshot, trade history rows and S/R decisions.

Decimals are written as strings so prices and quantities survive restarts
exactly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from ethgrid.core.utils import now_ms, optional_decimal, to_decimal
from ethgrid.market_data.sr_source import SRSignal
from ethgrid.strategy.levels import Ladder, Side


def _dec_str(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


@dataclass
class EngineState:
    """Everything the engine needs to resume after a restart."""
    ladder: Ladder = field(default_factory=Ladder)
    base_price: Optional[Decimal] = None
    last_observed_price: Optional[Decimal] = None
    trades_executed: int = 0
    total_profit: Decimal = Decimal(0)
    running: bool = False
    last_update: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grid": self.ladder.to_list(),
            "base_price": _dec_str(self.base_price),
            "last_observed_price": _dec_str(self.last_observed_price),
            "trades_executed": self.trades_executed,
            "total_profit": str(self.total_profit),
            "running": self.running,
            "last_update": self.last_update or now_ms(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineState":
        return cls(
            ladder=Ladder.from_list(data.get("grid") or []),
            base_price=optional_decimal(data.get("base_price")),
            last_observed_price=optional_decimal(data.get("last_observed_price")),
            trades_executed=int(data.get("trades_executed", 0)),
            total_profit=to_decimal(data.get("total_profit") or "0"),
            running=bool(data.get("running", False)),
            last_update=int(data.get("last_update") or 0),
        )


@dataclass(frozen=True)
class TradeRecord:
    """One row of trade history."""
    timestamp_ms: int
    side: Side
    price: Decimal
    quantity: Decimal
    grid_level: int
    usd_value: Decimal
    execution_ref: Optional[str]
    simulated: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp_ms": self.timestamp_ms,
            "side": self.side.value,
            "price": str(self.price),
            "quantity": str(self.quantity),
            "grid_level": self.grid_level,
            "usd_value": str(self.usd_value),
            "execution_ref": self.execution_ref,
            "simulated": self.simulated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeRecord":
        return cls(
            timestamp_ms=int(data["timestamp_ms"]),
            side=Side(data["side"]),
            price=to_decimal(data["price"]),
            quantity=to_decimal(data["quantity"]),
            grid_level=int(data["grid_level"]),
            usd_value=to_decimal(data["usd_value"]),
            execution_ref=data.get("execution_ref"),
            simulated=bool(data.get("simulated", False)),
        )


@dataclass(frozen=True)
class SRRecord:
    """An S/R signal as seen by the scheduler, tagged with its decision."""
    signal: SRSignal
    grid_recalculated: bool
    recorded_at: int = field(default_factory=now_ms)

    @property
    def midpoint(self) -> Decimal:
        return self.signal.midpoint  # type: ignore[return-value]

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.signal.to_dict(),
            "grid_recalculated": self.grid_recalculated,
            "recorded_at": self.recorded_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SRRecord":
        return cls(
            signal=SRSignal.from_dict(data),
            grid_recalculated=bool(data.get("grid_recalculated", False)),
            recorded_at=int(data.get("recorded_at") or now_ms()),
        )
