"""
Execution backend contract shared by paper and live trading.

The engine picks one backend at construction and never mixes them. A backend
either returns an ExecutionResult or raises InsufficientBalance /
ExecutionFailed / SlippageExceeded without side effects the engine has to
undo.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

from ethgrid.strategy.levels import GridLevel, Side


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one filled level."""
    side: Side
    ref: Optional[str]
    base_amount: Decimal    # received on buy, sent on sell
    quote_amount: Decimal   # sent on buy, received on sell
    price: Decimal          # observed price the trade was dispatched at
    gas_cost: Decimal = Decimal(0)
    slippage_percent: Decimal = Decimal(0)
    simulated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "side": self.side.value,
            "ref": self.ref,
            "base_amount": str(self.base_amount),
            "quote_amount": str(self.quote_amount),
            "price": str(self.price),
            "gas_cost": str(self.gas_cost),
            "slippage_percent": str(self.slippage_percent),
            "simulated": self.simulated,
        }


@dataclass(frozen=True)
class Balances:
    base: Decimal
    quote: Decimal


class ExecutionBackend(Protocol):
    """What the engine needs from a paper or live backend."""

    simulated: bool

    async def execute(self, level: GridLevel, price: Decimal) -> ExecutionResult:
        ...

    async def balances(self) -> Balances:
        ...
