"""
Ladder data model: sides, grid levels and the ordered ladder.

A Ladder is one "generation" of the grid. Level fill state mutates during the
generation's lifetime; the set of levels, their prices and quantities never
do. A rebuild produces a new Ladder which the engine swaps in whole.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from ethgrid.core.utils import to_decimal


class Side(Enum):
    """Trade direction from the base-asset point of view."""
    BUY = "buy"    # spend quote, receive base
    SELL = "sell"  # spend base, receive quote

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY


@dataclass
class GridLevel:
    """One price point of the ladder."""
    index: int
    price: Decimal
    side: Side
    quantity: Decimal
    filled: bool = False
    filled_at: Optional[int] = None  # epoch ms
    execution_ref: Optional[str] = None

    def mark_filled(self, at_ms: int, execution_ref: Optional[str]) -> None:
        if self.filled:
            raise ValueError(f"level {self.index} already filled")
        self.filled = True
        self.filled_at = at_ms
        self.execution_ref = execution_ref

    def reset(self) -> None:
        """Re-arm the level (opposite-level-reset rule only)."""
        self.filled = False
        self.filled_at = None
        self.execution_ref = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "price": str(self.price),
            "side": self.side.value,
            "quantity": str(self.quantity),
            "filled": self.filled,
            "filled_at": self.filled_at,
            "execution_ref": self.execution_ref,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GridLevel":
        return cls(
            index=int(data["index"]),
            price=to_decimal(data["price"]),
            side=Side(data["side"]),
            quantity=to_decimal(data["quantity"]),
            filled=bool(data.get("filled", False)),
            filled_at=data.get("filled_at"),
            execution_ref=data.get("execution_ref"),
        )


@dataclass(frozen=True)
class LadderStats:
    """Fill counters for status reports and scheduler logging."""
    levels: int
    lowest_price: Optional[Decimal]
    highest_price: Optional[Decimal]
    filled_levels: int
    filled_buys: int
    filled_sells: int
    pending_buys: int
    pending_sells: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "levels": self.levels,
            "lowest_price": None if self.lowest_price is None else str(self.lowest_price),
            "highest_price": None if self.highest_price is None else str(self.highest_price),
            "filled_levels": self.filled_levels,
            "filled_buys": self.filled_buys,
            "filled_sells": self.filled_sells,
            "pending_buys": self.pending_buys,
            "pending_sells": self.pending_sells,
        }


@dataclass
class Ladder:
    """
    Ordered sequence of grid levels, strictly increasing by price.

    Levels are indexed 0..N-1 in price order, so ``ladder[i].index == i``.
    """
    levels: List[GridLevel] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._check_order(self.levels)

    @staticmethod
    def _check_order(levels: List[GridLevel]) -> None:
        for pos, lvl in enumerate(levels):
            if lvl.index != pos:
                raise ValueError(f"level at position {pos} has index {lvl.index}")
            if pos and levels[pos - 1].price >= lvl.price:
                raise ValueError("ladder prices must be strictly increasing")

    def __len__(self) -> int:
        return len(self.levels)

    def __iter__(self) -> Iterator[GridLevel]:
        return iter(self.levels)

    def __getitem__(self, idx: int) -> GridLevel:
        return self.levels[idx]

    @property
    def is_empty(self) -> bool:
        return not self.levels

    @property
    def lowest_price(self) -> Optional[Decimal]:
        return self.levels[0].price if self.levels else None

    @property
    def highest_price(self) -> Optional[Decimal]:
        return self.levels[-1].price if self.levels else None

    def levels_for(self, side: Side) -> List[GridLevel]:
        return [lvl for lvl in self.levels if lvl.side is side]

    def bounds(self) -> Optional[Tuple[Decimal, Decimal]]:
        if not self.levels:
            return None
        return self.levels[0].price, self.levels[-1].price

    def stats(self) -> LadderStats:
        buys = self.levels_for(Side.BUY)
        sells = self.levels_for(Side.SELL)
        filled_buys = sum(1 for lvl in buys if lvl.filled)
        filled_sells = sum(1 for lvl in sells if lvl.filled)
        return LadderStats(
            levels=len(self.levels),
            lowest_price=self.lowest_price,
            highest_price=self.highest_price,
            filled_levels=filled_buys + filled_sells,
            filled_buys=filled_buys,
            filled_sells=filled_sells,
            pending_buys=len(buys) - filled_buys,
            pending_sells=len(sells) - filled_sells,
        )

    def to_list(self) -> List[Dict[str, Any]]:
        return [lvl.to_dict() for lvl in self.levels]

    @classmethod
    def from_list(cls, rows: Iterable[Dict[str, Any]]) -> "Ladder":
        levels = sorted((GridLevel.from_dict(r) for r in rows), key=lambda lvl: lvl.price)
        return cls(levels)
