"""
GridCalculator - Centralized grid computation module.

Pure calculation logic for the ladder:
- Ladder construction around a center price (geometric spacing)
- Trigger detection for the current price
- Opposite-level index after a fill
- Breakout / exhaustion checks used by the recalculation scheduler
- Text rendering of the ladder

No I/O and no randomness, so every function here is golden-testable.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from ethgrid.core.errors import InvalidConfiguration
from ethgrid.core.utils import to_decimal
from ethgrid.strategy.levels import GridLevel, Ladder, Side

HUNDRED = Decimal(100)


def build_ladder(
    center_price: Decimal,
    level_count: int,
    spacing_percent: Decimal,
    amount_per_level: Decimal,
) -> Ladder:
    """
    Build a fresh ladder around ``center_price``.

    Offsets run from -floor(N/2) to +floor(N/2). For an even N the zero
    offset is skipped; for an odd N it stays and the center itself becomes a
    sell level, so either way N levels result. Level ``i`` sits at
    ``center * (1 + spacing/100) ** i``; negative offsets are buys, the rest
    are sells.

    Raises:
        InvalidConfiguration: on any non-positive input or fewer than 2 levels.
    """
    center = to_decimal(center_price)
    spacing = to_decimal(spacing_percent)
    amount = to_decimal(amount_per_level)

    if not center.is_finite() or center <= 0:
        raise InvalidConfiguration(f"center price must be positive, got {center_price}")
    if int(level_count) != level_count or level_count < 2:
        raise InvalidConfiguration(f"level count must be an integer >= 2, got {level_count}")
    if not spacing.is_finite() or spacing <= 0:
        raise InvalidConfiguration(f"spacing percent must be positive, got {spacing_percent}")
    if not amount.is_finite() or amount <= 0:
        raise InvalidConfiguration(f"amount per level must be positive, got {amount_per_level}")

    ratio = 1 + spacing / HUNDRED
    half = int(level_count) // 2

    raw = []
    for offset in range(-half, half + 1):
        if offset == 0 and level_count % 2 == 0:
            continue
        price = center * (ratio ** offset)
        side = Side.BUY if offset < 0 else Side.SELL
        raw.append((price, side, amount / price))

    raw.sort(key=lambda item: item[0])
    return Ladder([
        GridLevel(index=idx, price=price, side=side, quantity=qty)
        for idx, (price, side, qty) in enumerate(raw)
    ])


def find_triggered(current_price: Decimal, ladder: Ladder) -> Optional[GridLevel]:
    """
    Return the first unfilled level crossed by ``current_price``.

    Scans in index (ascending price) order: a buy fires at or below its price,
    a sell at or above. Only one level is returned per call, even if the price
    has crossed several.
    """
    for lvl in ladder:
        if lvl.filled:
            continue
        if lvl.side is Side.BUY and current_price <= lvl.price:
            return lvl
        if lvl.side is Side.SELL and current_price >= lvl.price:
            return lvl
    return None


def opposite_level_index(level: GridLevel, ladder_size: int) -> Optional[int]:
    """Index of the adjacent level re-armed after ``level`` fills, or None if out of bounds."""
    idx = level.index + 1 if level.side is Side.BUY else level.index - 1
    if 0 <= idx < ladder_size:
        return idx
    return None


def is_price_outside_grid(current_price: Decimal, ladder: Ladder) -> bool:
    """True when the price is strictly below the lowest or above the highest level."""
    bounds = ladder.bounds()
    if bounds is None:
        return True
    low, high = bounds
    return current_price < low or current_price > high


def all_side_filled(ladder: Ladder, side: Side) -> bool:
    """True when the side has at least one level and every one of them is filled."""
    levels = ladder.levels_for(side)
    if not levels:
        return False
    return all(lvl.filled for lvl in levels)


def sr_change_percent(new_midpoint: Decimal, old_midpoint: Optional[Decimal]) -> Decimal:
    """Absolute midpoint change in percent. A missing previous midpoint counts as 100%."""
    if not old_midpoint:
        return HUNDRED
    return abs((new_midpoint - old_midpoint) / old_midpoint * HUNDRED)


def format_grid_display(ladder: Ladder, center_price: Optional[Decimal], amount_per_level: Decimal) -> str:
    """Render the ladder highest price first, one row per level."""
    if ladder.is_empty:
        return "No grid levels initialized."

    lines: List[str] = [
        "+-------------------------------------------------+",
        "|               GRID LEVELS (USD)                 |",
        "+-------------------------------------------------+",
    ]
    for lvl in sorted(ladder, key=lambda l: l.price, reverse=True):
        side = "SELL" if lvl.side is Side.SELL else "BUY "
        status = "[X]" if lvl.filled else "[ ]"
        price = f"${lvl.price:.2f}".rjust(10)
        qty = f"{lvl.quantity:.6f} ETH".rjust(15)
        lines.append(f"| {status} {side} @ {price} | {qty} |")
    center = center_price or Decimal(0)
    lines.append("+-------------------------------------------------+")
    lines.append(f"|  Center: ${center:>9.2f}  |  ${amount_per_level}/level")
    lines.append("+-------------------------------------------------+")
    return "\n".join(lines)


@dataclass(frozen=True)
class GridCalculator:
    """
    Grid geometry bound to one configuration.

    Holds configuration but no mutable state; ``build`` is a thin wrapper
    over :func:`build_ladder` so the engine does not carry the parameters
    around separately.
    """
    level_count: int
    spacing_percent: Decimal
    amount_per_level: Decimal

    def __post_init__(self) -> None:
        # Fail fast on configuration; the center price is checked per build.
        build_ladder(Decimal(1), self.level_count, self.spacing_percent, self.amount_per_level)

    def build(self, center_price: Decimal) -> Ladder:
        return build_ladder(center_price, self.level_count, self.spacing_percent, self.amount_per_level)

    def display(self, ladder: Ladder, center_price: Optional[Decimal]) -> str:
        return format_grid_display(ladder, center_price, self.amount_per_level)
