"""
Strategy package.

This package contains the ladder data model and the pure grid calculations.
"""

from ethgrid.strategy.levels import GridLevel, Ladder, LadderStats, Side
from ethgrid.strategy.grid_calculator import (
    GridCalculator,
    all_side_filled,
    build_ladder,
    find_triggered,
    format_grid_display,
    is_price_outside_grid,
    opposite_level_index,
    sr_change_percent,
)

__all__ = [
    "GridLevel",
    "Ladder",
    "LadderStats",
    "Side",
    "GridCalculator",
    "all_side_filled",
    "build_ladder",
    "find_triggered",
    "format_grid_display",
    "is_price_outside_grid",
    "opposite_level_index",
    "sr_change_percent",
]
