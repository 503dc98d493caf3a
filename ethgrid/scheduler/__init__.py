"""
Scheduler package.

Periodic S/R checks that decide when the ladder is rebuilt.
"""

from ethgrid.scheduler.sr_scheduler import (
    REASON_BREAKOUT,
    REASON_BUYS_EXHAUSTED,
    REASON_DRIFT,
    REASON_SELLS_EXHAUSTED,
    RecalcDecision,
    RecalculationScheduler,
    evaluate_recalculation,
)

__all__ = [
    "REASON_BREAKOUT",
    "REASON_BUYS_EXHAUSTED",
    "REASON_DRIFT",
    "REASON_SELLS_EXHAUSTED",
    "RecalcDecision",
    "RecalculationScheduler",
    "evaluate_recalculation",
]
