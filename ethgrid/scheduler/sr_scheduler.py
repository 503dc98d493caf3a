"""
Recalculation scheduler.

Fires once at start and then every ``interval`` seconds. Each firing fetches
a fresh S/R signal and checks three independent conditions against the
engine's current state:

    C1 drift       midpoint moved >= threshold % versus the last persisted record
    C2 breakout    last price strictly outside [lowest, highest] of the ladder
    C3 exhaustion  every buy level filled, or every sell level filled

Any one condition is enough. The signal is persisted either way, tagged with
the decision, and every firing reason is reported.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, List, Optional

from ethgrid.bot_logger import BotLogger
from ethgrid.core.errors import InvalidConfiguration, SignalUnavailable
from ethgrid.core.utils import fmt_usd, to_decimal
from ethgrid.infra.logging_cfg import LOGGER_NAME
from ethgrid.market_data.sr_source import SRSignal
from ethgrid.state.records import SRRecord
from ethgrid.strategy.grid_calculator import all_side_filled, is_price_outside_grid, sr_change_percent
from ethgrid.strategy.levels import Ladder, Side

log = logging.getLogger(LOGGER_NAME)

REASON_DRIFT = "sr_drift"
REASON_BREAKOUT = "price_breakout"
REASON_BUYS_EXHAUSTED = "buys_exhausted"
REASON_SELLS_EXHAUSTED = "sells_exhausted"


@dataclass(frozen=True)
class RecalcDecision:
    change_percent: Decimal
    reasons: List[str] = field(default_factory=list)
    details: List[str] = field(default_factory=list)

    @property
    def should_rebuild(self) -> bool:
        return bool(self.reasons)


def evaluate_recalculation(
    new_midpoint: Decimal,
    previous_midpoint: Optional[Decimal],
    ladder: Optional[Ladder],
    last_price: Optional[Decimal],
    threshold_percent: Decimal,
) -> RecalcDecision:
    """Pure C1/C2/C3 evaluation; conditions are OR-combined and all are reported."""
    change = sr_change_percent(to_decimal(new_midpoint), previous_midpoint)
    reasons: List[str] = []
    details: List[str] = []

    if change >= threshold_percent:
        reasons.append(REASON_DRIFT)
        details.append(f"S/R midpoint changed {change:.2f}%")

    if ladder is not None and not ladder.is_empty:
        if last_price is not None and last_price > 0 and is_price_outside_grid(last_price, ladder):
            reasons.append(REASON_BREAKOUT)
            details.append(
                f"Price {fmt_usd(last_price)} outside grid range "
                f"({fmt_usd(ladder.lowest_price)} - {fmt_usd(ladder.highest_price)})"
            )
        if all_side_filled(ladder, Side.BUY):
            reasons.append(REASON_BUYS_EXHAUSTED)
            details.append("All buy levels filled")
        if all_side_filled(ladder, Side.SELL):
            reasons.append(REASON_SELLS_EXHAUSTED)
            details.append("All sell levels filled")

    return RecalcDecision(change_percent=change, reasons=reasons, details=details)


class RecalculationScheduler:
    """
    Periodic S/R check that commands ``engine.rebuild`` when needed.

    Args:
        sr_source: object with ``async fetch(force_refresh) -> SRSignal``
        engine_view: read-only engine accessor (ladder, last_price)
        rebuild: ``async (sr, reasons) -> Ladder``, usually ``engine.rebuild``
        persistence: provides ``latest_sr`` and ``record_sr``
    """

    def __init__(
        self,
        sr_source,
        engine_view,
        rebuild: Callable,
        persistence,
        interval: float = 3600.0,
        threshold_percent: Decimal = Decimal(5),
        pair: str = "ETH/USDC",
        metrics=None,
        status_board=None,
        on_sr_update: Optional[Callable[[SRSignal], None]] = None,
    ) -> None:
        if interval <= 0:
            raise InvalidConfiguration(f"scheduler interval must be positive, got {interval}")
        self.sr_source = sr_source
        self.view = engine_view
        self._rebuild = rebuild
        self.persistence = persistence
        self.interval = interval
        self.threshold = to_decimal(threshold_percent)
        self.pair = pair
        self.metrics = metrics
        self.status_board = status_board
        self.on_sr_update = on_sr_update

        self.log = BotLogger(pair=pair)
        self.last_decision: Optional[RecalcDecision] = None
        self.firings = 0
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._firing_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Optional[RecalcDecision]:
        """One firing. Returns None when the S/R fetch failed."""
        async with self._firing_lock:
            self.firings += 1
            try:
                sr = await self.sr_source.fetch(force_refresh=True)
            except SignalUnavailable as exc:
                self.log.log("sr_unavailable", error=str(exc), stage="scheduler")
                if self.metrics is not None:
                    self.metrics.sr_fetches.labels(pair=self.pair, result="error").inc()
                return None
            if self.metrics is not None:
                self.metrics.sr_fetches.labels(pair=self.pair, result="ok").inc()

            previous = await self.persistence.latest_sr()
            decision = evaluate_recalculation(
                new_midpoint=sr.midpoint,
                previous_midpoint=previous.midpoint if previous is not None else None,
                ladder=self.view.ladder,
                last_price=self.view.last_price,
                threshold_percent=self.threshold,
            )
            self.last_decision = decision
            if self.metrics is not None:
                self.metrics.sr_change_pct.labels(pair=self.pair).set(float(decision.change_percent))

            await self.persistence.record_sr(SRRecord(signal=sr, grid_recalculated=decision.should_rebuild))
            if self.on_sr_update is not None:
                self.on_sr_update(sr)

            if decision.should_rebuild:
                self.log.log(
                    "grid_recalculation",
                    reasons=decision.reasons,
                    details=decision.details,
                    midpoint=sr.midpoint,
                )
                try:
                    await self._rebuild(sr, decision.reasons)
                except InvalidConfiguration:
                    raise
                except Exception as exc:
                    self.log.log("rebuild_failed", error=str(exc), reasons=decision.reasons)
            else:
                self.log.log(
                    "scheduler_no_change",
                    change_percent=decision.change_percent,
                    threshold=self.threshold,
                    last_price=self.view.last_price,
                )

            if self.status_board is not None:
                await self.status_board.update("scheduler", {
                    "support": str(sr.support),
                    "resistance": str(sr.resistance),
                    "midpoint": str(sr.midpoint),
                    "method": sr.method,
                    "change_percent": str(decision.change_percent),
                    "threshold_percent": str(self.threshold),
                    "reasons": decision.reasons,
                    "firings": self.firings,
                })
            return decision

    async def fetch_now(self) -> Optional[RecalcDecision]:
        """Manual firing outside the schedule."""
        self.log.log("scheduler_manual_fetch")
        return await self.run_once()

    async def run(self) -> None:
        """Fire immediately, then every ``interval`` until ``stop()``."""
        self._stop_event.clear()
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except InvalidConfiguration:
                raise
            except Exception as exc:
                self.log.log("scheduler_error", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task  # type: ignore[return-value]
        self._task = asyncio.create_task(self.run(), name="sr-scheduler")
        log.info("Recalculation scheduler started (every %ss, threshold %s%%)", self.interval, self.threshold)
        return self._task

    async def stop(self) -> None:
        """Stop the timer; a firing in progress completes first."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        log.info("Recalculation scheduler stopped")
