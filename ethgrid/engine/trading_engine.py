"""
TradingEngine - the grid control loop.

Owns the live Ladder and EngineState. One ``asyncio.Lock`` guards every
mutation: a tick's trigger/execute/update sequence and a rebuild's swap are
mutually exclusive, so the trigger scan never sees a half-built ladder and a
level can never be dispatched twice.

Per tick:
    1. fetch price (PriceUnavailable -> keep last price, skip tick)
    2. find the first triggered level
    3. execute through the backend fixed at construction
    4. on success: mark filled, persist, record trade, re-arm opposite level
    5. on failure: leave the level armed, log, notify
    6. after a fill, wait the post-trade cooldown instead of the tick interval

The recalculation scheduler talks to the engine only through ``view`` (read)
and ``rebuild`` (write).
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional

from ethgrid.bot_logger import BotLogger
from ethgrid.core.errors import (
    ExecutionFailed,
    InsufficientBalance,
    InvalidConfiguration,
    PriceUnavailable,
    SignalUnavailable,
    SlippageExceeded,
)
from ethgrid.core.utils import fmt_usd, now_ms, to_decimal
from ethgrid.execution.backend import ExecutionBackend, ExecutionResult
from ethgrid.execution.paper_wallet import PaperWallet
from ethgrid.market_data.sr_source import SRSignal, fallback_signal
from ethgrid.monitoring.alerting import NotifyLevel
from ethgrid.state.records import EngineState, TradeRecord
from ethgrid.strategy.grid_calculator import GridCalculator, find_triggered, opposite_level_index
from ethgrid.strategy.levels import GridLevel, Ladder, Side


class EnginePhase(Enum):
    UNINITIALIZED = "uninitialized"
    BUILDING = "building"
    IDLE = "idle"
    TRIGGERED = "triggered"
    EXECUTING = "executing"
    REBUILDING = "rebuilding"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


@dataclass(frozen=True)
class EngineConfig:
    """Runtime knobs for the control loop."""
    pair: str = "ETH/USDC"
    quote_symbol: str = "USDC"
    base_price: Decimal = Decimal(0)           # 0 = use the S/R midpoint
    price_check_interval: float = 30.0         # seconds
    post_trade_cooldown: float = 60.0          # seconds
    status_report_interval: float = 3600.0     # seconds

    @classmethod
    def from_settings(cls, cfg) -> "EngineConfig":
        return cls(
            pair=cfg.pair,
            quote_symbol=cfg.quote_symbol,
            base_price=cfg.base_price,
            price_check_interval=cfg.price_check_interval,
            post_trade_cooldown=cfg.post_trade_cooldown,
            status_report_interval=cfg.status_report_interval_min * 60,
        )


class EngineView:
    """Read-only window onto a running engine, handed to the scheduler."""

    def __init__(self, engine: "TradingEngine") -> None:
        self._engine = engine

    @property
    def ladder(self) -> Ladder:
        return self._engine.state.ladder

    @property
    def last_price(self) -> Optional[Decimal]:
        return self._engine.state.last_observed_price

    @property
    def base_price(self) -> Optional[Decimal]:
        return self._engine.state.base_price

    @property
    def phase(self) -> EnginePhase:
        return self._engine.phase

    @property
    def running(self) -> bool:
        return self._engine.state.running


class TradingEngine:
    def __init__(
        self,
        config: EngineConfig,
        calculator: GridCalculator,
        price_source,
        sr_source,
        backend: ExecutionBackend,
        persistence,
        notifier=None,
        metrics=None,
        status_board=None,
        paper_wallet: Optional[PaperWallet] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.calculator = calculator
        self.price_source = price_source
        self.sr_source = sr_source
        self.backend = backend
        self.persistence = persistence
        self.notifier = notifier
        self.metrics = metrics
        self.status_board = status_board
        self.paper_wallet = paper_wallet
        self._clock = clock

        self.state = EngineState()
        self.phase = EnginePhase.UNINITIALIZED
        self.price_checks = 0
        self.last_sr: Optional[SRSignal] = None
        self.view = EngineView(self)

        self.log = BotLogger(pair=config.pair)
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._last_status_report = clock()

    @property
    def simulated(self) -> bool:
        return bool(getattr(self.backend, "simulated", False))

    @property
    def ladder(self) -> Ladder:
        return self.state.ladder

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Restore a persisted snapshot, or build a fresh ladder."""
        self.phase = EnginePhase.BUILDING
        restored = await self.persistence.load_state()
        if restored is not None and not restored.ladder.is_empty:
            restored.running = self.state.running
            self.state = restored
            self.log.log(
                "state_restored",
                levels=len(restored.ladder),
                base_price=restored.base_price,
                trades_executed=restored.trades_executed,
            )
            self._publish_ladder_metrics()
            self.phase = EnginePhase.IDLE
            return
        try:
            await self.initialize_grid()
        except (PriceUnavailable, SignalUnavailable) as exc:
            # No price and no signal yet; tick() retries the build.
            self.log.log("sr_unavailable", error=str(exc), stage="initialize")
            self.phase = EnginePhase.IDLE

    async def initialize_grid(self) -> Ladder:
        sr = await self._fetch_signal()
        return await self.rebuild(sr, reasons=("initial",))

    async def _fetch_signal(self) -> SRSignal:
        """S/R from the source, or the +/-10% fallback around the last price."""
        try:
            return await self.sr_source.fetch(force_refresh=False)
        except SignalUnavailable as exc:
            price = self.state.last_observed_price
            if not price:
                price = await self.price_source.fetch()
                self.state.last_observed_price = price
            self.log.log("sr_fallback", error=str(exc), price=price)
            return fallback_signal(price)

    async def rebuild(self, sr: SRSignal, reasons: Iterable[str] = ("manual",)) -> Ladder:
        """
        Replace the ladder with a fresh one centered on the configured base
        price, or on ``sr.midpoint`` when none is configured.

        The new ladder is built completely before the lock is taken; a build
        failure leaves the current ladder in place.
        """
        reasons = tuple(reasons)
        center = self.config.base_price if self.config.base_price > 0 else sr.midpoint
        new_ladder = self.calculator.build(center)

        async with self._lock:
            prev_phase = self.phase
            self.phase = EnginePhase.REBUILDING
            self.state.ladder = new_ladder
            self.state.base_price = center
            self.last_sr = sr
            await self._persist_state()
            self.phase = EnginePhase.IDLE if prev_phase != EnginePhase.SHUTTING_DOWN else prev_phase

        self.log.log(
            "grid_rebuilt",
            reasons=list(reasons),
            base_price=center,
            levels=len(new_ladder),
            lowest=new_ladder.lowest_price,
            highest=new_ladder.highest_price,
            sr_method=sr.method,
        )
        if self.metrics is not None:
            for reason in reasons:
                self.metrics.rebuilds.labels(pair=self.config.pair, reason=reason).inc()
            self.metrics.grid_center.labels(pair=self.config.pair).set(float(center))
        self._publish_ladder_metrics()
        await self._notify(
            f"S/R ({sr.method}, {sr.lookback_days}d): support {fmt_usd(sr.support)} | "
            f"resistance {fmt_usd(sr.resistance)} | midpoint {fmt_usd(sr.midpoint)}",
            NotifyLevel.INFO,
        )
        await self._notify(
            f"Grid initialized: {len(new_ladder)} levels from {fmt_usd(new_ladder.lowest_price)} "
            f"to {fmt_usd(new_ladder.highest_price)}, center at {fmt_usd(center)} "
            f"({', '.join(reasons)})",
            NotifyLevel.INFO,
        )
        return new_ladder

    async def run(self) -> None:
        """Tick until ``stop()``; then flush state and return."""
        self.state.running = True
        self._stop_event.clear()
        if self.phase == EnginePhase.UNINITIALIZED:
            await self.initialize()
        await self._notify(
            f"{'[PAPER] ' if self.simulated else ''}Grid trader started on {self.config.pair}",
            NotifyLevel.INFO,
        )
        try:
            while self.state.running:
                result = None
                try:
                    result = await self.tick()
                except (PriceUnavailable, SignalUnavailable) as exc:
                    self.log.log("tick_error", error=str(exc))
                except InvalidConfiguration:
                    raise
                except Exception as exc:
                    self.log.log("tick_error", error=repr(exc), unexpected=True)
                    if self.metrics is not None:
                        self.metrics.tick_errors.labels(pair=self.config.pair).inc()
                delay = self.config.post_trade_cooldown if result is not None else self.config.price_check_interval
                if result is not None:
                    self.log.log("cooldown", seconds=delay)
                await self._sleep(delay)
        finally:
            await self.shutdown()

    def stop(self) -> None:
        """Request a cooperative stop; the in-flight tick or rebuild completes first."""
        self.state.running = False
        self._stop_event.set()

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def shutdown(self) -> None:
        if self.phase == EnginePhase.STOPPED:
            return
        self.phase = EnginePhase.SHUTTING_DOWN
        async with self._lock:
            self.state.running = False
            await self._persist_state()
            if self.paper_wallet is not None:
                await self.persistence.save_paper_wallet(self.paper_wallet)
        self.phase = EnginePhase.STOPPED
        self.log.log("engine_stopped", trades_executed=self.state.trades_executed, price_checks=self.price_checks)
        await self._notify("Grid trader shutting down", NotifyLevel.INFO)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self) -> Optional[ExecutionResult]:
        """One price check. Returns the execution result when a level filled."""
        self.price_checks += 1
        try:
            price = await self.price_source.fetch()
        except PriceUnavailable as exc:
            self.log.log("price_unavailable", error=str(exc), last_price=self.state.last_observed_price)
            if self.metrics is not None:
                self.metrics.price_checks.labels(pair=self.config.pair, result="unavailable").inc()
            return None

        self.state.last_observed_price = price
        self.log.log("price_check", price=price)
        if self.metrics is not None:
            self.metrics.price_checks.labels(pair=self.config.pair, result="ok").inc()
            self.metrics.last_price.labels(pair=self.config.pair).set(float(price))

        if self.state.ladder.is_empty:
            await self.initialize_grid()
            return None

        result = None
        async with self._lock:
            try:
                level = find_triggered(price, self.state.ladder)
                if level is None:
                    self.log.log("no_trigger", price=price)
                else:
                    result = await self._execute_level(level, price)
            finally:
                if self.phase in (EnginePhase.TRIGGERED, EnginePhase.EXECUTING):
                    self.phase = EnginePhase.IDLE

        if self.metrics is not None:
            self.metrics.last_tick_ts.labels(pair=self.config.pair).set(time.time())
        await self.maybe_report_status(price)
        return result

    async def _execute_level(self, level: GridLevel, price: Decimal) -> Optional[ExecutionResult]:
        """Dispatch one triggered level. Caller holds the lock."""
        self.phase = EnginePhase.TRIGGERED
        prefix = "[PAPER] " if self.simulated else ""
        self.log.log(
            "level_triggered",
            index=level.index,
            side=level.side.value,
            level_price=level.price,
            price=price,
        )
        await self._notify(
            f"{prefix}Executing {level.side.value.upper()} at grid level {level.index}: "
            f"~{level.quantity:.6f} ETH for ~{level.quantity * price:.2f} {self.config.quote_symbol} "
            f"(@ {fmt_usd(price)}/ETH)",
            NotifyLevel.TRADE,
        )

        self.phase = EnginePhase.EXECUTING
        started = time.monotonic()
        try:
            result = await self.backend.execute(level, price)
        except InsufficientBalance as exc:
            self._record_failure("insufficient_balance", level, exc)
            await self._notify(f"{prefix}{level.side.value.upper()} failed: {exc}", NotifyLevel.WARNING)
            return None
        except SlippageExceeded as exc:
            self._record_failure("slippage_exceeded", level, exc)
            await self._notify(f"{prefix}{level.side.value.upper()} failed: {exc}", NotifyLevel.ERROR)
            return None
        except ExecutionFailed as exc:
            self._record_failure("execution_failed", level, exc)
            await self._notify(f"{prefix}{level.side.value.upper()} failed: {exc}", NotifyLevel.ERROR)
            return None
        finally:
            if self.metrics is not None:
                self.metrics.execution_latency_ms.labels(pair=self.config.pair).observe(
                    (time.monotonic() - started) * 1000
                )

        await self._apply_fill(level, result)
        return result

    def _record_failure(self, event: str, level: GridLevel, exc: Exception) -> None:
        self.log.log(event, index=level.index, side=level.side.value, error=str(exc))
        if self.metrics is not None:
            self.metrics.execution_failures.labels(pair=self.config.pair, reason=event).inc()

    async def _apply_fill(self, level: GridLevel, result: ExecutionResult) -> None:
        ladder = self.state.ladder
        level.mark_filled(now_ms(), result.ref)
        self.state.trades_executed += 1
        await self._persist_state()

        await self.persistence.record_trade(TradeRecord(
            timestamp_ms=level.filled_at or now_ms(),
            side=level.side,
            price=result.price,
            quantity=level.quantity,
            grid_level=level.index,
            usd_value=level.quantity * result.price,
            execution_ref=result.ref,
            simulated=result.simulated,
        ))

        opp_idx = opposite_level_index(level, len(ladder))
        if opp_idx is not None and ladder[opp_idx].filled:
            opposite = ladder[opp_idx]
            self.state.total_profit += round_trip_profit(level, opposite, result)
            opposite.reset()
            await self._persist_state()
            self.log.log("opposite_level_reset", index=opp_idx, side=opposite.side.value)

        self.log.log(
            "trade_executed",
            index=level.index,
            side=level.side.value,
            price=result.price,
            base=result.base_amount,
            quote=result.quote_amount,
            ref=result.ref,
            simulated=result.simulated,
            trades_executed=self.state.trades_executed,
        )
        if self.metrics is not None:
            mode = "paper" if result.simulated else "live"
            self.metrics.trades.labels(pair=self.config.pair, side=level.side.value, mode=mode).inc()
        self._publish_ladder_metrics()
        await self._notify(
            f"{'[PAPER] ' if result.simulated else ''}{level.side.value.upper()} executed at level "
            f"{level.index}: {result.base_amount:.6f} ETH / {result.quote_amount:.2f} {self.config.quote_symbol} "
            f"(ref {result.ref})",
            NotifyLevel.TRADE,
        )

    async def _persist_state(self) -> None:
        self.state.last_update = now_ms()
        ok = await self.persistence.save_state(self.state)
        if not ok and self.metrics is not None:
            self.metrics.persistence_errors.labels(pair=self.config.pair).inc()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def maybe_report_status(self, price: Decimal, force: bool = False) -> Optional[Dict[str, Any]]:
        """Emit the periodic status report when the interval has elapsed."""
        now = self._clock()
        if not force and now - self._last_status_report < self.config.status_report_interval:
            return None
        self._last_status_report = now
        report = await self.status_report(price)

        prefix = "[PAPER] " if self.simulated else ""
        stats = self.state.ladder.stats()
        base = report.get("base_balance")
        quote = report.get("quote_balance")
        balances = "balances unavailable"
        if base is not None and quote is not None:
            balances = (
                f"ETH: {base:.4f} ({fmt_usd(base * price)}) | {self.config.quote_symbol}: {quote:.2f}"
            )
        await self._notify(
            f"{prefix}Status: ETH @ {fmt_usd(price)} | {balances} | "
            f"Grid: {stats.filled_buys}/{stats.filled_buys + stats.pending_buys} buys, "
            f"{stats.filled_sells}/{stats.filled_sells + stats.pending_sells} sells | "
            f"Checks: {self.price_checks} | Trades: {self.state.trades_executed}",
            NotifyLevel.INFO,
        )
        paper = report.get("paper")
        if paper is not None:
            sign = "+" if paper["unrealized_pnl"] >= 0 else "-"
            await self._notify(
                f"[PAPER P&L] Initial: {fmt_usd(paper['initial_value_usd'])} -> "
                f"Current: {fmt_usd(paper['current_value_usd'])} | "
                f"P&L: {sign}{fmt_usd(abs(paper['unrealized_pnl']))} "
                f"({sign}{abs(paper['unrealized_pnl_percent']):.2f}%) | "
                f"Gas spent: {paper['total_gas_spent']:.6f} ETH ({fmt_usd(paper['gas_spent_usd'])}) | "
                f"Running: {paper['running_hours']:.1f}h",
                NotifyLevel.INFO,
            )
        self.log.log("status_report", **{k: v for k, v in report.items() if k != "paper"})
        return report

    async def status_report(self, price: Decimal) -> Dict[str, Any]:
        base = quote = None
        try:
            balances = await self.backend.balances()
            base, quote = balances.base, balances.quote
        except ExecutionFailed as exc:
            self.log.log("execution_failed", stage="balances", error=str(exc))

        report: Dict[str, Any] = {
            "price": price,
            "phase": self.phase.value,
            "base_balance": base,
            "quote_balance": quote,
            "price_checks": self.price_checks,
            "trades_executed": self.state.trades_executed,
            **self.state.ladder.stats().to_dict(),
        }
        if self.paper_wallet is not None:
            stats = self.paper_wallet.get_stats(price)
            report["paper"] = {
                "initial_value_usd": stats.initial_value_usd,
                "current_value_usd": stats.current_value_usd,
                "unrealized_pnl": stats.unrealized_pnl,
                "unrealized_pnl_percent": stats.unrealized_pnl_percent,
                "total_gas_spent": stats.total_gas_spent,
                "gas_spent_usd": stats.gas_spent_usd,
                "running_hours": stats.running_hours,
                "buy_trades": stats.buy_trades,
                "sell_trades": stats.sell_trades,
            }
            if self.metrics is not None:
                self.metrics.paper_pnl.labels(pair=self.config.pair).set(float(stats.unrealized_pnl))
        if self.metrics is not None and base is not None and quote is not None:
            self.metrics.balance.labels(pair=self.config.pair, asset="ETH").set(float(base))
            self.metrics.balance.labels(pair=self.config.pair, asset=self.config.quote_symbol).set(float(quote))
        if self.status_board is not None:
            await self.status_board.update("engine", {**report, **self.grid_summary()})
        return report

    def grid_summary(self) -> Dict[str, Any]:
        return {
            **self.state.ladder.stats().to_dict(),
            "base_price": None if self.state.base_price is None else str(self.state.base_price),
            "last_price": None if self.state.last_observed_price is None else str(self.state.last_observed_price),
            "trades_executed": self.state.trades_executed,
            "total_profit": str(self.state.total_profit),
            "phase": self.phase.value,
        }

    def display(self) -> str:
        return self.calculator.display(self.state.ladder, self.state.base_price)

    def _publish_ladder_metrics(self) -> None:
        if self.metrics is None:
            return
        stats = self.state.ladder.stats()
        self.metrics.filled_levels.labels(pair=self.config.pair, side="buy").set(stats.filled_buys)
        self.metrics.filled_levels.labels(pair=self.config.pair, side="sell").set(stats.filled_sells)

    async def _notify(self, message: str, level: NotifyLevel) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.notify(message, level)
        except Exception as exc:
            self.log.log("notify_failed", error=str(exc))


def round_trip_profit(filled: GridLevel, opposite: GridLevel, result: ExecutionResult) -> Decimal:
    """
    Gross profit of the buy/sell pair closed by ``filled``, before gas and
    slippage: the price gap between the two levels times the smaller size.
    """
    qty = min(to_decimal(result.base_amount), opposite.quantity)
    if filled.side is Side.BUY:
        return (opposite.price - result.price) * qty
    return (result.price - opposite.price) * qty
