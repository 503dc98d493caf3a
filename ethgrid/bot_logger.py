"""
BotLogger: centralized event logging for the engine and scheduler.

Every event is a JSON payload ``{"event": ..., "pair": ..., **data}``.
The event name decides the level, so call sites never pick one.

Usage:
    logger = BotLogger(pair="ETH/USDC")
    logger.log("trade_executed", side="buy", price=Decimal("3000"))
    logger.log("grid_rebuilt", base_price=Decimal("3050"), levels=10)
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set

from ethgrid.infra.logging_cfg import LOGGER_NAME

log = logging.getLogger(LOGGER_NAME)


@dataclass
class BotLoggerConfig:
    """Configuration for BotLogger."""
    # Log every Nth price check at DEBUG (0 disables)
    price_check_sample_every: int = 0

    # Throttle window for repetitive warnings
    throttle_window_sec: float = 60.0

    debug_enabled: bool = False


class BotLogger:
    """
    Event logger with a fixed event -> level mapping.

    Log Level Hierarchy:
    - CRITICAL: configuration is unusable
    - ERROR: execution failures, persistence write errors
    - WARNING: recoverable data issues (price feed down, S/R fallback)
    - INFO: lifecycle events (fills, rebuilds, status reports)
    - DEBUG: per-tick noise (price checks, no-trigger ticks)
    """

    CRITICAL_EVENTS: Set[str] = {
        "invalid_configuration",
    }

    ERROR_EVENTS: Set[str] = {
        "execution_failed", "slippage_exceeded", "persistence_error",
        "tick_error", "scheduler_error", "rebuild_failed",
    }

    WARNING_EVENTS: Set[str] = {
        "price_unavailable", "insufficient_balance", "sr_unavailable",
        "sr_fallback", "state_restore_failed", "notify_failed",
    }

    DEBUG_EVENTS: Set[str] = {
        "price_check", "no_trigger", "scheduler_no_change", "cooldown",
    }

    THROTTLE_EVENTS: Set[str] = {
        "price_unavailable", "insufficient_balance",
    }

    def __init__(self, pair: str, config: Optional[BotLoggerConfig] = None) -> None:
        self.pair = pair
        self.config = config or BotLoggerConfig()
        self._throttle_times: Dict[str, float] = {}
        self._sample_counter = 0

    def level_for(self, event: str) -> int:
        if event in self.CRITICAL_EVENTS:
            return logging.CRITICAL
        if event in self.ERROR_EVENTS:
            return logging.ERROR
        if event in self.WARNING_EVENTS:
            return logging.WARNING
        if event in self.DEBUG_EVENTS:
            return logging.DEBUG
        return logging.INFO

    def log(self, event: str, **data: Any) -> None:
        """
        Log an event at the level its name maps to.

        Args:
            event: Event name
            **data: Event data; Decimals are rendered as strings
        """
        level = self.level_for(event)

        if event in self.THROTTLE_EVENTS:
            now = time.time()
            if now - self._throttle_times.get(event, 0.0) < self.config.throttle_window_sec:
                return
            self._throttle_times[event] = now

        if event == "price_check" and not self._should_sample():
            return

        if level == logging.DEBUG and not self.config.debug_enabled:
            return

        self._emit(level, event, data)

    def _should_sample(self) -> bool:
        every = self.config.price_check_sample_every
        if every <= 0:
            return False
        self._sample_counter += 1
        return self._sample_counter % every == 0

    def _emit(self, level: int, event: str, data: Dict[str, Any]) -> None:
        payload = {"event": event, "pair": self.pair, **data}
        log.log(level, json.dumps(payload, default=str))

    def error(self, event: str, **data: Any) -> None:
        """Log at ERROR regardless of the mapping."""
        self._emit(logging.ERROR, event, data)

    def warning(self, event: str, **data: Any) -> None:
        self._emit(logging.WARNING, event, data)

    def info(self, event: str, **data: Any) -> None:
        self._emit(logging.INFO, event, data)

    def get_callback(self) -> Callable[..., None]:
        """Callable for components that only take a log hook."""
        return self.log
