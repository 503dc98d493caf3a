"""
Infrastructure package.

Logging setup shared by every component and the thread-pool wrapper
around the blocking exchange SDK.
"""

from ethgrid.infra.async_execution import AsyncExchange
from ethgrid.infra.logging_cfg import (
    LOGGER_NAME,
    AsyncQueueHandler,
    JsonFormatter,
    ThrottledFilter,
    build_logger,
    log_event,
)

__all__ = [
    "AsyncExchange",
    "LOGGER_NAME",
    "AsyncQueueHandler",
    "JsonFormatter",
    "ThrottledFilter",
    "build_logger",
    "log_event",
]
