"""
Async wrapper around the blocking Hyperliquid SDK using a shared thread pool.

Read calls may be retried with backoff. Order calls are never retried: a
timed-out market order may still have executed.
"""

from __future__ import annotations

import asyncio
import random
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional


class AsyncExchange:
    def __init__(self, exchange, info=None, timeout: float = 10.0, max_workers: int = 4) -> None:
        self._exchange = exchange
        self._info = info if info is not None else getattr(exchange, "info", None)
        self._timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="hl-exec")

    @property
    def info(self):
        return self._info

    async def market_open(self, name: str, is_buy: bool, sz: float, slippage: float) -> Any:
        return await self._call(
            lambda: self._exchange.market_open(name, is_buy, sz, None, slippage),
            retries=0,
        )

    async def spot_user_state(self, address: str) -> Any:
        if self._info is None:
            raise RuntimeError("no Info client configured")
        return await self._call(lambda: self._info.spot_user_state(address))

    async def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    async def _call(self, fn, retries: int = 2, timeout: Optional[float] = None) -> Any:
        loop = asyncio.get_running_loop()
        backoff = 0.2
        for attempt in range(retries + 1):
            try:
                return await asyncio.wait_for(
                    loop.run_in_executor(self._executor, fn),
                    timeout=timeout or self._timeout,
                )
            except Exception:
                if attempt >= retries:
                    raise
                await asyncio.sleep(backoff + random.uniform(0, backoff * 0.5))
                backoff *= 2
