"""
Webhook notifications for trades, rebuilds and failures.

- Slack, Discord or generic JSON webhooks over ``httpx.AsyncClient``
- Fire-and-forget: ``notify`` schedules delivery and returns at once
- Delivery failures are logged and swallowed, never raised to the caller
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional, Set

import httpx

from ethgrid.infra.logging_cfg import LOGGER_NAME, log_event

logger = logging.getLogger(LOGGER_NAME)


class NotifyLevel(IntEnum):
    """Ordered so ``level >= min_level`` filters."""
    DEBUG = 10
    INFO = 20
    TRADE = 25
    WARNING = 30
    ERROR = 40


@dataclass
class NotifierConfig:
    webhook_url: Optional[str] = None
    webhook_type: str = "auto"  # auto, slack, discord, generic
    min_level: NotifyLevel = NotifyLevel.INFO
    bot_name: str = "EthGridTrader"
    timeout: float = 10.0
    retries: int = 1


def detect_webhook_type(url: str) -> str:
    """Discord URLs are recognised by host; anything else is treated as Slack."""
    return "discord" if "discord" in url.lower() else "slack"


def format_payload(webhook_type: str, message: str, level: NotifyLevel, bot_name: str) -> Dict[str, Any]:
    if webhook_type == "discord":
        return {"content": message, "username": bot_name}
    if webhook_type == "slack":
        return {"text": f"`{message}`", "username": bot_name}
    return {
        "bot": bot_name,
        "level": level.name,
        "message": message,
        "timestamp_ms": int(time.time() * 1000),
    }


class Notifier:
    """
    Chat sink. Messages are prefixed with ``[bot_name]`` and always logged;
    they are posted only when a URL is configured and the level passes
    ``min_level``.
    """

    def __init__(self, config: Optional[NotifierConfig] = None, client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config or NotifierConfig()
        if self.config.webhook_url and self.config.webhook_type == "auto":
            self.webhook_type = detect_webhook_type(self.config.webhook_url)
        else:
            self.webhook_type = self.config.webhook_type
        self._client = client
        self._owns_client = client is None
        self._pending: Set[asyncio.Task] = set()
        self.sent = 0
        self.failed = 0

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)
        return self._client

    async def notify(self, message: str, level: NotifyLevel = NotifyLevel.INFO) -> None:
        text = f"[{self.config.bot_name}] {message}"
        logger.log(logging.WARNING if level >= NotifyLevel.WARNING else logging.INFO, text)

        if not self.config.webhook_url or level < self.config.min_level:
            return
        payload = format_payload(self.webhook_type, text, level, self.config.bot_name)
        task = asyncio.create_task(self._deliver(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, payload: Dict[str, Any]) -> bool:
        client = self._get_client()
        for attempt in range(self.config.retries + 1):
            try:
                resp = await client.post(self.config.webhook_url, json=payload, timeout=self.config.timeout)
                if resp.status_code < 300:
                    self.sent += 1
                    return True
                log_event(logger, "notify_failed", level=logging.WARNING, status=resp.status_code)
            except Exception as exc:
                log_event(logger, "notify_failed", level=logging.WARNING, error=repr(exc), attempt=attempt + 1)
            if attempt < self.config.retries:
                await asyncio.sleep(1 * (attempt + 1))
        self.failed += 1
        return False

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
