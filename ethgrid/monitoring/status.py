"""
In-memory status board served on /status.

Sections are replaced whole (engine, scheduler, paper wallet...) and stamped
with the time of the last update.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from ethgrid.core.utils import now_ms


class StatusBoard:
    def __init__(self) -> None:
        self._sections: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def update(self, section: str, payload: Dict[str, Any]) -> None:
        async with self._lock:
            self._sections[section] = {**payload, "updated_at": now_ms()}

    async def get(self, section: str) -> Optional[Dict[str, Any]]:
        async with self._lock:
            data = self._sections.get(section)
            return dict(data) if data is not None else None

    async def snapshot(self) -> Dict[str, Dict[str, Any]]:
        async with self._lock:
            return {name: dict(data) for name, data in self._sections.items()}
