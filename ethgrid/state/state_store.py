"""
JSON file stores.

StateStore does blocking file IO and raises PersistenceError. AtomicStateStore
runs the same calls in an executor, serialized with an ``asyncio.Lock`` so
writes never interleave.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from ethgrid.core.errors import PersistenceError


class StateStore:
    """One JSON document (``save``/``load``) or one JSON-lines log (``append``/``tail``)."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text())
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"failed to load {self.path}: {exc}") from exc

    def save(self, data: Dict[str, Any]) -> None:
        try:
            self.tmp.write_text(json.dumps(data, indent=2))
            self.tmp.replace(self.path)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"failed to save {self.path}: {exc}") from exc

    def append(self, row: Dict[str, Any]) -> None:
        try:
            line = json.dumps(row, separators=(",", ":"))
            with self.path.open("a") as fh:
                fh.write(line + "\n")
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"failed to append to {self.path}: {exc}") from exc

    def tail(self, limit: int = 1) -> List[Dict[str, Any]]:
        """Last ``limit`` parseable rows, oldest first. Corrupt lines are skipped."""
        if not self.path.exists():
            return []
        try:
            lines = self.path.read_text().splitlines()
        except OSError as exc:
            raise PersistenceError(f"failed to read {self.path}: {exc}") from exc
        rows: List[Dict[str, Any]] = []
        for line in reversed(lines):
            if len(rows) >= limit:
                break
            if not line.strip():
                continue
            try:
                rows.append(json.loads(line))
            except ValueError:
                continue
        rows.reverse()
        return rows


class AtomicStateStore:
    def __init__(self, path: Path) -> None:
        self._store = StateStore(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._store.path

    async def load(self) -> Optional[Dict[str, Any]]:
        async with self._lock:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._store.load)

    async def save(self, data: Dict[str, Any]) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, lambda: self._store.save(data))

    async def append(self, row: Dict[str, Any]) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, lambda: self._store.append(row))

    async def tail(self, limit: int = 1) -> List[Dict[str, Any]]:
        async with self._lock:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, lambda: self._store.tail(limit))
