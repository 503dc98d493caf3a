"""
Best-effort persistence for the engine, paper wallet and history logs.

Every public method catches PersistenceError (and corrupt-record errors),
logs it and returns a neutral value. In-memory state stays authoritative
until the next successful write, so the trading loops never see a storage
failure.

Layout under ``state_dir``:
    engine_state.json   latest EngineState snapshot
    paper_wallet.json   PaperWallet ledger
    trades.jsonl        TradeRecord history, one per line
    sr_history.jsonl    SRRecord history, one per line
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ethgrid.core.errors import PersistenceError, SignalUnavailable
from ethgrid.execution.paper_wallet import PaperWallet
from ethgrid.infra.logging_cfg import LOGGER_NAME, log_event
from ethgrid.state.records import EngineState, SRRecord, TradeRecord
from ethgrid.state.state_store import AtomicStateStore

log = logging.getLogger(LOGGER_NAME)

_DECODE_ERRORS = (PersistenceError, SignalUnavailable, KeyError, TypeError, ValueError)


class JsonPersistence:
    def __init__(self, state_dir: str) -> None:
        root = Path(state_dir)
        self._engine = AtomicStateStore(root / "engine_state.json")
        self._wallet = AtomicStateStore(root / "paper_wallet.json")
        self._trades = AtomicStateStore(root / "trades.jsonl")
        self._sr = AtomicStateStore(root / "sr_history.jsonl")
        self.write_errors = 0

    def _failed(self, op: str, exc: Exception) -> None:
        self.write_errors += 1
        log_event(log, "persistence_error", level=logging.ERROR, op=op, error=str(exc))

    async def load_state(self) -> Optional[EngineState]:
        try:
            data = await self._engine.load()
            return EngineState.from_dict(data) if data else None
        except _DECODE_ERRORS as exc:
            log_event(log, "state_restore_failed", level=logging.WARNING, error=str(exc))
            return None

    async def save_state(self, state: EngineState) -> bool:
        try:
            await self._engine.save(state.to_dict())
            return True
        except PersistenceError as exc:
            self._failed("save_state", exc)
            return False

    async def record_trade(self, record: TradeRecord) -> bool:
        try:
            await self._trades.append(record.to_dict())
            return True
        except PersistenceError as exc:
            self._failed("record_trade", exc)
            return False

    async def recent_trades(self, limit: int = 20) -> List[TradeRecord]:
        try:
            rows = await self._trades.tail(limit)
            return [TradeRecord.from_dict(r) for r in rows]
        except _DECODE_ERRORS as exc:
            log_event(log, "persistence_error", level=logging.ERROR, op="recent_trades", error=str(exc))
            return []

    async def record_sr(self, record: SRRecord) -> bool:
        try:
            await self._sr.append(record.to_dict())
            return True
        except PersistenceError as exc:
            self._failed("record_sr", exc)
            return False

    async def latest_sr(self) -> Optional[SRRecord]:
        try:
            rows: List[Dict[str, Any]] = await self._sr.tail(1)
            return SRRecord.from_dict(rows[-1]) if rows else None
        except _DECODE_ERRORS as exc:
            log_event(log, "persistence_error", level=logging.ERROR, op="latest_sr", error=str(exc))
            return None

    async def load_paper_wallet(self) -> Optional[PaperWallet]:
        try:
            data = await self._wallet.load()
            return PaperWallet.from_dict(data) if data else None
        except _DECODE_ERRORS as exc:
            log_event(log, "state_restore_failed", level=logging.WARNING, what="paper_wallet", error=str(exc))
            return None

    async def save_paper_wallet(self, wallet: PaperWallet) -> bool:
        try:
            await self._wallet.save(wallet.to_dict())
            return True
        except PersistenceError as exc:
            self._failed("save_paper_wallet", exc)
            return False
