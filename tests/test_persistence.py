"""
Tests for the JSON stores and the best-effort persistence facade.
"""

import json
from decimal import Decimal

import pytest

from fakes import signal
from ethgrid.core.errors import PersistenceError
from ethgrid.execution.paper_wallet import PaperWallet
from ethgrid.state.persistence import JsonPersistence
from ethgrid.state.records import EngineState, SRRecord, TradeRecord
from ethgrid.state.state_store import StateStore
from ethgrid.strategy.grid_calculator import build_ladder
from ethgrid.strategy.levels import Side


def D(x) -> Decimal:
    return Decimal(str(x))


def trade(level: int, side=Side.BUY) -> TradeRecord:
    return TradeRecord(
        timestamp_ms=1_700_000_000_000 + level,
        side=side,
        price=D("2990.5"),
        quantity=D("0.0334"),
        grid_level=level,
        usd_value=D("99.88"),
        execution_ref=f"paper-{level}",
        simulated=True,
    )


class TestStateStore:
    def test_missing_file_loads_none(self, tmp_path):
        assert StateStore(tmp_path / "x.json").load() is None

    def test_save_replaces_atomically(self, tmp_path):
        store = StateStore(tmp_path / "x.json")
        store.save({"a": 1})
        store.save({"a": 2})
        assert store.load() == {"a": 2}
        assert not store.tmp.exists()

    def test_corrupt_document_raises(self, tmp_path):
        path = tmp_path / "x.json"
        path.write_text("{not json")
        with pytest.raises(PersistenceError):
            StateStore(path).load()

    def test_tail_skips_corrupt_lines(self, tmp_path):
        store = StateStore(tmp_path / "log.jsonl")
        store.append({"n": 1})
        with store.path.open("a") as fh:
            fh.write("garbage\n")
        store.append({"n": 2})
        store.append({"n": 3})
        assert store.tail(2) == [{"n": 2}, {"n": 3}]
        assert store.tail(10) == [{"n": 1}, {"n": 2}, {"n": 3}]


class TestJsonPersistence:
    @pytest.mark.asyncio
    async def test_engine_state_survives_restart(self, tmp_path):
        ladder = build_ladder(D(3050), 10, D(2), D(100))
        ladder[2].mark_filled(1234, "paper-7")
        state = EngineState(
            ladder=ladder,
            base_price=D(3050),
            last_observed_price=D("2801.15"),
            trades_executed=7,
            total_profit=D("12.5"),
            running=True,
        )
        assert await JsonPersistence(str(tmp_path)).save_state(state)

        restored = await JsonPersistence(str(tmp_path)).load_state()
        assert restored.ladder.to_list() == ladder.to_list()
        assert restored.base_price == D(3050)
        assert restored.last_observed_price == D("2801.15")
        assert restored.trades_executed == 7
        assert restored.total_profit == D("12.5")

    @pytest.mark.asyncio
    async def test_state_file_uses_grid_key(self, tmp_path):
        persistence = JsonPersistence(str(tmp_path))
        await persistence.save_state(EngineState(ladder=build_ladder(D(3000), 4, D(1), D(10))))
        data = json.loads((tmp_path / "engine_state.json").read_text())
        assert len(data["grid"]) == 4
        assert isinstance(data["grid"][0]["price"], str)

    @pytest.mark.asyncio
    async def test_corrupt_state_is_treated_as_missing(self, tmp_path):
        (tmp_path / "engine_state.json").write_text("][")
        assert await JsonPersistence(str(tmp_path)).load_state() is None

    @pytest.mark.asyncio
    async def test_trade_history(self, persistence):
        for i in range(5):
            assert await persistence.record_trade(trade(i))
        recent = await persistence.recent_trades(limit=3)
        assert [t.grid_level for t in recent] == [2, 3, 4]
        assert recent[-1] == trade(4)

    @pytest.mark.asyncio
    async def test_latest_sr(self, persistence):
        assert await persistence.latest_sr() is None
        await persistence.record_sr(SRRecord(signal=signal(3100), grid_recalculated=True))
        await persistence.record_sr(SRRecord(signal=signal(3145), grid_recalculated=False))
        latest = await persistence.latest_sr()
        assert latest.midpoint == D(3145)
        assert latest.grid_recalculated is False
        assert latest.signal.support == D(3045)

    @pytest.mark.asyncio
    async def test_paper_wallet(self, persistence):
        assert await persistence.load_paper_wallet() is None
        wallet = PaperWallet(initial_eth=D(1), initial_quote=D(1000))
        wallet.execute_buy(D(100), D("0.033"))
        await persistence.save_paper_wallet(wallet)
        restored = await persistence.load_paper_wallet()
        assert restored.eth_balance == D("1.033")
        assert restored.quote_balance == D(900)
        assert restored.start_time == wallet.start_time

    @pytest.mark.asyncio
    async def test_write_failure_is_swallowed(self, tmp_path):
        persistence = JsonPersistence(str(tmp_path))
        # A directory where the state file should be makes the rename fail.
        (tmp_path / "engine_state.json").mkdir()
        ok = await persistence.save_state(EngineState())
        assert ok is False
        assert persistence.write_errors == 1
