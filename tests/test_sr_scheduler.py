"""
Tests for the recalculation scheduler.

Tests cover:
- C1 midpoint drift against the last persisted record
- C2 price breakout outside the ladder
- C3 one side fully filled
- Persisted history tagging and fetch failures
"""

import asyncio
from decimal import Decimal
from typing import List, Optional

import pytest

from fakes import FakeSRSource, signal
from ethgrid.scheduler.sr_scheduler import (
    REASON_BREAKOUT,
    REASON_BUYS_EXHAUSTED,
    REASON_DRIFT,
    REASON_SELLS_EXHAUSTED,
    RecalculationScheduler,
    evaluate_recalculation,
)
from ethgrid.state.records import SRRecord
from ethgrid.strategy.grid_calculator import build_ladder
from ethgrid.strategy.levels import Ladder, Side


def D(x) -> Decimal:
    return Decimal(str(x))


class MockView:
    def __init__(self, ladder: Optional[Ladder] = None, last_price: Optional[Decimal] = None):
        self.ladder = ladder if ladder is not None else Ladder()
        self.last_price = last_price


class MockRebuild:
    def __init__(self, fail: Optional[Exception] = None):
        self.calls: List[tuple] = []
        self.fail = fail

    async def __call__(self, sr, reasons):
        self.calls.append((sr, list(reasons)))
        if self.fail is not None:
            raise self.fail


def ladder_2812_3429() -> Ladder:
    ladder = build_ladder(D(3105), 10, D(2), D(100))
    assert float(ladder.lowest_price) == pytest.approx(2812.3, abs=1)
    assert float(ladder.highest_price) == pytest.approx(3428.2, abs=1)
    return ladder


class TestEvaluateRecalculation:
    def test_c1_fires_at_threshold(self):
        decision = evaluate_recalculation(D(3255), D(3100), None, None, D(5))
        assert decision.reasons == [REASON_DRIFT]
        assert decision.change_percent == D(5)

    def test_c1_quiet_below_threshold(self):
        decision = evaluate_recalculation(D(3145), D(3100), None, None, D(5))
        assert not decision.should_rebuild
        assert float(decision.change_percent) == pytest.approx(1.45, abs=0.01)

    def test_missing_previous_record_counts_as_changed(self):
        decision = evaluate_recalculation(D(3100), None, None, None, D(5))
        assert REASON_DRIFT in decision.reasons

    def test_c2_breakout_below(self):
        ladder = ladder_2812_3429()
        decision = evaluate_recalculation(D(3105), D(3105), ladder, D(2700), D(5))
        assert decision.reasons == [REASON_BREAKOUT]

    def test_c2_inside_range_quiet(self):
        ladder = ladder_2812_3429()
        decision = evaluate_recalculation(D(3105), D(3105), ladder, D(3000), D(5))
        assert not decision.should_rebuild

    def test_c3_buys_exhausted(self):
        ladder = build_ladder(D(3000), 6, D(2), D(100))
        for lvl in ladder.levels_for(Side.BUY):
            lvl.mark_filled(1, None)
        decision = evaluate_recalculation(D(3000), D(3000), ladder, D(2950), D(5))
        assert decision.reasons == [REASON_BUYS_EXHAUSTED]

    def test_c3_sells_exhausted(self):
        ladder = build_ladder(D(3000), 6, D(2), D(100))
        for lvl in ladder.levels_for(Side.SELL):
            lvl.mark_filled(1, None)
        decision = evaluate_recalculation(D(3000), D(3000), ladder, D(3050), D(5))
        assert decision.reasons == [REASON_SELLS_EXHAUSTED]

    def test_all_firing_reasons_reported(self):
        ladder = ladder_2812_3429()
        for lvl in ladder.levels_for(Side.BUY):
            lvl.mark_filled(1, None)
        decision = evaluate_recalculation(D(2600), D(3105), ladder, D(2700), D(5))
        assert decision.reasons == [REASON_DRIFT, REASON_BREAKOUT, REASON_BUYS_EXHAUSTED]
        assert len(decision.details) == 3

    def test_empty_ladder_only_checks_drift(self):
        decision = evaluate_recalculation(D(3000), D(3000), Ladder(), D(2000), D(5))
        assert not decision.should_rebuild


class TestRecalculationScheduler:
    @pytest.mark.asyncio
    async def test_drift_triggers_rebuild_and_is_persisted(self, persistence):
        await persistence.record_sr(SRRecord(signal=signal(3100), grid_recalculated=True))
        rebuild = MockRebuild()
        sched = RecalculationScheduler(
            sr_source=FakeSRSource([signal(3255)]),
            engine_view=MockView(),
            rebuild=rebuild,
            persistence=persistence,
            threshold_percent=D(5),
        )
        decision = await sched.run_once()
        assert decision.reasons == [REASON_DRIFT]
        assert len(rebuild.calls) == 1
        assert rebuild.calls[0][0].midpoint == D(3255)
        latest = await persistence.latest_sr()
        assert latest.midpoint == D(3255)
        assert latest.grid_recalculated is True

    @pytest.mark.asyncio
    async def test_no_change_still_records_signal(self, persistence):
        await persistence.record_sr(SRRecord(signal=signal(3100), grid_recalculated=True))
        rebuild = MockRebuild()
        sched = RecalculationScheduler(
            sr_source=FakeSRSource([signal(3145)]),
            engine_view=MockView(build_ladder(D(3100), 10, D(2), D(100)), D(3120)),
            rebuild=rebuild,
            persistence=persistence,
        )
        decision = await sched.run_once()
        assert not decision.should_rebuild
        assert rebuild.calls == []
        latest = await persistence.latest_sr()
        assert latest.midpoint == D(3145)
        assert latest.grid_recalculated is False

    @pytest.mark.asyncio
    async def test_compares_against_persisted_not_fetched(self, persistence):
        # Two small moves in a row: each is compared to the record before it.
        await persistence.record_sr(SRRecord(signal=signal(3100), grid_recalculated=True))
        rebuild = MockRebuild()
        sched = RecalculationScheduler(
            sr_source=FakeSRSource([signal(3200), signal(3300)]),
            engine_view=MockView(),
            rebuild=rebuild,
            persistence=persistence,
        )
        first = await sched.run_once()
        second = await sched.run_once()
        assert not first.should_rebuild
        assert not second.should_rebuild
        assert float(second.change_percent) == pytest.approx(3.125)

    @pytest.mark.asyncio
    async def test_breakout_triggers_rebuild(self, persistence):
        await persistence.record_sr(SRRecord(signal=signal(3105), grid_recalculated=True))
        rebuild = MockRebuild()
        sched = RecalculationScheduler(
            sr_source=FakeSRSource([signal(3105)]),
            engine_view=MockView(ladder_2812_3429(), D(2700)),
            rebuild=rebuild,
            persistence=persistence,
        )
        decision = await sched.run_once()
        assert decision.reasons == [REASON_BREAKOUT]
        assert rebuild.calls[0][1] == [REASON_BREAKOUT]

    @pytest.mark.asyncio
    async def test_forces_refresh(self, persistence):
        source = FakeSRSource([signal(3100)])
        sched = RecalculationScheduler(source, MockView(), MockRebuild(), persistence)
        await sched.run_once()
        assert source.calls == [True]

    @pytest.mark.asyncio
    async def test_fetch_failure_skips_firing(self, persistence):
        rebuild = MockRebuild()
        sched = RecalculationScheduler(FakeSRSource([None]), MockView(), rebuild, persistence)
        assert await sched.run_once() is None
        assert rebuild.calls == []
        assert await persistence.latest_sr() is None

    @pytest.mark.asyncio
    async def test_rebuild_failure_is_contained(self, persistence):
        rebuild = MockRebuild(fail=RuntimeError("boom"))
        sched = RecalculationScheduler(FakeSRSource([signal(3100)]), MockView(), rebuild, persistence)
        decision = await sched.run_once()
        assert decision.should_rebuild
        assert len(rebuild.calls) == 1

    @pytest.mark.asyncio
    async def test_start_fires_immediately_and_stop(self, persistence):
        rebuild = MockRebuild()
        source = FakeSRSource([signal(3100)])
        sched = RecalculationScheduler(source, MockView(), rebuild, persistence, interval=3600)
        sched.start()
        for _ in range(50):
            if sched.firings:
                break
            await asyncio.sleep(0.01)
        await sched.stop()
        assert sched.firings == 1
        assert not sched.running

    def test_rejects_non_positive_interval(self, persistence):
        from ethgrid.core.errors import InvalidConfiguration

        with pytest.raises(InvalidConfiguration):
            RecalculationScheduler(FakeSRSource([signal(3100)]), MockView(), MockRebuild(), persistence, interval=0)
