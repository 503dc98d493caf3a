"""
Tests for the Hyperliquid spot backend and the async SDK wrapper.
"""

import asyncio
import time
from decimal import Decimal

import pytest

from ethgrid.core.errors import ExecutionFailed, SlippageExceeded
from ethgrid.execution.live_exchange import HyperliquidSpotBackend, parse_order_response
from ethgrid.infra.async_execution import AsyncExchange
from ethgrid.strategy.levels import GridLevel, Side


def D(x) -> Decimal:
    return Decimal(str(x))


def filled(total_sz, avg_px, oid=77):
    return {
        "status": "ok",
        "response": {"type": "order", "data": {"statuses": [
            {"filled": {"totalSz": str(total_sz), "avgPx": str(avg_px), "oid": oid}}
        ]}},
    }


class MockExchange:
    """Stands in for AsyncExchange."""

    def __init__(self, response=None, exc=None, balances=None):
        self.response = response
        self.exc = exc
        self.orders = []
        self.balances = balances or {"balances": []}

    async def market_open(self, name, is_buy, sz, slippage):
        self.orders.append((name, is_buy, sz, slippage))
        if self.exc is not None:
            raise self.exc
        return self.response

    async def spot_user_state(self, address):
        return self.balances


def backend(exchange, tolerance="1.5") -> HyperliquidSpotBackend:
    return HyperliquidSpotBackend(
        exchange, pair="UETH/USDC", account_address="0xabc", slippage_tolerance_percent=D(tolerance)
    )


def buy_level(price="3000", qty="0.1"):
    return GridLevel(index=3, price=D(price), side=Side.BUY, quantity=D(qty))


def sell_level(price="3100", qty="0.1"):
    return GridLevel(index=6, price=D(price), side=Side.SELL, quantity=D(qty))


class TestParseOrderResponse:
    def test_filled(self):
        assert parse_order_response(filled("0.1", "3000"))["oid"] == 77

    @pytest.mark.parametrize("resp", [
        None,
        {"status": "err", "response": "insufficient margin"},
        {"status": "ok", "response": {"data": {"statuses": []}}},
        {"status": "ok", "response": {"data": {"statuses": [{"error": "min size"}]}}},
        {"status": "ok", "response": {"data": {"statuses": [{"resting": {"oid": 1}}]}}},
        {"status": "ok", "response": {}},
    ])
    def test_rejections(self, resp):
        with pytest.raises(ExecutionFailed):
            parse_order_response(resp)


class TestHyperliquidSpotBackend:
    @pytest.mark.asyncio
    async def test_buy(self):
        ex = MockExchange(filled("0.1", "3001"))
        result = await backend(ex).execute(buy_level(), D(3000))
        name, is_buy, sz, slippage = ex.orders[0]
        assert (name, is_buy) == ("UETH/USDC", True)
        assert sz == pytest.approx(0.1)
        assert slippage == pytest.approx(0.015)
        assert result.ref == "77"
        assert result.base_amount == D("0.1")
        assert result.quote_amount == D("300.1")
        assert not result.simulated
        assert result.slippage_percent > 0

    @pytest.mark.asyncio
    async def test_sell(self):
        ex = MockExchange(filled("0.1", "3099"))
        result = await backend(ex).execute(sell_level(), D(3100))
        assert ex.orders[0][1] is False
        assert ex.orders[0][2] == pytest.approx(0.1)
        assert result.quote_amount == D("309.9")
        assert result.base_amount == D("0.1")

    @pytest.mark.asyncio
    async def test_output_below_minimum(self):
        ex = MockExchange(filled("0.1", "3000"))
        with pytest.raises(SlippageExceeded):
            await backend(ex, tolerance="0.5").execute(sell_level(), D(3100))

    @pytest.mark.asyncio
    async def test_partial_buy_fill_below_minimum(self):
        ex = MockExchange(filled("0.05", "3000"))
        with pytest.raises(SlippageExceeded):
            await backend(ex).execute(buy_level(), D(3000))

    @pytest.mark.asyncio
    async def test_timeout_is_outcome_unknown(self):
        ex = MockExchange(exc=asyncio.TimeoutError())
        with pytest.raises(ExecutionFailed, match="outcome unknown"):
            await backend(ex).execute(buy_level(), D(3000))

    @pytest.mark.asyncio
    async def test_sdk_error(self):
        ex = MockExchange(exc=RuntimeError("connection reset"))
        with pytest.raises(ExecutionFailed):
            await backend(ex).execute(buy_level(), D(3000))

    @pytest.mark.asyncio
    async def test_size_rounds_down_to_zero(self):
        ex = MockExchange(filled("0", "3000"))
        with pytest.raises(ExecutionFailed):
            await backend(ex).execute(sell_level(qty="0.00001"), D(3100))
        assert ex.orders == []

    @pytest.mark.asyncio
    async def test_balances(self):
        ex = MockExchange(balances={"balances": [
            {"coin": "USDC", "total": "812.5"},
            {"coin": "UETH", "total": "0.42"},
            {"coin": "HYPE", "total": "3"},
        ]})
        balances = await backend(ex).balances()
        assert (balances.base, balances.quote) == (D("0.42"), D("812.5"))


class BlockingSDK:
    def __init__(self, delay=0.0, fail_times=0):
        self.delay = delay
        self.fail_times = fail_times
        self.calls = 0

    def market_open(self, name, is_buy, sz, px, slippage):
        self.calls += 1
        time.sleep(self.delay)
        return {"status": "ok", "name": name, "sz": sz}

    def spot_user_state(self, address):
        self.calls += 1
        if self.calls <= self.fail_times:
            raise ConnectionError("flaky")
        return {"balances": []}


class TestAsyncExchange:
    @pytest.mark.asyncio
    async def test_reads_are_retried(self):
        sdk = BlockingSDK(fail_times=1)
        ex = AsyncExchange(sdk, info=sdk, timeout=1.0)
        assert await ex.spot_user_state("0xabc") == {"balances": []}
        assert sdk.calls == 2
        await ex.close()

    @pytest.mark.asyncio
    async def test_orders_are_not_retried(self):
        sdk = BlockingSDK(delay=0.3)
        ex = AsyncExchange(sdk, info=sdk, timeout=0.05)
        with pytest.raises(asyncio.TimeoutError):
            await ex.market_open("UETH/USDC", True, 0.1, 0.015)
        assert sdk.calls == 1
        await ex.close()


class TestBalanceErrors:
    @pytest.mark.asyncio
    async def test_sdk_read_error_becomes_execution_failed(self):
        class FailingInfo(MockExchange):
            async def spot_user_state(self, address):
                raise TimeoutError("info endpoint timed out")

        with pytest.raises(ExecutionFailed, match="spot balance query failed"):
            await backend(FailingInfo()).balances()
