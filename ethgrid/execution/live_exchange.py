"""
Live execution on the Hyperliquid spot market.

``swap`` is the raw primitive: one IOC market order bounded by the SDK's
slippage parameter. ``execute`` turns a triggered grid level into a swap with
a minimum acceptable output derived from the configured slippage tolerance.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict, Optional

from ethgrid.core.errors import ExecutionFailed, SlippageExceeded
from ethgrid.core.utils import to_decimal
from ethgrid.execution.backend import Balances, ExecutionResult
from ethgrid.infra.logging_cfg import LOGGER_NAME
from ethgrid.strategy.levels import GridLevel, Side

log = logging.getLogger(LOGGER_NAME)

HUNDRED = Decimal(100)


@dataclass(frozen=True)
class SwapResult:
    ref: Optional[str]
    amount_out: Decimal
    amount_in: Optional[Decimal] = None
    avg_price: Optional[Decimal] = None


def parse_order_response(resp: Any) -> Dict[str, Any]:
    """
    Pull the fill out of an SDK order response.

    Raises ExecutionFailed for rejected orders, resting (unfilled) orders and
    anything that does not look like an order response.
    """
    if not isinstance(resp, dict) or resp.get("status") != "ok":
        raise ExecutionFailed(f"order rejected: {resp!r}")
    try:
        statuses = resp["response"]["data"]["statuses"]
    except (KeyError, TypeError) as exc:
        raise ExecutionFailed(f"malformed order response: {resp!r}") from exc
    if not statuses:
        raise ExecutionFailed("order response has no statuses")
    status = statuses[0]
    if "error" in status:
        raise ExecutionFailed(f"order error: {status['error']}")
    filled = status.get("filled")
    if not filled:
        raise ExecutionFailed(f"market order did not fill: {status!r}")
    return filled


class HyperliquidSpotBackend:
    """
    Live backend for one spot pair (e.g. ``UETH/USDC``).

    Args:
        exchange: AsyncExchange wrapping the SDK Exchange/Info
        pair: SDK spot name
        account_address: address whose spot balances are reported
        slippage_tolerance_percent: worst accepted shortfall versus the
            observed price, also passed to the SDK as the IOC price band
        sz_decimals: size precision of the base token
    """

    simulated = False

    def __init__(
        self,
        exchange,
        pair: str,
        account_address: Optional[str],
        slippage_tolerance_percent: Decimal = Decimal("1.5"),
        sz_decimals: int = 4,
        base_token: str = "UETH",
        quote_token: str = "USDC",
    ) -> None:
        self.exchange = exchange
        self.pair = pair
        self.account_address = account_address
        self.tolerance = to_decimal(slippage_tolerance_percent) / HUNDRED
        self.sz_step = Decimal(1).scaleb(-sz_decimals)
        self.base_token = base_token
        self.quote_token = quote_token
        # one in-flight order at a time
        self._order_lock = asyncio.Lock()

    def round_size(self, sz: Decimal) -> Decimal:
        return sz.quantize(self.sz_step, rounding=ROUND_DOWN)

    async def swap(self, side: Side, amount_in: Decimal, min_amount_out: Decimal) -> SwapResult:
        """
        Swap ``amount_in`` of the input asset.

        Buy: ``amount_in`` is quote; the base size ordered is the expected
        output, ``min_amount_out`` grossed up by the tolerance. Sell:
        ``amount_in`` is base and is the order size.
        """
        if side is Side.BUY:
            sz = self.round_size(min_amount_out / (1 - self.tolerance))
        else:
            sz = self.round_size(amount_in)
        if sz <= 0:
            raise ExecutionFailed(f"order size rounds to zero ({amount_in} {side.value})")

        async with self._order_lock:
            try:
                resp = await self.exchange.market_open(
                    self.pair, side is Side.BUY, float(sz), float(self.tolerance)
                )
            except asyncio.TimeoutError as exc:
                raise ExecutionFailed(f"order timed out, outcome unknown: {self.pair} {side.value} {sz}") from exc
            except Exception as exc:
                raise ExecutionFailed(f"order failed: {exc}") from exc

        filled = parse_order_response(resp)
        total_sz = to_decimal(str(filled.get("totalSz", "0")))
        avg_px = to_decimal(str(filled.get("avgPx", "0")))
        ref = str(filled["oid"]) if filled.get("oid") is not None else None

        if side is Side.BUY:
            amount_out = total_sz
            spent = total_sz * avg_px
        else:
            amount_out = total_sz * avg_px
            spent = total_sz

        if amount_out < min_amount_out:
            raise SlippageExceeded(
                f"{side.value} returned {amount_out}, below minimum {min_amount_out} (oid {ref})"
            )
        return SwapResult(ref=ref, amount_out=amount_out, amount_in=spent, avg_price=avg_px)

    async def execute(self, level: GridLevel, price: Decimal) -> ExecutionResult:
        if level.side is Side.BUY:
            quote_in = level.quantity * price
            res = await self.swap(Side.BUY, quote_in, level.quantity * (1 - self.tolerance))
            base_amount = res.amount_out
            quote_amount = res.amount_in if res.amount_in is not None else quote_in
        else:
            expected = level.quantity * price
            res = await self.swap(Side.SELL, level.quantity, expected * (1 - self.tolerance))
            base_amount = res.amount_in if res.amount_in is not None else level.quantity
            quote_amount = res.amount_out

        slip_pct = Decimal(0)
        if res.avg_price and price > 0:
            drift = (res.avg_price - price) / price * HUNDRED
            slip_pct = drift if level.side is Side.BUY else -drift

        log.info(
            "[LIVE] %s filled: %s %s @ %s (oid %s)",
            level.side.value.upper(), base_amount, self.base_token, res.avg_price, res.ref,
        )
        return ExecutionResult(
            side=level.side,
            ref=res.ref,
            base_amount=base_amount,
            quote_amount=quote_amount,
            price=price,
            slippage_percent=slip_pct,
            simulated=False,
        )

    async def balances(self) -> Balances:
        if not self.account_address:
            raise ExecutionFailed("no account address configured")
        try:
            state = await self.exchange.spot_user_state(self.account_address)
        except Exception as exc:
            raise ExecutionFailed(f"spot balance query failed: {exc!r}") from exc
        base = quote = Decimal(0)
        for bal in (state or {}).get("balances", []):
            if bal.get("coin") == self.base_token:
                base = to_decimal(str(bal.get("total", "0")))
            elif bal.get("coin") == self.quote_token:
                quote = to_decimal(str(bal.get("total", "0")))
        return Balances(base=base, quote=quote)
