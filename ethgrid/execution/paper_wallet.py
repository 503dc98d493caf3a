"""
Paper trading: a virtual ETH/quote ledger plus the execution backend that
simulates fills against it.

PaperWallet is a plain ledger. Balance checks happen before any mutation, so
a rejected trade leaves every field untouched. PaperExecutionBackend adds the
market simulation on top: random adverse slippage from an injected
``random.Random`` and a flat gas estimate charged in ETH.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ethgrid.core.errors import InsufficientBalance
from ethgrid.core.utils import now_ms, to_decimal
from ethgrid.execution.backend import Balances, ExecutionResult
from ethgrid.infra.logging_cfg import LOGGER_NAME
from ethgrid.strategy.levels import GridLevel, Side

log = logging.getLogger(LOGGER_NAME)

ZERO = Decimal(0)
HUNDRED = Decimal(100)
DEFAULT_GAS_ETH = Decimal("0.005")


@dataclass(frozen=True)
class PaperTrade:
    """One simulated fill, with the balances right after it."""
    id: int
    timestamp: int
    side: Side
    grid_level: int
    trigger_price: Decimal
    execution_price: Decimal
    base_amount: Decimal
    quote_amount: Decimal
    slippage_percent: Decimal
    gas_cost: Decimal
    eth_after: Decimal
    quote_after: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "side": self.side.value,
            "grid_level": self.grid_level,
            "trigger_price": str(self.trigger_price),
            "execution_price": str(self.execution_price),
            "base_amount": str(self.base_amount),
            "quote_amount": str(self.quote_amount),
            "slippage_percent": str(self.slippage_percent),
            "gas_cost": str(self.gas_cost),
            "eth_after": str(self.eth_after),
            "quote_after": str(self.quote_after),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaperTrade":
        return cls(
            id=int(data["id"]),
            timestamp=int(data["timestamp"]),
            side=Side(data["side"]),
            grid_level=int(data["grid_level"]),
            trigger_price=to_decimal(data["trigger_price"]),
            execution_price=to_decimal(data["execution_price"]),
            base_amount=to_decimal(data["base_amount"]),
            quote_amount=to_decimal(data["quote_amount"]),
            slippage_percent=to_decimal(data["slippage_percent"]),
            gas_cost=to_decimal(data["gas_cost"]),
            eth_after=to_decimal(data["eth_after"]),
            quote_after=to_decimal(data["quote_after"]),
        )


@dataclass(frozen=True)
class PaperStats:
    initial_eth: Decimal
    initial_quote: Decimal
    current_eth: Decimal
    current_quote: Decimal
    initial_value_usd: Decimal
    current_value_usd: Decimal
    unrealized_pnl: Decimal
    unrealized_pnl_percent: Decimal
    total_trades: int
    buy_trades: int
    sell_trades: int
    total_gas_spent: Decimal
    gas_spent_usd: Decimal
    running_hours: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            k: (str(v) if isinstance(v, Decimal) else v)
            for k, v in self.__dict__.items()
        }


@dataclass
class PaperWallet:
    """Virtual balances and simulated trade history."""
    initial_eth: Decimal
    initial_quote: Decimal
    eth_balance: Decimal = None  # type: ignore[assignment]
    quote_balance: Decimal = None  # type: ignore[assignment]
    total_gas_spent: Decimal = ZERO
    trades: List[PaperTrade] = field(default_factory=list)
    start_time: int = field(default_factory=now_ms)

    def __post_init__(self) -> None:
        self.initial_eth = to_decimal(self.initial_eth)
        self.initial_quote = to_decimal(self.initial_quote)
        if self.initial_eth < 0 or self.initial_quote < 0:
            raise ValueError("initial paper balances must be non-negative")
        self.eth_balance = self.initial_eth if self.eth_balance is None else to_decimal(self.eth_balance)
        self.quote_balance = self.initial_quote if self.quote_balance is None else to_decimal(self.quote_balance)
        self.total_gas_spent = to_decimal(self.total_gas_spent)

    def execute_buy(self, quote_amount: Decimal, base_amount: Decimal) -> None:
        """Spend ``quote_amount``, receive ``base_amount``."""
        if self.quote_balance < quote_amount:
            raise InsufficientBalance("quote", self.quote_balance, quote_amount)
        self.quote_balance -= quote_amount
        self.eth_balance += base_amount

    def execute_sell(self, base_amount: Decimal, quote_amount: Decimal) -> None:
        """Spend ``base_amount``, receive ``quote_amount``."""
        if self.eth_balance < base_amount:
            raise InsufficientBalance("ETH", self.eth_balance, base_amount)
        self.eth_balance -= base_amount
        self.quote_balance += quote_amount

    def deduct_gas(self, amount: Decimal) -> None:
        self.eth_balance -= amount
        self.total_gas_spent += amount

    def record_trade(self, **fields: Any) -> PaperTrade:
        trade = PaperTrade(
            id=len(self.trades) + 1,
            timestamp=fields.pop("timestamp", None) or now_ms(),
            eth_after=self.eth_balance,
            quote_after=self.quote_balance,
            **fields,
        )
        self.trades.append(trade)
        return trade

    def get_stats(self, current_price: Decimal, at_ms: Optional[int] = None) -> PaperStats:
        price = to_decimal(current_price)
        initial_value = self.initial_eth * price + self.initial_quote
        current_value = self.eth_balance * price + self.quote_balance
        pnl = current_value - initial_value
        pnl_pct = pnl / initial_value * HUNDRED if initial_value > 0 else ZERO
        elapsed_ms = (at_ms if at_ms is not None else now_ms()) - self.start_time
        return PaperStats(
            initial_eth=self.initial_eth,
            initial_quote=self.initial_quote,
            current_eth=self.eth_balance,
            current_quote=self.quote_balance,
            initial_value_usd=initial_value,
            current_value_usd=current_value,
            unrealized_pnl=pnl,
            unrealized_pnl_percent=pnl_pct,
            total_trades=len(self.trades),
            buy_trades=sum(1 for t in self.trades if t.side is Side.BUY),
            sell_trades=sum(1 for t in self.trades if t.side is Side.SELL),
            total_gas_spent=self.total_gas_spent,
            gas_spent_usd=self.total_gas_spent * price,
            running_hours=max(elapsed_ms, 0) / 3_600_000,
        )

    def reset(self) -> None:
        self.eth_balance = self.initial_eth
        self.quote_balance = self.initial_quote
        self.trades = []
        self.total_gas_spent = ZERO
        self.start_time = now_ms()
        log.info("Paper wallet reset to initial state")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initial_eth": str(self.initial_eth),
            "initial_quote": str(self.initial_quote),
            "eth_balance": str(self.eth_balance),
            "quote_balance": str(self.quote_balance),
            "total_gas_spent": str(self.total_gas_spent),
            "trades": [t.to_dict() for t in self.trades],
            "start_time": self.start_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaperWallet":
        return cls(
            initial_eth=to_decimal(data["initial_eth"]),
            initial_quote=to_decimal(data["initial_quote"]),
            eth_balance=to_decimal(data["eth_balance"]),
            quote_balance=to_decimal(data["quote_balance"]),
            total_gas_spent=to_decimal(data.get("total_gas_spent", "0")),
            trades=[PaperTrade.from_dict(t) for t in data.get("trades", [])],
            start_time=int(data.get("start_time") or now_ms()),
        )


def estimate_gas_eth(gas_price_gwei: Decimal, multiplier: Decimal, gas_limit: int) -> Decimal:
    """Gas cost in ETH for one swap: price (gwei) * multiplier * limit."""
    return to_decimal(gas_price_gwei) * to_decimal(multiplier) * gas_limit / Decimal(10) ** 9


class PaperExecutionBackend:
    """
    Simulated fills against a PaperWallet.

    Buy: spend ``quantity * price`` quote, receive ``quantity * (1 - slip)``
    ETH. Sell: spend ``quantity`` ETH, receive ``quantity * price * (1 - slip)``
    quote. Gas is charged in ETH on both sides. All balance checks run before
    the wallet is touched.
    """

    simulated = True

    def __init__(
        self,
        wallet: PaperWallet,
        max_slippage_percent: Decimal = Decimal("0.5"),
        rng: Optional[random.Random] = None,
        gas_estimator: Optional[Callable[[], Decimal]] = None,
        persist: Optional[Callable[[PaperWallet], Awaitable[None]]] = None,
    ) -> None:
        self.wallet = wallet
        self.max_slippage_percent = to_decimal(max_slippage_percent)
        self.rng = rng or random.Random()
        self._gas_estimator = gas_estimator
        self._persist = persist

    def draw_slippage_percent(self) -> Decimal:
        """Uniform in [0, max_slippage_percent]."""
        if self.max_slippage_percent <= 0:
            return ZERO
        return to_decimal(self.rng.uniform(0.0, float(self.max_slippage_percent)))

    def estimate_gas(self) -> Decimal:
        if self._gas_estimator is None:
            return ZERO
        try:
            return to_decimal(self._gas_estimator())
        except Exception as exc:
            log.warning("Gas estimate failed, using default %s ETH: %s", DEFAULT_GAS_ETH, exc)
            return DEFAULT_GAS_ETH

    async def balances(self) -> Balances:
        return Balances(base=self.wallet.eth_balance, quote=self.wallet.quote_balance)

    async def execute(self, level: GridLevel, price: Decimal) -> ExecutionResult:
        slip_pct = self.draw_slippage_percent()
        slip = slip_pct / HUNDRED
        gas = self.estimate_gas()
        wallet = self.wallet

        if level.side is Side.BUY:
            base_out = level.quantity * (1 - slip)
            quote_in = level.quantity * price
            if wallet.quote_balance < quote_in:
                raise InsufficientBalance("quote", wallet.quote_balance, quote_in)
            if wallet.eth_balance + base_out < gas:
                raise InsufficientBalance("ETH", wallet.eth_balance + base_out, gas)
            wallet.execute_buy(quote_in, base_out)
            base_amount, quote_amount = base_out, quote_in
        else:
            base_in = level.quantity
            quote_out = level.quantity * price * (1 - slip)
            if wallet.eth_balance < base_in + gas:
                raise InsufficientBalance("ETH", wallet.eth_balance, base_in + gas)
            wallet.execute_sell(base_in, quote_out)
            base_amount, quote_amount = base_in, quote_out
        wallet.deduct_gas(gas)

        trade = wallet.record_trade(
            side=level.side,
            grid_level=level.index,
            trigger_price=level.price,
            execution_price=price,
            base_amount=base_amount,
            quote_amount=quote_amount,
            slippage_percent=slip_pct,
            gas_cost=gas,
        )
        log.info(
            "[PAPER] %s executed: %.6f ETH / %.2f quote (slippage %.3f%%, gas %.6f ETH)",
            level.side.value.upper(), base_amount, quote_amount, slip_pct, gas,
        )
        if self._persist is not None:
            await self._persist(wallet)

        return ExecutionResult(
            side=level.side,
            ref=f"paper-{trade.id}",
            base_amount=base_amount,
            quote_amount=quote_amount,
            price=price,
            gas_cost=gas,
            slippage_percent=slip_pct,
            simulated=True,
        )
