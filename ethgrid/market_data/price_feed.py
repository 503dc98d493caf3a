"""
ETH/USD spot price source backed by the CoinGecko simple-price endpoint.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

import httpx

from ethgrid.core.errors import PriceUnavailable
from ethgrid.core.utils import to_decimal

COINGECKO_URL = "https://api.coingecko.com/api/v3"


class CoinGeckoPriceSource:
    """
    Fetch the current ETH price in USD.

    Prices outside ``[price_min, price_max]`` are rejected as bad data so the
    engine never trades on a glitch. Every failure surfaces as
    PriceUnavailable; the caller keeps its last good price.
    """

    def __init__(
        self,
        base_url: str = COINGECKO_URL,
        coin_id: str = "ethereum",
        vs_currency: str = "usd",
        price_min: Decimal = Decimal(100),
        price_max: Decimal = Decimal(100000),
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.coin_id = coin_id
        self.vs_currency = vs_currency
        self.price_min = to_decimal(price_min)
        self.price_max = to_decimal(price_max)
        # A shared client is not closed by close(); our own client is.
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(base_url=self.base_url, http2=True, timeout=timeout)
            self._owns_client = True
        self.last_price: Optional[Decimal] = None

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def fetch(self) -> Decimal:
        params = {"ids": self.coin_id, "vs_currencies": self.vs_currency}
        try:
            resp = await self.client.get(f"{self.base_url}/simple/price", params=params)
            resp.raise_for_status()
            data: Any = resp.json(parse_float=Decimal)
        except (httpx.HTTPError, ValueError) as exc:
            raise PriceUnavailable(f"price request failed: {exc}") from exc

        try:
            price = to_decimal(data[self.coin_id][self.vs_currency])
        except (KeyError, TypeError, ValueError) as exc:
            raise PriceUnavailable(f"unexpected price payload: {data!r}") from exc

        self.check_bounds(price)
        self.last_price = price
        return price

    def check_bounds(self, price: Decimal) -> None:
        if not price.is_finite() or price < self.price_min or price > self.price_max:
            raise PriceUnavailable(
                f"price {price} failed sanity check [{self.price_min}, {self.price_max}]"
            )
