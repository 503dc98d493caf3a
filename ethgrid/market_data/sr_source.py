"""
Support/resistance signal and its Dune Analytics source.

The signal is opaque upstream input: this module only fetches, validates and
caches it. Whether the range is a good place to center a grid is not our
concern here.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from ethgrid.core.errors import SignalUnavailable
from ethgrid.core.utils import now_ms, optional_decimal, to_decimal
from ethgrid.infra.logging_cfg import LOGGER_NAME

log = logging.getLogger(LOGGER_NAME)

DUNE_URL = "https://api.dune.com/api/v1"
SR_METHODS = ("simple", "percentile")


@dataclass(frozen=True)
class SRSignal:
    """Support/resistance range. Midpoint defaults to the range center."""
    support: Decimal
    resistance: Decimal
    midpoint: Optional[Decimal] = None
    avg_price: Optional[Decimal] = None
    method: str = "simple"
    lookback_days: int = 0
    fetched_at: int = field(default_factory=now_ms)

    def __post_init__(self) -> None:
        support = to_decimal(self.support)
        resistance = to_decimal(self.resistance)
        if not support.is_finite() or not resistance.is_finite():
            raise SignalUnavailable("support/resistance must be finite")
        if support >= resistance:
            raise SignalUnavailable(f"invalid S/R range: support {support} >= resistance {resistance}")
        object.__setattr__(self, "support", support)
        object.__setattr__(self, "resistance", resistance)
        if self.midpoint is None:
            object.__setattr__(self, "midpoint", (support + resistance) / 2)
        else:
            object.__setattr__(self, "midpoint", to_decimal(self.midpoint))
        if self.avg_price is not None:
            object.__setattr__(self, "avg_price", to_decimal(self.avg_price))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "support": str(self.support),
            "resistance": str(self.resistance),
            "midpoint": str(self.midpoint),
            "avg_price": None if self.avg_price is None else str(self.avg_price),
            "method": self.method,
            "lookback_days": self.lookback_days,
            "fetched_at": self.fetched_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SRSignal":
        return cls(
            support=to_decimal(data["support"]),
            resistance=to_decimal(data["resistance"]),
            midpoint=optional_decimal(data.get("midpoint")),
            avg_price=optional_decimal(data.get("avg_price")),
            method=data.get("method", "simple"),
            lookback_days=int(data.get("lookback_days", 0)),
            fetched_at=int(data.get("fetched_at") or now_ms()),
        )


def fallback_signal(price: Decimal) -> SRSignal:
    """Synthetic +/-10% range around ``price`` for when the upstream source is down."""
    p = to_decimal(price)
    if p <= 0:
        raise SignalUnavailable("no price available for fallback signal")
    return SRSignal(
        support=p * Decimal("0.9"),
        resistance=p * Decimal("1.1"),
        midpoint=p,
        avg_price=p,
        method="fallback",
        lookback_days=0,
    )


def build_sr_query(method: str, lookback_days: int) -> str:
    """SQL for the S/R window over Dune's ``prices.usd`` WETH series."""
    if method == "percentile":
        # Percentiles drop extreme wicks
        return f"""
            SELECT
                approx_percentile(price, 0.05) as support,
                approx_percentile(price, 0.95) as resistance,
                approx_percentile(price, 0.50) as midpoint,
                AVG(price) as avg_price,
                MIN(price) as absolute_low,
                MAX(price) as absolute_high
            FROM prices.usd
            WHERE symbol = 'WETH'
                AND blockchain = 'ethereum'
                AND minute > now() - interval '{int(lookback_days)}' day
        """
    return f"""
        SELECT
            MIN(price) as support,
            MAX(price) as resistance,
            (MIN(price) + MAX(price)) / 2 as midpoint,
            AVG(price) as avg_price
        FROM prices.usd
        WHERE symbol = 'WETH'
            AND blockchain = 'ethereum'
            AND minute > now() - interval '{int(lookback_days)}' day
    """


class DuneSRSource:
    """
    S/R source over the Dune query API: execute, poll status, fetch results.

    Successful results are cached for ``refresh_hours``; ``force_refresh``
    bypasses the cache. Any transport, query or validation failure raises
    SignalUnavailable.
    """

    def __init__(
        self,
        api_key: Optional[str],
        method: str = "simple",
        lookback_days: int = 14,
        refresh_hours: float = 48.0,
        base_url: str = DUNE_URL,
        poll_interval: float = 2.0,
        max_polls: int = 30,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if method not in SR_METHODS:
            raise ValueError(f"unknown S/R method {method!r}")
        self.api_key = api_key
        self.method = method
        self.lookback_days = lookback_days
        self.cache_valid_sec = refresh_hours * 3600
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(base_url=self.base_url, http2=True, timeout=timeout)
            self._owns_client = True
        self._cached: Optional[SRSignal] = None
        self._cached_at: Optional[float] = None

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    @property
    def cached(self) -> Optional[SRSignal]:
        return self._cached

    def needs_refresh(self) -> bool:
        if self._cached is None or self._cached_at is None:
            return True
        return time.monotonic() - self._cached_at >= self.cache_valid_sec

    async def fetch(self, force_refresh: bool = False) -> SRSignal:
        if not force_refresh and not self.needs_refresh():
            return self._cached  # type: ignore[return-value]

        rows = await self._execute(build_sr_query(self.method, self.lookback_days))
        if not rows:
            raise SignalUnavailable("Dune returned no data for S/R query")

        row = rows[0]
        try:
            signal = SRSignal(
                support=to_decimal(row["support"]),
                resistance=to_decimal(row["resistance"]),
                midpoint=to_decimal(row["midpoint"]),
                avg_price=optional_decimal(row.get("avg_price")),
                method=self.method,
                lookback_days=self.lookback_days,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise SignalUnavailable(f"invalid S/R data from Dune: {row!r}") from exc

        self._cached = signal
        self._cached_at = time.monotonic()
        log.info(
            "S/R fetched: support=%s resistance=%s midpoint=%s method=%s lookback=%sd",
            signal.support, signal.resistance, signal.midpoint, signal.method, signal.lookback_days,
        )
        return signal

    def _headers(self) -> Dict[str, str]:
        return {"X-Dune-API-Key": self.api_key or ""}

    async def _execute(self, sql: str) -> List[Dict[str, Any]]:
        if not self.api_key:
            raise SignalUnavailable("Dune API key not configured")
        try:
            resp = await self.client.post(
                f"{self.base_url}/query/execute",
                json={"query_sql": sql},
                headers=self._headers(),
            )
            resp.raise_for_status()
            execution_id = resp.json().get("execution_id")
            if not execution_id:
                raise SignalUnavailable("Dune did not return an execution ID")

            for _ in range(self.max_polls):
                await asyncio.sleep(self.poll_interval)
                status = await self.client.get(
                    f"{self.base_url}/execution/{execution_id}/status",
                    headers=self._headers(),
                )
                if status.is_error:
                    log.warning("Dune status check failed (%s), retrying", status.status_code)
                    continue
                body = status.json()
                state = body.get("state")
                if state == "QUERY_STATE_COMPLETED":
                    results = await self.client.get(
                        f"{self.base_url}/execution/{execution_id}/results",
                        headers=self._headers(),
                    )
                    results.raise_for_status()
                    return (results.json(parse_float=Decimal).get("result") or {}).get("rows") or []
                if state == "QUERY_STATE_FAILED":
                    raise SignalUnavailable(f"Dune query failed: {body.get('error') or 'unknown error'}")
                log.debug("Dune query state %s, waiting", state)
        except httpx.HTTPError as exc:
            raise SignalUnavailable(f"Dune request failed: {exc}") from exc
        except ValueError as exc:
            raise SignalUnavailable(f"Dune returned malformed JSON: {exc}") from exc

        raise SignalUnavailable(f"Dune query timed out after {self.max_polls} polls")
