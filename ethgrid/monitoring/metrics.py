"""
Prometheus metrics and a small HTTP server for metrics, status and health.

Endpoints:
- /metrics - Prometheus text exposition of the private registry
- /status  - StatusBoard JSON snapshot
- /health  - liveness, 503 when a component reports unhealthy
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, Histogram, generate_latest


class GridMetrics:
    """Counters and gauges for one trading pair."""

    def __init__(self, pair: str, registry: Optional[CollectorRegistry] = None):
        self.pair = pair
        self.registry = reg = registry or CollectorRegistry()

        # === Engine ===
        self.price_checks = Counter(
            'price_checks_total',
            'Price checks performed',
            labelnames=['pair', 'result'],
            registry=reg
        )
        self.last_price = Gauge(
            'last_price',
            'Last observed price (USD)',
            labelnames=['pair'],
            registry=reg
        )
        self.trades = Counter(
            'trades_total',
            'Grid levels filled',
            labelnames=['pair', 'side', 'mode'],
            registry=reg
        )
        self.execution_failures = Counter(
            'execution_failures_total',
            'Executions that failed and left the level armed',
            labelnames=['pair', 'reason'],
            registry=reg
        )
        self.execution_latency_ms = Histogram(
            'execution_latency_ms',
            'Time from dispatch to result (milliseconds)',
            labelnames=['pair'],
            buckets=[1, 10, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
            registry=reg
        )

        # === Ladder ===
        self.filled_levels = Gauge(
            'filled_levels',
            'Filled levels by side',
            labelnames=['pair', 'side'],
            registry=reg
        )
        self.grid_center = Gauge(
            'grid_center',
            'Base price of the current ladder',
            labelnames=['pair'],
            registry=reg
        )
        self.rebuilds = Counter(
            'grid_rebuilds_total',
            'Ladder rebuilds by reason',
            labelnames=['pair', 'reason'],
            registry=reg
        )

        # === Scheduler ===
        self.sr_fetches = Counter(
            'sr_fetches_total',
            'S/R fetch attempts',
            labelnames=['pair', 'result'],
            registry=reg
        )
        self.sr_change_pct = Gauge(
            'sr_change_pct',
            'Midpoint change versus the last persisted S/R record (%)',
            labelnames=['pair'],
            registry=reg
        )

        # === Paper / balances ===
        self.balance = Gauge(
            'balance',
            'Wallet balance by asset',
            labelnames=['pair', 'asset'],
            registry=reg
        )
        self.paper_pnl = Gauge(
            'paper_unrealized_pnl_usd',
            'Paper wallet unrealized PnL versus initial balances (USD)',
            labelnames=['pair'],
            registry=reg
        )

        # === Operational ===
        self.persistence_errors = Counter(
            'persistence_errors_total',
            'Failed state writes',
            labelnames=['pair'],
            registry=reg
        )
        self.tick_errors = Counter(
            'tick_errors_total',
            'Ticks aborted by an unexpected error',
            labelnames=['pair'],
            registry=reg
        )
        self.last_tick_ts = Gauge(
            'last_tick_timestamp',
            'Unix time of the last completed tick',
            labelnames=['pair'],
            registry=reg
        )

    def render(self) -> bytes:
        return generate_latest(self.registry)


class HealthChecker:
    """Component health for the /health endpoint."""

    def __init__(self) -> None:
        self._components: Dict[str, bool] = {}
        self._details: Dict[str, Any] = {}
        self._last_heartbeat = int(time.time() * 1000)

    def set_component_health(self, name: str, healthy: bool, detail: Optional[str] = None) -> None:
        self._components[name] = healthy
        if detail:
            self._details[name] = detail
        self.heartbeat()

    def heartbeat(self) -> None:
        self._last_heartbeat = int(time.time() * 1000)

    def is_healthy(self) -> bool:
        return all(self._components.values()) if self._components else True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "healthy": self.is_healthy(),
            "last_heartbeat_ms": self._last_heartbeat,
            "components": dict(self._components),
            "details": dict(self._details),
        }


def _response(status: bytes, content_type: bytes, body: bytes) -> bytes:
    return (
        b"HTTP/1.1 " + status + b"\r\n"
        b"Content-Type: " + content_type + b"\r\n"
        b"Connection: close\r\n\r\n"
        + body
    )


async def start_metrics_server(
    metrics: GridMetrics,
    port: int,
    status_board=None,
    auth_token: Optional[str] = None,
    health_checker: Optional[HealthChecker] = None,
    host: str = "0.0.0.0",
) -> asyncio.AbstractServer:
    """
    Start the HTTP server. /health never needs auth; /metrics and /status
    need ``Authorization: Bearer <token>`` or ``?token=`` when a token is set.
    """
    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            req = await reader.read(2048)
            lines = req.split(b"\r\n")
            parts = lines[0].split(b" ") if lines else []
            path_raw = parts[1] if len(parts) > 1 else b"/"
            headers = {}
            for line in lines[1:]:
                if b":" in line:
                    k, v = line.split(b":", 1)
                    headers[k.strip().lower()] = v.strip()

            parsed = urlparse(path_raw.decode("utf-8", errors="ignore"))
            query = parse_qs(parsed.query)

            if parsed.path == "/health":
                healthy = health_checker.is_healthy() if health_checker else True
                body = json.dumps(health_checker.to_dict() if health_checker else {"healthy": True})
                status = b"200 OK" if healthy else b"503 Service Unavailable"
                writer.write(_response(status, b"application/json", body.encode()))
                return

            if auth_token:
                header_auth = headers.get(b"authorization", b"").decode("utf-8", errors="ignore")
                if header_auth != f"Bearer {auth_token}" and query.get("token", [""])[0] != auth_token:
                    writer.write(b"HTTP/1.1 401 Unauthorized\r\nConnection: close\r\n\r\n")
                    return

            if parsed.path.startswith("/status") and status_board is not None:
                snap = await status_board.snapshot()
                body = json.dumps(snap, default=str)
                writer.write(_response(b"200 OK", b"application/json", body.encode()))
                return

            writer.write(_response(b"200 OK", CONTENT_TYPE_LATEST.encode(), metrics.render()))
        except Exception:
            writer.write(b"HTTP/1.1 500 Internal Server Error\r\nConnection: close\r\n\r\n")
        finally:
            try:
                await writer.drain()
            finally:
                writer.close()

    return await asyncio.start_server(handle, host, port)
