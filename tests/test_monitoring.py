"""
Tests for notifications, metrics, the status board and structured logging.
"""

import json
import logging
from decimal import Decimal

import httpx
import pytest

from ethgrid.bot_logger import BotLogger, BotLoggerConfig
from ethgrid.infra.logging_cfg import JsonFormatter, ThrottledFilter, build_logger, log_event
from ethgrid.monitoring.alerting import (
    Notifier,
    NotifierConfig,
    NotifyLevel,
    detect_webhook_type,
    format_payload,
)
from ethgrid.monitoring.metrics import GridMetrics, HealthChecker, start_metrics_server
from ethgrid.monitoring.status import StatusBoard


def record(msg: str, level=logging.WARNING) -> logging.LogRecord:
    return logging.LogRecord("ethgrid", level, __file__, 1, msg, None, None)


class TestPayloads:
    def test_detect(self):
        assert detect_webhook_type("https://discord.com/api/webhooks/1/abc") == "discord"
        assert detect_webhook_type("https://hooks.slack.com/services/T/B/X") == "slack"

    def test_formats(self):
        assert format_payload("discord", "hi", NotifyLevel.INFO, "Bot") == {"content": "hi", "username": "Bot"}
        assert format_payload("slack", "hi", NotifyLevel.INFO, "Bot") == {"text": "`hi`", "username": "Bot"}
        generic = format_payload("generic", "hi", NotifyLevel.TRADE, "Bot")
        assert generic["level"] == "TRADE" and generic["message"] == "hi"


class TestNotifier:
    @pytest.mark.asyncio
    async def test_posts_prefixed_message(self):
        posted = []

        def handler(request: httpx.Request) -> httpx.Response:
            posted.append(json.loads(request.content))
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        notifier = Notifier(NotifierConfig(webhook_url="https://discord.com/api/webhooks/1/x"), client=client)
        await notifier.notify("Grid initialized", NotifyLevel.INFO)
        await notifier.drain()
        assert posted == [{"content": "[EthGridTrader] Grid initialized", "username": "EthGridTrader"}]
        assert notifier.sent == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_below_min_level_not_posted(self):
        calls = []
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: calls.append(r) or httpx.Response(200)))
        notifier = Notifier(
            NotifierConfig(webhook_url="https://example.com/hook", min_level=NotifyLevel.WARNING), client=client
        )
        await notifier.notify("status", NotifyLevel.INFO)
        await notifier.drain()
        assert calls == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_no_url_only_logs(self, caplog):
        caplog.set_level(logging.INFO, logger="ethgrid")
        notifier = Notifier(NotifierConfig(webhook_url=None))
        await notifier.notify("hello", NotifyLevel.INFO)
        assert "[EthGridTrader] hello" in caplog.text
        await notifier.aclose()

    @pytest.mark.asyncio
    async def test_delivery_failure_is_swallowed(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        notifier = Notifier(NotifierConfig(webhook_url="https://example.com/hook", retries=0), client=client)
        await notifier.notify("boom", NotifyLevel.ERROR)
        await notifier.drain()
        assert notifier.failed == 1 and notifier.sent == 0
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_http_error_is_swallowed(self, caplog):
        caplog.set_level(logging.WARNING, logger="ethgrid")
        def handler(request: httpx.Request) -> httpx.Response:
            raise ValueError("payload rejected by encoder")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        notifier = Notifier(NotifierConfig(webhook_url="https://example.com/hook", retries=0), client=client)
        await notifier.notify("boom", NotifyLevel.ERROR)
        await notifier.drain()
        assert notifier.failed == 1
        assert "payload rejected by encoder" in caplog.text
        await client.aclose()


class TestMetricsServer:
    @pytest.mark.asyncio
    async def test_endpoints(self):
        metrics = GridMetrics(pair="ETH/USDC")
        metrics.trades.labels(pair="ETH/USDC", side="buy", mode="paper").inc()
        board = StatusBoard()
        await board.update("engine", {"price": Decimal("3050")})
        health = HealthChecker()
        health.set_component_health("engine", True)
        srv = await start_metrics_server(metrics, 0, board, auth_token="t", health_checker=health, host="127.0.0.1")
        port = srv.sockets[0].getsockname()[1]
        try:
            async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}") as client:
                assert (await client.get("/health")).json()["healthy"] is True
                assert (await client.get("/metrics")).status_code == 401
                body = (await client.get("/metrics", headers={"Authorization": "Bearer t"})).text
                assert "trades_total" in body
                status = (await client.get("/status?token=t")).json()
                assert status["engine"]["price"] == "3050"
        finally:
            srv.close()
            await srv.wait_closed()

    def test_unhealthy_component(self):
        health = HealthChecker()
        health.set_component_health("engine", False, "crashed")
        assert not health.is_healthy()
        assert health.to_dict()["details"]["engine"] == "crashed"


class TestStatusBoard:
    @pytest.mark.asyncio
    async def test_sections_are_stamped_copies(self):
        board = StatusBoard()
        await board.update("scheduler", {"firings": 1})
        section = await board.get("scheduler")
        section["firings"] = 99
        snap = await board.snapshot()
        assert snap["scheduler"]["firings"] == 1
        assert "updated_at" in snap["scheduler"]
        assert await board.get("missing") is None


class TestLogging:
    def test_json_formatter(self):
        data = json.loads(JsonFormatter().format(record('{"event": "x"}')))
        assert data["level"] == "WARNING" and data["msg"] == '{"event": "x"}'

    def test_throttled_filter(self):
        f = ThrottledFilter(cooldown_sec=60)
        msg = json.dumps({"event": "price_unavailable", "pair": "ETH/USDC"})
        assert f.filter(record(msg)) is True
        assert f.filter(record(msg)) is False
        assert f.filter(record(json.dumps({"event": "trade_executed"}))) is True
        assert f.filter(record("plain text")) is True

    def test_build_logger_writes_json_file(self, tmp_path):
        path = tmp_path / "out.log"
        logger = build_logger("ethgrid-test-file", file_path=str(path), async_file=False)
        log_event(logger, "trade_executed", price=Decimal("3000.5"))
        for h in logger.handlers:
            h.flush()
        line = json.loads(path.read_text().splitlines()[-1])
        assert json.loads(line["msg"]) == {"event": "trade_executed", "price": "3000.5"}
        for h in list(logger.handlers):
            h.close()
            logger.removeHandler(h)


class TestBotLogger:
    def test_levels(self):
        bl = BotLogger(pair="ETH/USDC")
        assert bl.level_for("invalid_configuration") == logging.CRITICAL
        assert bl.level_for("execution_failed") == logging.ERROR
        assert bl.level_for("sr_fallback") == logging.WARNING
        assert bl.level_for("trade_executed") == logging.INFO
        assert bl.level_for("price_check") == logging.DEBUG

    def test_payload_and_throttle(self, caplog):
        caplog.set_level(logging.DEBUG, logger="ethgrid")
        bl = BotLogger(pair="ETH/USDC", config=BotLoggerConfig(throttle_window_sec=60))
        bl.log("price_unavailable", error="timeout")
        bl.log("price_unavailable", error="timeout")
        bl.log("trade_executed", price=Decimal("2990.1"))
        messages = [json.loads(r.getMessage()) for r in caplog.records if r.name == "ethgrid"]
        assert [m["event"] for m in messages] == ["price_unavailable", "trade_executed"]
        assert messages[1] == {"event": "trade_executed", "pair": "ETH/USDC", "price": "2990.1"}

    def test_debug_suppressed_unless_enabled(self, caplog):
        caplog.set_level(logging.DEBUG, logger="ethgrid")
        BotLogger(pair="ETH/USDC").log("no_trigger", price=1)
        BotLogger(pair="ETH/USDC", config=BotLoggerConfig(debug_enabled=True)).log("no_trigger", price=2)
        prices = [json.loads(r.getMessage())["price"] for r in caplog.records if r.name == "ethgrid"]
        assert prices == [2]
