"""
Entry point wiring all components.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys

from ethgrid.app import build_components, close_components, run_all
from ethgrid.config.config import Settings
from ethgrid.config.config_validator import validate_and_log
from ethgrid.core.errors import InvalidConfiguration
from ethgrid.infra.logging_cfg import LOGGER_NAME, build_logger
from ethgrid.monitoring.alerting import NotifyLevel
from ethgrid.monitoring.metrics import GridMetrics, HealthChecker, start_metrics_server
from ethgrid.monitoring.status import StatusBoard

log = logging.getLogger(LOGGER_NAME)


async def main() -> None:
    try:
        cfg = Settings.load()
    except InvalidConfiguration as exc:
        log.critical(json.dumps({"event": "invalid_configuration", "err": str(exc)}))
        sys.exit(1)

    build_logger(LOGGER_NAME, level=cfg.log_level, file_path=cfg.log_file)
    log.info(json.dumps({"event": "settings", **cfg.dump(redact=True)}, default=str))
    if not validate_and_log(cfg, log):
        log.error("Configuration validation failed, exiting")
        sys.exit(1)

    health = HealthChecker()
    health.set_component_health("config", True, "Configuration validated")
    metrics = GridMetrics(pair=cfg.pair)
    status_board = StatusBoard()
    await status_board.update("config", cfg.dump(redact=True))

    app = await build_components(cfg, metrics=metrics, status_board=status_board, health=health)
    srv = await start_metrics_server(
        metrics, cfg.metrics_port, status_board, auth_token=cfg.metrics_token, health_checker=health
    )
    log.info(json.dumps({"event": "startup", "pair": cfg.pair, "mode": "paper" if cfg.paper_trading else "live"}))

    loop = asyncio.get_running_loop()
    run_task = asyncio.create_task(run_all(app))

    def stop_all() -> None:
        # Cooperative stop: the in-flight tick finishes and state is flushed.
        app.engine.stop()
        srv.close()

    # Windows doesn't support add_signal_handler, so rely on KeyboardInterrupt handling
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_all)
        except NotImplementedError:
            pass

    try:
        await run_task
    except (asyncio.CancelledError, KeyboardInterrupt):
        log.info("Shutdown signal received, cleaning up...")
        if not run_task.done():
            run_task.cancel()
            try:
                await run_task
            except asyncio.CancelledError:
                pass
    except Exception as exc:
        log.error(json.dumps({"event": "fatal", "err": str(exc)}))
        await app.notifier.notify(f"Fatal error: {exc}", NotifyLevel.ERROR)
        raise
    finally:
        log.info("Closing servers and connections...")
        srv.close()
        await srv.wait_closed()
        await close_components(app)
        log.info("Shutdown complete")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nGrid trader stopped by user")
    sys.exit(0)


if __name__ == "__main__":
    run()
