"""
Component wiring and supervision.

``build_components`` turns Settings into a ready engine/scheduler pair with
the execution backend chosen once: paper when GRID_PAPER_TRADING is set,
Hyperliquid spot otherwise. ``run_all`` starts both loops and tears the
other one down when either fails.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, List, Optional

from hyperliquid.exchange import Exchange
from hyperliquid.info import Info

from ethgrid.config.config import Settings
from ethgrid.engine.trading_engine import EngineConfig, TradingEngine
from ethgrid.execution.live_exchange import HyperliquidSpotBackend
from ethgrid.execution.paper_wallet import PaperExecutionBackend, PaperWallet, estimate_gas_eth
from ethgrid.infra.async_execution import AsyncExchange
from ethgrid.infra.logging_cfg import LOGGER_NAME
from ethgrid.market_data.price_feed import CoinGeckoPriceSource
from ethgrid.market_data.sr_source import DuneSRSource
from ethgrid.monitoring.alerting import Notifier, NotifierConfig, NotifyLevel
from ethgrid.monitoring.metrics import GridMetrics, HealthChecker
from ethgrid.monitoring.status import StatusBoard
from ethgrid.scheduler.sr_scheduler import RecalculationScheduler
from ethgrid.state.persistence import JsonPersistence
from ethgrid.strategy.grid_calculator import GridCalculator

log = logging.getLogger(LOGGER_NAME)


@dataclass
class AppComponents:
    """Everything main() needs to run and later close."""
    cfg: Settings
    engine: TradingEngine
    scheduler: RecalculationScheduler
    persistence: JsonPersistence
    price_source: CoinGeckoPriceSource
    sr_source: DuneSRSource
    notifier: Notifier
    metrics: GridMetrics
    status_board: StatusBoard
    health: HealthChecker
    paper_wallet: Optional[PaperWallet] = None
    exchange: Optional[AsyncExchange] = None
    closers: List[Any] = field(default_factory=list)


async def _paper_wallet(cfg: Settings, persistence: JsonPersistence) -> PaperWallet:
    wallet = await persistence.load_paper_wallet()
    if wallet is not None:
        log.info(json.dumps({
            "event": "paper_wallet_restored",
            "eth": str(wallet.eth_balance),
            "quote": str(wallet.quote_balance),
            "trades": len(wallet.trades),
        }))
        return wallet
    return PaperWallet(initial_eth=cfg.paper_initial_eth, initial_quote=cfg.paper_initial_quote)


def _live_exchange(cfg: Settings) -> AsyncExchange:
    wallet = cfg.resolve_signer()
    info = Info(cfg.base_url, skip_ws=True)
    exchange = Exchange(wallet, cfg.base_url, account_address=cfg.resolve_account())
    return AsyncExchange(exchange, info=info, timeout=cfg.http_timeout)


async def build_components(
    cfg: Settings,
    metrics: Optional[GridMetrics] = None,
    status_board: Optional[StatusBoard] = None,
    health: Optional[HealthChecker] = None,
) -> AppComponents:
    metrics = metrics or GridMetrics(pair=cfg.pair)
    status_board = status_board or StatusBoard()
    health = health or HealthChecker()

    persistence = JsonPersistence(cfg.state_dir)
    price_source = CoinGeckoPriceSource(
        base_url=cfg.coingecko_url,
        price_min=cfg.price_min,
        price_max=cfg.price_max,
        timeout=cfg.http_timeout,
    )
    sr_source = DuneSRSource(
        api_key=cfg.dune_api_key,
        method=cfg.sr_method,
        lookback_days=cfg.sr_lookback_days,
        refresh_hours=cfg.sr_refresh_hours,
        base_url=cfg.dune_base_url,
        timeout=cfg.http_timeout,
    )
    notifier = Notifier(NotifierConfig(
        webhook_url=cfg.webhook_url,
        webhook_type=cfg.webhook_type,
        bot_name=cfg.bot_name,
        timeout=cfg.http_timeout,
    ))

    paper_wallet: Optional[PaperWallet] = None
    exchange: Optional[AsyncExchange] = None
    if cfg.paper_trading:
        paper_wallet = await _paper_wallet(cfg, persistence)
        gas_estimator = None
        if cfg.paper_simulate_gas:
            def gas_estimator():
                return estimate_gas_eth(cfg.gas_price_gwei, cfg.gas_multiplier, cfg.gas_limit)
        backend = PaperExecutionBackend(
            paper_wallet,
            max_slippage_percent=cfg.paper_slippage_pct,
            rng=random.Random(cfg.paper_rng_seed),
            gas_estimator=gas_estimator,
            persist=persistence.save_paper_wallet,
        )
    else:
        exchange = _live_exchange(cfg)
        backend = HyperliquidSpotBackend(
            exchange,
            pair=cfg.spot_pair,
            account_address=cfg.resolve_account(),
            slippage_tolerance_percent=cfg.slippage_tolerance_pct,
            base_token=cfg.base_token,
            quote_token=cfg.quote_symbol,
        )

    calculator = GridCalculator(
        level_count=cfg.grid_levels,
        spacing_percent=cfg.grid_spacing_pct,
        amount_per_level=cfg.amount_per_level,
    )
    engine = TradingEngine(
        config=EngineConfig.from_settings(cfg),
        calculator=calculator,
        price_source=price_source,
        sr_source=sr_source,
        backend=backend,
        persistence=persistence,
        notifier=notifier,
        metrics=metrics,
        status_board=status_board,
        paper_wallet=paper_wallet,
    )
    scheduler = RecalculationScheduler(
        sr_source=sr_source,
        engine_view=engine.view,
        rebuild=engine.rebuild,
        persistence=persistence,
        interval=cfg.sr_check_interval,
        threshold_percent=cfg.sr_change_threshold_pct,
        pair=cfg.pair,
        metrics=metrics,
        status_board=status_board,
    )

    closers: List[Any] = [price_source.close, sr_source.close, notifier.aclose]
    if exchange is not None:
        closers.append(exchange.close)

    log.info(json.dumps({
        "event": "components_built",
        "mode": "paper" if cfg.paper_trading else "live",
        "pair": cfg.pair,
        "state_dir": cfg.state_dir,
    }))
    return AppComponents(
        cfg=cfg,
        engine=engine,
        scheduler=scheduler,
        persistence=persistence,
        price_source=price_source,
        sr_source=sr_source,
        notifier=notifier,
        metrics=metrics,
        status_board=status_board,
        health=health,
        paper_wallet=paper_wallet,
        exchange=exchange,
        closers=closers,
    )


async def run_all(app: AppComponents) -> None:
    """
    Initialize the engine, then run the tick loop and the scheduler side by
    side. A crash in either loop stops the other; cancellation stops both and
    still lets the engine flush its state.
    """
    engine, scheduler = app.engine, app.scheduler
    await engine.initialize()
    app.health.set_component_health("engine", True, "initialized")
    log.info(engine.display())

    engine_task = asyncio.create_task(engine.run(), name="trading-engine")
    scheduler_task = scheduler.start()
    try:
        async with asyncio.TaskGroup() as tg:
            tg.create_task(_watch("engine", engine_task, app))
            tg.create_task(_watch("scheduler", scheduler_task, app))
    finally:
        engine.stop()
        await scheduler.stop()
        await asyncio.gather(engine_task, return_exceptions=True)


async def _watch(name: str, task: asyncio.Task, app: AppComponents) -> None:
    try:
        await task
    except asyncio.CancelledError:
        task.cancel()
        raise
    except Exception as exc:
        app.health.set_component_health(name, False, str(exc))
        log.error(json.dumps({"event": f"{name}_crashed", "err": str(exc)}))
        await app.notifier.notify(f"{name} stopped unexpectedly: {exc}", NotifyLevel.ERROR)
        raise
    # A clean engine exit means stop() was requested; wind the scheduler down too.
    app.engine.stop()
    await app.scheduler.stop()


async def close_components(app: AppComponents) -> None:
    for close in app.closers:
        try:
            await close()
        except Exception as exc:
            log.warning(json.dumps({"event": "close_failed", "err": str(exc)}))
