"""
Entry point wiring all components.

    python -m src.main run              run the bot
    python -m src.main ladder           print the ladder a new deal would place
    python -m src.main deal [--id N]    print the active (or given) deal
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from prometheus_client import start_http_server
from rich.console import Console

from src.app import build_bot
from src.config.config import Settings
from src.config.config_validator import validate_and_log
from src.core.errors import DcaBotError
from src.core.json_utils import dumps
from src.infra.binance_client import BinanceSpotClient
from src.infra.logging_cfg import build_logger
from src.monitoring.deal_table import print_deal, print_ladder
from src.monitoring.metrics_rich import DealMetrics
from src.state.deal_repository import JsonDealRepository
from src.strategy.ladder_calculator import LadderCalculator

log = logging.getLogger("dcabot")


async def _client(cfg: Settings) -> BinanceSpotClient:
    return await BinanceSpotClient.create(
        cfg.api_key,
        cfg.api_secret,
        paper_trading=cfg.paper_trading,
        timeout=cfg.http_timeout,
    )


async def run(cfg: Settings) -> int:
    if not validate_and_log(cfg, log):
        log.error("Configuration validation failed, exiting")
        return 1

    metrics = DealMetrics()
    if cfg.metrics_port > 0:
        start_http_server(cfg.metrics_port, registry=metrics.registry)

    try:
        client = await _client(cfg)
    except DcaBotError as exc:
        log.error(dumps({"event": "startup_error", "pair": cfg.pair, "err": str(exc)}))
        return 1
    repository = JsonDealRepository(cfg.state_dir)
    try:
        bot = await build_bot(cfg, client, repository, metrics)
    except DcaBotError as exc:
        log.error(dumps({"event": "startup_error", "pair": cfg.pair, "err": str(exc)}))
        await client.close()
        return 1

    log.info(dumps({"event": "startup", "pair": cfg.pair, "paper_trading": cfg.paper_trading}))
    await bot.start()

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    # Windows doesn't support add_signal_handler, so rely on KeyboardInterrupt handling
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    waiter = asyncio.create_task(bot.wait())
    stopper = asyncio.create_task(stop_event.wait())
    try:
        await asyncio.wait({waiter, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        log.info("Shutdown signal received, cleaning up...")
        waiter.cancel()
        stopper.cancel()
        await asyncio.gather(waiter, stopper, return_exceptions=True)
        await bot.stop()
        await client.close()
        log.info("Shutdown complete")
    return 0


async def show_ladder(cfg: Settings, console: Optional[Console] = None) -> int:
    console = console or Console()
    client = await _client(cfg)
    try:
        symbol = await client.get_symbol_info(cfg.pair)
        price = await client.get_price(cfg.pair)
        calculator = LadderCalculator(cfg.strategy(), symbol.filters)
        ladder = calculator.compute(price)
    finally:
        await client.close()
    console.print(f"{cfg.pair} price {price}")
    print_ladder(ladder, console)
    console.print(
        f"Required {symbol.quote_asset}: {LadderCalculator.required_volume(ladder)}  "
        f"max deviation: {calculator.max_deviation_pct()}%"
    )
    return 0


async def show_deal(cfg: Settings, deal_id: Optional[int] = None, console: Optional[Console] = None) -> int:
    console = console or Console()
    repository = JsonDealRepository(cfg.state_dir)
    if deal_id is not None:
        deal = await repository.find_deal(deal_id)
    else:
        deal = await repository.find_active_deal(cfg.pair)
        if deal is None:
            deals = await repository.list_deals(cfg.pair)
            deal = deals[-1] if deals else None
    if deal is None:
        console.print("No deal found")
        return 1
    print_deal(deal, console)
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="dcabot", description="Binance spot DCA bot")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="run the bot")
    sub.add_parser("ladder", help="print the ladder a new deal would place")
    deal = sub.add_parser("deal", help="print the active or given deal")
    deal.add_argument("--id", type=int, default=None, dest="deal_id")
    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "run"
    return args


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    cfg = Settings.load()
    build_logger(
        "dcabot",
        level=getattr(logging, cfg.log_level, logging.INFO),
        file_path=cfg.log_file if args.command == "run" else None,
    )
    if args.command == "ladder":
        return asyncio.run(show_ladder(cfg))
    if args.command == "deal":
        return asyncio.run(show_deal(cfg, args.deal_id))
    return asyncio.run(run(cfg))


if __name__ == "__main__":
    try:
        code = main()
    except KeyboardInterrupt:
        print("\nBot stopped by user")
        code = 0
    sys.exit(code)
