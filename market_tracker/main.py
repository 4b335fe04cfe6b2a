import argparse
import asyncio
import sys
from typing import List, Optional

from market_tracker.config import settings
from market_tracker.connectors.bconomy_rest import BconomyREST
from market_tracker.core.catalog import ItemCatalog
from market_tracker.core.errors import ConfigurationError
from market_tracker.core.intervals import INTERVALS
from market_tracker.core.logger import setup_logger
from market_tracker.core.persistence import PersistenceService
from market_tracker.core.rate_limiter import RateLimiter
from market_tracker.jobs.candle_builder import CandleBuilder
from market_tracker.jobs.stats_writer import StatsWriter
from market_tracker.jobs.ticker import Ticker

EXIT_OK = 0
EXIT_JOB_FAILED = 1
EXIT_CONFIG = 2

async def init_db():
    await PersistenceService(settings.DB_URL).init_db()

async def run_ticker():
    persistence = PersistenceService(settings.DB_URL)
    await persistence.init_db()
    # One limiter per invocation, never shared across runs
    limiter = RateLimiter(settings.RATE_LIMIT_PER_SECOND)
    async with BconomyREST(limiter) as rest:
        ticker = Ticker(persistence, rest, ItemCatalog.from_settings(), use_bulk=settings.TICKER_USE_BULK)
        await ticker.run()

async def run_candles(interval: str, source: str, lookback: int):
    persistence = PersistenceService(settings.DB_URL)
    await persistence.init_db()
    builder = CandleBuilder(persistence, interval=interval, source=source, lookback=lookback)
    await builder.run()

async def run_stats(batch: int):
    persistence = PersistenceService(settings.DB_URL)
    await persistence.init_db()
    limiter = RateLimiter(settings.RATE_LIMIT_PER_SECOND)
    async with BconomyREST(limiter) as rest:
        writer = StatsWriter(
            persistence,
            rest,
            ItemCatalog.from_settings(),
            batch_count=settings.STATS_BATCH_COUNT,
            concurrency=settings.STATS_CONCURRENCY,
        )
        await writer.run(batch)

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="market-tracker", description="Bconomy market price pipeline jobs")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the pipeline tables")
    sub.add_parser("ticker", help="Scrape current prices into raw price history")

    candles = sub.add_parser("candles", help="Build OHLC candles for the current bucket")
    candles.add_argument("--interval", default=settings.CANDLE_INTERVAL, choices=sorted(INTERVALS))
    candles.add_argument("--source", default="raw", choices=["raw"] + sorted(INTERVALS),
                         help="Aggregate raw ticks or a finer stored candle interval")
    candles.add_argument("--lookback", type=int, default=settings.CANDLE_LOOKBACK_BUCKETS,
                         help="Buckets to rebuild, current one included")

    stats = sub.add_parser("stats", help="Refresh live stats for one item batch")
    stats.add_argument("--batch", type=int, required=True, help="Batch index, 0-based")
    return parser

def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = setup_logger("market_tracker", settings.LOG_LEVEL)

    try:
        if args.command == "init-db":
            settings.require("DB_URL")
            job, timeout = init_db(), None
        elif args.command == "ticker":
            settings.require("DB_URL", "BCONOMY_API_KEY")
            job, timeout = run_ticker(), settings.TICKER_TIMEOUT
        elif args.command == "candles":
            settings.require("DB_URL")
            if args.lookback < 1:
                parser.error("--lookback must be at least 1")
            job, timeout = run_candles(args.interval, args.source, args.lookback), settings.CANDLE_TIMEOUT
        else:
            settings.require("DB_URL", "BCONOMY_API_KEY")
            if not 0 <= args.batch < settings.STATS_BATCH_COUNT:
                parser.error(f"--batch must be in [0, {settings.STATS_BATCH_COUNT})")
            job, timeout = run_stats(args.batch), settings.STATS_TIMEOUT
    except ConfigurationError as e:
        logger.critical(f"Fatal configuration error: {e.message}", extra={"job": args.command})
        return EXIT_CONFIG

    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} job '{args.command}'", extra={"job": args.command})
    try:
        asyncio.run(asyncio.wait_for(job, timeout=timeout))
    except asyncio.TimeoutError:
        logger.error(f"Job '{args.command}' exceeded its {timeout}s timeout", extra={"job": args.command})
        return EXIT_JOB_FAILED
    except Exception:
        logger.exception(f"Job '{args.command}' failed", extra={"job": args.command})
        return EXIT_JOB_FAILED
    return EXIT_OK

if __name__ == "__main__":
    sys.exit(main())
