"""eodcache — CLI entrypoint.

Run the API (with the price worker) or individual pieces::

    python -m eodcache.main --server          # default
    python -m eodcache.main --worker
    python -m eodcache.main --fetch AAPL BRK-B
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import TYPE_CHECKING

from eodcache import __version__
from eodcache.config import get_settings
from eodcache.utils import setup_logging

if TYPE_CHECKING:
    from eodcache.pipeline import PricePipeline

logger = logging.getLogger("eodcache")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eodcache",
        description="eodcache — end-of-day price acquisition and cache",
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--server", action="store_true", help="Run the API and price worker (default)")
    group.add_argument("--worker", action="store_true", help="Run the price worker only")
    group.add_argument("--fetch", nargs="+", metavar="TICKER", help="Fetch, validate and store tickers once")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


async def _fetch_once(tickers: list[str], pipeline: PricePipeline | None = None) -> int:
    """Run one fetch, guard and store job per ticker and print each lookup."""
    from eodcache.pipeline import PricePipeline
    from eodcache.prices.queue import JobStatus

    pipeline = pipeline or PricePipeline.from_settings()
    await pipeline.start(run_worker=False)
    failures = 0
    try:
        for ticker in tickers:
            try:
                status = pipeline.queue.enqueue(ticker)
            except ValueError as exc:
                logger.warning("Skipping %r: %s", ticker, exc)
                failures += 1
                continue
            # Drain until this ticker's own job has finished.
            while status.active:
                if await pipeline.worker.process_next() is None:
                    break
                status = pipeline.queue.status(ticker)
            lookup = await pipeline.service.peek(ticker)
            print(json.dumps(lookup.to_dict()))
            if status is not JobStatus.DONE:
                failures += 1
    finally:
        await pipeline.close()
    return 1 if failures else 0


async def _run_worker() -> None:
    from eodcache.pipeline import PricePipeline

    pipeline = PricePipeline.from_settings()
    await pipeline.start(run_worker=False)
    try:
        await pipeline.worker.run()
    finally:
        await pipeline.close()


def _run_server() -> None:
    import uvicorn

    from eodcache.api.app import create_app

    settings = get_settings()
    uvicorn.run(
        create_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level)

    try:
        if args.fetch:
            sys.exit(asyncio.run(_fetch_once(args.fetch)))
        elif args.worker:
            asyncio.run(_run_worker())
        else:
            _run_server()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
