#!/usr/bin/env python3
"""
Standalone Analytics Worker

Runs the analytics worker pool and the recurring scheduler without the HTTP
server. Use this when the API runs with WORKERS_ENABLED=false.

Usage:
    python scripts/run_worker.py
    python scripts/run_worker.py --concurrency 5 --verbose
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from finboard.database import init_db
from finboard.services import build_services
from finboard.utils.config import get_settings


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        force=True,
    )
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


async def run(concurrency: int = None):
    logger = logging.getLogger("finboard.worker")

    settings = get_settings()
    if concurrency:
        settings = settings.model_copy(update={"ANALYTICS_WORKER_CONCURRENCY": concurrency})

    services = build_services(settings)
    init_db(services.db_engine)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await services.start(workers=True)
    logger.info(
        f"Worker running (queue={settings.ANALYTICS_QUEUE_NAME}, "
        f"concurrency={settings.ANALYTICS_WORKER_CONCURRENCY}). Ctrl+C to stop."
    )

    await stop.wait()

    logger.info("Shutting down worker...")
    await services.close()


def main():
    parser = argparse.ArgumentParser(description="Run the Finboard analytics worker")
    parser.add_argument("--concurrency", type=int, default=None, help="Concurrent jobs")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args()

    load_dotenv()
    setup_logging(args.verbose)
    asyncio.run(run(args.concurrency))


if __name__ == "__main__":
    main()
