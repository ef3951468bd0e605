"""
Standalone runner for the outbox delivery scheduler.

Starts the pending sweep, stuck recovery and cleanup tickers against the
configured database and Celery broker.
"""

import argparse
import asyncio
import logging
import signal
import sys

from src.outbox.scheduler import DeliveryScheduler
from src.persistence.database import get_database

logger = logging.getLogger(__name__)


async def main(log_level: str = "INFO", create_tables: bool = False):
    """
    Main entry point for the delivery scheduler.

    Args:
        log_level: Logging level
        create_tables: Create missing tables before starting
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s | %(levelname)-8s | %(name)s:%(filename)s:%(lineno)d | %(message)s",
        datefmt="%H:%M:%S",
    )

    logger.info("=" * 60)
    logger.info("Starting Outbox Delivery Scheduler")
    logger.info("=" * 60)

    database = get_database()
    database.verify_connectivity()
    if create_tables:
        logger.info("Creating missing tables...")
        database.create_all()

    scheduler = DeliveryScheduler(database=database)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, initiating graceful shutdown...")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await scheduler.start()
        logger.info("Delivery scheduler is running. Press Ctrl+C to stop.")
        await shutdown_event.wait()
    except Exception as e:
        logger.error(f"Delivery scheduler failed: {e}", exc_info=True)
        sys.exit(1)
    finally:
        logger.info("Stopping delivery scheduler...")
        await scheduler.stop()
        logger.info("Delivery scheduler stopped cleanly")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the outbox delivery scheduler")
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing database tables before starting",
    )

    args = parser.parse_args()
    asyncio.run(main(log_level=args.log_level, create_tables=args.create_tables))
