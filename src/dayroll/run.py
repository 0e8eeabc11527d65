"""CLI entrypoint for running Dayroll content ingestion."""

import argparse
import asyncio
import json
import signal
import sys

from dayroll.config import get_settings
from dayroll.db.repositories import ContentRepository, SubscriptionRepository
from dayroll.db.session import close_db, get_session, init_db
from dayroll.exceptions import DayrollError
from dayroll.ingestion.base import IngestionConfig
from dayroll.ingestion.coordinator import CycleSummary, IngestionCoordinator
from dayroll.ingestion.scheduler import IngestionScheduler
from dayroll.logging import get_logger, setup_logging

logger = get_logger(__name__)


async def run_cycle(config: IngestionConfig) -> CycleSummary:
    """Run one ingestion cycle against the configured database."""
    async with get_session() as session:
        coordinator = IngestionCoordinator(
            SubscriptionRepository(session),
            ContentRepository(session),
            config=config,
        )
        return await coordinator.run_cycle()


async def run_forever(
    config: IngestionConfig,
    interval: float,
    run_on_start: bool,
) -> None:
    """Run cycles on a schedule until SIGINT or SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    scheduler = IngestionScheduler(
        lambda: run_cycle(config),
        interval=interval,
        run_on_start=run_on_start,
    )
    scheduler.start()
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down ingestion scheduler")
        scheduler.stop()
        await scheduler.wait_idle()


async def run(
    once: bool = False,
    interval: float | None = None,
    run_on_start: bool | None = None,
    config_path: str | None = None,
    debug: bool = False,
) -> int:
    """
    Execute Dayroll ingestion.

    Args:
        once: Run a single cycle and print its summary
        interval: Seconds between cycles (defaults to settings)
        run_on_start: Run a cycle immediately when the scheduler starts
        config_path: Path to ingestion.yml
        debug: Enable debug logging

    Returns:
        Exit code (0 for success)
    """
    setup_logging(level="DEBUG" if debug else None)
    settings = get_settings()

    interval = interval if interval is not None else settings.ingest_interval_seconds
    if run_on_start is None:
        run_on_start = settings.ingest_run_on_start
    config = IngestionConfig.load(config_path or settings.ingest_config_path)

    logger.info(
        "Dayroll ingestion starting",
        once=once,
        interval=interval,
        run_on_start=run_on_start,
    )

    try:
        # Dev only; production schemas are managed outside this process
        await init_db()

        if once:
            summary = await run_cycle(config)
            print(json.dumps(summary.to_dict(), indent=2))
            return 0

        await run_forever(config, interval, run_on_start)
        return 0

    except DayrollError as e:
        # Configuration problems, e.g. a non-positive interval
        logger.error("Ingestion failed", error=str(e), details=e.details)
        if debug:
            raise
        return 1

    except Exception as e:
        logger.error("Ingestion failed", error=str(e), error_type=type(e).__name__)
        if debug:
            raise
        return 1

    finally:
        await close_db()


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Dayroll - ingest subscribed feeds, channels and shows",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  dayroll-ingest                     # Run on a schedule until interrupted
  dayroll-ingest --once              # Run one cycle and print the summary
  dayroll-ingest --interval 300      # Five minutes between cycles
  python -m dayroll.run --debug      # Alternative invocation
        """,
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single ingestion cycle and exit",
    )

    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between the end of one cycle and the start of the next",
    )

    parser.add_argument(
        "--no-run-on-start",
        dest="run_on_start",
        action="store_false",
        default=None,
        help="Wait one interval before the first cycle",
    )

    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to ingestion.yml",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    exit_code = asyncio.run(
        run(
            once=args.once,
            interval=args.interval,
            run_on_start=args.run_on_start,
            config_path=args.config_path,
            debug=args.debug,
        )
    )

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
