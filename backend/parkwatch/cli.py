"""
Command-line entry point.

    parkwatch monitor                  # tick every 30 minutes until Ctrl+C
    parkwatch monitor --interval 10
    parkwatch monitor --once           # run every enabled search now and exit
    parkwatch monitor --search 3       # only watch search 3
"""
import argparse
import asyncio
import logging
import sys
from typing import Optional

from parkwatch.config import get_settings
from parkwatch.database import init_db
from parkwatch.exceptions import ConfigurationError, NotFoundError
from parkwatch.scheduler import run_scheduler_tick
from parkwatch.services.runtime import get_executor, shutdown_runtime

logger = logging.getLogger(__name__)


async def run_once(executor, persistence, search_id: Optional[int] = None) -> int:
    """Run one search, or every enabled search, ignoring schedules. Returns an exit code."""
    if search_id is not None:
        try:
            await executor.execute_search(search_id)
        except NotFoundError as e:
            logger.error(str(e))
            return 1
        except Exception as e:
            logger.error(f"Search {search_id} failed: {e}")
            return 1
        return 0

    failed = 0
    for search in await persistence.get_all_searches(enabled=True):
        try:
            await executor.execute_search(search.id)
        except Exception as e:
            logger.error(f"Search {search.id} failed: {e}")
            failed += 1

    return 1 if failed else 0


async def run_monitor(
    interval_minutes: int,
    search_id: Optional[int] = None,
    max_cycles: Optional[int] = None,
    executor=None,
) -> int:
    """Tick forever (or max_cycles times), sleeping interval_minutes between ticks."""
    executor = executor or get_executor()
    persistence = executor.persistence

    logger.info(f"Starting continuous monitoring, check interval: {interval_minutes} minutes")
    cycles = 0
    while max_cycles is None or cycles < max_cycles:
        try:
            await run_scheduler_tick(executor, persistence, search_id=search_id)
        except NotFoundError as e:
            logger.error(str(e))
            return 1
        cycles += 1
        if max_cycles is not None and cycles >= max_cycles:
            break
        await asyncio.sleep(interval_minutes * 60)

    return 0


async def monitor(args: argparse.Namespace) -> int:
    init_db()
    try:
        if args.once:
            executor = get_executor()
            return await run_once(executor, executor.persistence, args.search)
        return await run_monitor(args.interval, search_id=args.search)
    finally:
        await shutdown_runtime()


def create_argument_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="parkwatch",
        description="Monitor Holiday Park availability for saved searches",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    monitor_parser = subparsers.add_parser("monitor", help="Run saved searches on their schedules")
    monitor_parser.add_argument(
        "--interval",
        "-i",
        type=int,
        default=settings.scheduler_interval_minutes,
        help="Check interval in minutes (default: %(default)s)",
    )
    monitor_parser.add_argument(
        "--once",
        "-o",
        action="store_true",
        help="Run all enabled searches once and exit",
    )
    monitor_parser.add_argument(
        "--search",
        "-s",
        type=int,
        default=None,
        help="Only handle the search with this ID",
    )
    return parser


def main(argv=None) -> int:
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else get_settings().log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        return asyncio.run(monitor(args))
    except KeyboardInterrupt:
        logger.info("Monitoring stopped")
        return 0
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
