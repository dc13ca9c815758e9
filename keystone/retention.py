"""
CLI entrypoint for the orphaned-file cleanup job. Run from cron, e.g.:

  python -m keystone.retention
  python -m keystone.retention --retention-days 7

Daily: 0 3 * * * cd /path/to/keystone && .venv/bin/python -m keystone.retention

SIGINT/SIGTERM stop the sweep before the next file; files already handled
stay handled.
"""

import argparse
import asyncio
import logging
import signal
import sys

from keystone.config import settings
from keystone.database import AsyncSessionLocal, engine
from keystone.logging_config import configure_logging
from keystone.services.storage_service import StorageService
from keystone.storage import build_storage_driver
from keystone.stores.file_store import FileStore

logger = logging.getLogger(__name__)


def positive_int(value: str) -> int:
    days = int(value)
    if days < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return days


async def sweep(retention_days: int | None = None, stop: asyncio.Event | None = None) -> int:
    """One sweep with a fresh session. Returns the process exit code."""
    driver = build_storage_driver(settings)
    try:
        async with AsyncSessionLocal() as session:
            service = StorageService(FileStore(session), driver, settings)
            result = await service.sweep_orphaned(retention_days, stop=stop)
            await session.commit()
        logger.info(
            "Retention completed: deleted=%s failed=%s",
            result.deleted_count,
            len(result.failed),
        )
        return 0 if not result.failed else 1
    except Exception as e:
        logger.exception("Retention job failed: %s", e)
        return 1


async def run(retention_days: int | None = None) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops don't support signal handlers
            pass
    try:
        return await sweep(retention_days, stop)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    """Purge files soft-deleted longer than ORPHANED_FILES_RETENTION_DAYS ago."""
    parser = argparse.ArgumentParser(prog="python -m keystone.retention")
    parser.add_argument(
        "--retention-days",
        type=positive_int,
        default=None,
        help="Override ORPHANED_FILES_RETENTION_DAYS for this run",
    )
    args = parser.parse_args(argv)

    configure_logging(settings.LOG_LEVEL)
    return asyncio.run(run(args.retention_days))


if __name__ == "__main__":
    sys.exit(main())
