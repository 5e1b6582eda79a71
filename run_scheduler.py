#!/usr/bin/env python3
"""
Background runner for the settlement scheduler.

Runs the nightly recalculation and hourly validation jobs as a standalone
service, outside the API process. It can be run via systemd, supervisor, or
directly.

Usage:
    python run_scheduler.py                       # Run in foreground
    python run_scheduler.py --trigger settlement_recalc_all
    python run_scheduler.py --trigger settlement_validate
"""
import argparse
import asyncio
import signal
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from app.core.config import settings
from app.core.logging import configure_logging, get_logger
from app.core.scheduler import (
    RECALC_JOB_ID,
    VALIDATE_JOB_ID,
    SettlementScheduler,
    run_nightly_reconciliation,
    run_settlement_validation,
)

logger = get_logger(__name__)

JOBS = {
    RECALC_JOB_ID: run_nightly_reconciliation,
    VALIDATE_JOB_ID: run_settlement_validation,
}


class SchedulerRunner:
    """Runner for the settlement scheduler."""

    def __init__(self):
        self.scheduler: SettlementScheduler = None
        self.shutdown = asyncio.Event()

    async def start(self):
        """Start the scheduler and run until shutdown."""
        logger.info("Starting scheduler runner...")

        self.scheduler = SettlementScheduler()
        await self.scheduler.start()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._set_shutdown)

        await self.shutdown.wait()

        await self.scheduler.stop()
        logger.info("Scheduler runner stopped")

    def _set_shutdown(self):
        logger.info("Shutdown signal received")
        self.shutdown.set()


async def run_trigger_job(job_id: str) -> bool:
    """Run one job immediately, without starting the scheduler."""
    job = JOBS.get(job_id)
    if job is None:
        print(f"Job '{job_id}' not found. Available: {', '.join(JOBS)}")
        return False

    result = await job()
    if result is None:
        print(f"Job '{job_id}' failed; see logs")
        return False
    print(f"Job '{job_id}' finished: {result}")
    return True


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run the bet settlement scheduler")
    parser.add_argument(
        "--trigger",
        type=str,
        metavar="JOB_ID",
        help="Run a specific job once by ID and exit",
    )
    args = parser.parse_args()

    configure_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)

    if args.trigger:
        return 0 if asyncio.run(run_trigger_job(args.trigger)) else 1

    try:
        asyncio.run(SchedulerRunner().start())
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
