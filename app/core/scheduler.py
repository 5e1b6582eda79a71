"""
Settlement task scheduler.

This module provides scheduled background jobs for:
- Nightly profit recalculation across every stored bet
- Hourly read-only settlement validation (feeds the discrepancy gauge)

Scheduler: APScheduler (lightweight, FastAPI-compatible)
"""
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings
from app.core.database import SessionLocal
from app.core.logging import get_logger
from app.core.metrics import set_discrepancy_count
from app.services.settlement.reconciler import SettlementReconciler

logger = get_logger(__name__)

RECALC_JOB_ID = "settlement_recalc_all"
VALIDATE_JOB_ID = "settlement_validate"


async def run_nightly_reconciliation():
    """Recalculate every stored profit. Returns the result dict."""
    db = SessionLocal()
    try:
        result = SettlementReconciler(db).recalc_all()
        logger.info(
            f"Nightly reconciliation: {result.updated} updated, "
            f"{result.scanned} scanned, {len(result.errors)} errors"
        )
        return result.to_dict()
    except Exception as e:
        logger.error(f"Nightly reconciliation failed: {e}")
        db.rollback()
        return None
    finally:
        db.close()


async def run_settlement_validation():
    """Sample recent parlays and publish the discrepancy count."""
    db = SessionLocal()
    try:
        issues = SettlementReconciler(db).validate()
        set_discrepancy_count(len(issues))
        if issues:
            logger.warning(f"Settlement validation found {len(issues)} profit discrepancies")
        return [issue.to_dict() for issue in issues]
    except Exception as e:
        logger.error(f"Settlement validation failed: {e}")
        return None
    finally:
        db.close()


class SettlementScheduler:
    """
    Scheduler for settlement background tasks.

    All scheduled jobs should be defined here with clear
    schedules and error handling.
    """

    def __init__(self, timezone: Optional[str] = None):
        self.timezone = timezone or settings.SCHEDULER_TIMEZONE
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.running = False

    async def start(self):
        """Start the scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting settlement scheduler...")

        self.scheduler = AsyncIOScheduler(
            timezone=self.timezone,
            job_defaults={
                "coalesce": True,  # Combine missed runs into one
                "max_instances": 1,  # Only one instance of each job
                "misfire_grace_time": 300,
            },
        )

        self._schedule_nightly_recalc()
        self._schedule_validation()

        self.scheduler.start()
        self.running = True

        logger.info("Scheduler started with %d jobs", len(self.scheduler.get_jobs()))
        self._log_scheduled_jobs()

    async def stop(self):
        """Stop the scheduler."""
        if not self.running:
            return

        logger.info("Stopping scheduler...")
        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Scheduler stopped")

    def _schedule_nightly_recalc(self):
        """
        Schedule: Recalculate profit for every stored bet.

        Frequency: Daily at RECONCILE_CRON_HOUR:00
        Purpose: Backfill and correct profits after late status changes
        """
        self.scheduler.add_job(
            run_nightly_reconciliation,
            trigger=CronTrigger(hour=settings.RECONCILE_CRON_HOUR, minute=0, timezone=self.timezone),
            id=RECALC_JOB_ID,
            name="Nightly Profit Recalculation",
            misfire_grace_time=3600,
        )
        logger.info(f"Scheduled: Profit recalculation (daily at {settings.RECONCILE_CRON_HOUR:02d}:00)")

    def _schedule_validation(self):
        """
        Schedule: Read-only settlement validation.

        Frequency: Hourly
        Purpose: Health check; never writes
        """
        self.scheduler.add_job(
            run_settlement_validation,
            trigger=IntervalTrigger(hours=1),
            id=VALIDATE_JOB_ID,
            name="Settlement Validation",
        )
        logger.info("Scheduled: Settlement validation (hourly)")

    def _log_scheduled_jobs(self):
        """Log all scheduled jobs for visibility."""
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            next_run_str = next_run.isoformat() if next_run else "Pending"
            logger.info(f"Job {job.id} ({job.name}): next run {next_run_str}")


_scheduler: Optional[SettlementScheduler] = None


async def start_scheduler():
    """Start the global scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = SettlementScheduler()
        await _scheduler.start()
    return _scheduler


async def stop_scheduler():
    """Stop the global scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None


def get_scheduler() -> Optional[SettlementScheduler]:
    """Get the global scheduler instance."""
    return _scheduler
