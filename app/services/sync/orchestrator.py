"""Bet sync orchestrator.

Entry point for pulling one user's bets from the aggregator:

1. Fetch every bet slip for the user's bettor id (AggregatorClient)
2. Normalize and group each slip into legs (ParlayGrouper)
3. Upsert the legs idempotently (BetUpserter)
4. Record the run in sync_runs and build the report

Only a failure to fetch the feed aborts a sync. A bad slip or leg is recorded
in the report and the rest of the batch carries on. Any other error still marks
the run failed before it propagates.

At most one sync per user runs at a time; an overlapping request raises
SyncInProgressError instead of racing on the upsert lookups.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import SyncInProgressError, UpstreamFetchError
from app.core.logging import get_logger, sync_user_scope
from app.core.metrics import record_sync_error, record_sync_leg, sync_duration_seconds
from app.repositories.sync_run_repository import SyncRunRepository
from app.services.settlement.dedup_upserter import BetUpserter, LegResult, UpsertReport
from app.services.settlement.parlay_grouper import group_slip
from app.services.sync.aggregator_client import AggregatorClient, get_aggregator_client

logger = get_logger(__name__)

_user_locks: Dict[str, asyncio.Lock] = {}


def _lock_for(user_id: str) -> asyncio.Lock:
    return _user_locks.setdefault(user_id, asyncio.Lock())


def _release_lock(user_id: str, lock: asyncio.Lock) -> None:
    # Only drop the entry when no other request took it in the meantime.
    if _user_locks.get(user_id) is lock and not lock.locked():
        del _user_locks[user_id]


@dataclass
class SyncReport:
    success: bool
    message: str
    total_bet_slips: int = 0
    total_bets: int = 0
    new_bets: int = 0
    updated_bets: int = 0
    unchanged_bets: int = 0
    errors: int = 0
    error_details: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def stats(self) -> Dict[str, int]:
        return {
            "totalBetSlips": self.total_bet_slips,
            "totalBets": self.total_bets,
            "newBets": self.new_bets,
            "updatedBets": self.updated_bets,
            "errors": self.errors,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "stats": self.stats,
            "errorDetails": list(self.error_details),
        }


class BetSyncOrchestrator:
    """
    Coordinates a bet sync for one user.

    All sync operations should go through this orchestrator.
    """

    def __init__(
        self,
        db: Session,
        client: Optional[AggregatorClient] = None,
        bet_source: Optional[str] = None,
        amounts_in_cents: Optional[bool] = None,
    ):
        """
        Initialize the sync orchestrator.

        Args:
            db: SQLAlchemy database session
            client: Aggregator client (defaults to the shared instance)
            bet_source: Feed identifier stored on every leg
            amounts_in_cents: Whether feed amounts are integer cents
        """
        self.db = db
        self.client = client or get_aggregator_client()
        self.bet_source = bet_source or settings.BET_SOURCE
        self.amounts_in_cents = (
            settings.AGGREGATOR_AMOUNTS_IN_CENTS if amounts_in_cents is None else amounts_in_cents
        )
        self.upserter = BetUpserter(db)
        self.sync_runs = SyncRunRepository(db)

    async def sync_user_bets(self, user_id: str, bettor_id: str) -> SyncReport:
        """
        Fetch, group and upsert every bet slip for a user.

        Raises:
            SyncInProgressError: a sync for this user is already running
            UpstreamFetchError: the aggregator feed could not be fetched
        """
        lock = _lock_for(user_id)
        if lock.locked():
            record_sync_error("in_progress")
            raise SyncInProgressError(user_id)

        try:
            async with lock:
                with sync_user_scope(user_id):
                    return await self._sync(user_id, bettor_id)
        finally:
            _release_lock(user_id, lock)

    async def _sync(self, user_id: str, bettor_id: str) -> SyncReport:
        start_time = datetime.utcnow()
        logger.info(f"Starting bet sync for user {user_id} (bettor {bettor_id})")

        run = self.sync_runs.get_or_create(user_id, self.bet_source)
        run.last_sync_started_at = start_time
        run.last_sync_status = "in_progress"
        self.db.commit()

        try:
            slips = await self.client.get_bet_slips(bettor_id)
        except UpstreamFetchError as e:
            logger.error(f"Bet sync for user {user_id} aborted: {e}")
            record_sync_error("upstream")
            run.last_sync_status = "failed"
            run.error_message = str(e)
            run.sync_duration_ms = self._elapsed_ms(start_time)
            self.db.commit()
            raise

        try:
            return self._store_slips(run, user_id, slips, start_time)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Bet sync for user {user_id} failed: {e}")
            record_sync_error("unexpected")
            run.last_sync_status = "failed"
            run.error_message = str(e)
            run.sync_duration_ms = self._elapsed_ms(start_time)
            self.db.commit()
            raise

    def _store_slips(self, run, user_id: str, slips: List[Any], start_time: datetime) -> SyncReport:
        report = UpsertReport()
        for index, slip in enumerate(slips):
            report.merge(self._process_slip(user_id, slip, index))
        self.db.commit()

        duration_ms = self._elapsed_ms(start_time)
        sync_report = SyncReport(
            success=True,
            message=(
                f"Refreshed bets for user {user_id}: {len(slips)} bet slips, "
                f"{report.processed} total bets processed, {report.inserted} new, "
                f"{report.updated} updated, {len(report.errors)} errors"
            ),
            total_bet_slips=len(slips),
            total_bets=report.processed,
            new_bets=report.inserted,
            updated_bets=report.updated,
            unchanged_bets=report.unchanged,
            errors=len(report.errors),
            error_details=report.errors,
        )

        run.last_sync_completed_at = datetime.utcnow()
        run.last_sync_status = "partial" if report.errors else "success"
        run.slips_fetched = len(slips)
        run.legs_processed = report.processed
        run.legs_inserted = report.inserted
        run.legs_updated = report.updated
        run.legs_failed = len(report.errors)
        run.error_message = None
        run.sync_duration_ms = duration_ms
        self.db.commit()

        record_sync_leg("inserted", report.inserted)
        record_sync_leg("updated", report.updated)
        record_sync_leg("unchanged", report.unchanged)
        record_sync_leg("failed", len(report.errors))
        sync_duration_seconds.observe(duration_ms / 1000)

        logger.info(f"{sync_report.message} ({duration_ms}ms)")
        return sync_report

    def _process_slip(self, user_id: str, slip: Any, index: int = 0) -> UpsertReport:
        if not isinstance(slip, dict):
            logger.warning(f"Slip at position {index} is not an object: {slip!r}")
            error = TypeError(f"expected a bet slip object, got {type(slip).__name__}")
            return UpsertReport().add(LegResult.failure(f"slip[{index}]", error))

        slip_id = str(slip.get("id") or f"slip[{index}]")
        try:
            grouped = group_slip(
                slip,
                user_id=user_id,
                bet_source=self.bet_source,
                amounts_in_cents=self.amounts_in_cents,
            )
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Slip {slip_id} could not be grouped: {e}")
            return UpsertReport().add(LegResult.failure(slip_id, e))
        return self.upserter.upsert_slip(grouped)

    def get_sync_status(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Last sync run for a user, or None if the user was never synced."""
        run = self.sync_runs.find_for_user(user_id, self.bet_source)
        if run is None:
            return None
        return {
            "userId": run.user_id,
            "betSource": run.bet_source,
            "status": run.last_sync_status,
            "lastSyncStartedAt": run.last_sync_started_at.isoformat() if run.last_sync_started_at else None,
            "lastSyncCompletedAt": run.last_sync_completed_at.isoformat() if run.last_sync_completed_at else None,
            "slipsFetched": run.slips_fetched,
            "legsProcessed": run.legs_processed,
            "legsInserted": run.legs_inserted,
            "legsUpdated": run.legs_updated,
            "legsFailed": run.legs_failed,
            "errorMessage": run.error_message,
            "durationMs": run.sync_duration_ms,
        }

    @staticmethod
    def _elapsed_ms(start_time: datetime) -> int:
        return int((datetime.utcnow() - start_time).total_seconds() * 1000)
