"""
Settlement reconciliation.

Re-derives stored profit from each leg's current status and rewrites only the
legs whose stored value disagrees. Bets are read in keyset-ordered pages of
``RECONCILE_BATCH_SIZE`` (standalone bets by id, parlay groups by parlay_id)
and each page is committed on its own, so an interrupted run can simply be
started again and converges to the same fixed point.

A parlay group with fewer stored legs than its slip carried (some legs were
rejected at ingestion) is only settled here once its stored legs already lose;
any other outcome depends on the missing legs, so the profit written at sync
time stands.

Usage:
    reconciler = SettlementReconciler(db)
    result = reconciler.recalc_for_user(user_id)
    issues = reconciler.validate()
"""
from dataclasses import dataclass, field
from itertools import groupby
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import OddsConversionError
from app.core.logging import get_logger
from app.core.metrics import record_reconcile
from app.models import Bet
from app.repositories.bet_repository import BetRepository
from app.services.settlement.profit_calculator import (
    Lost,
    Pending,
    leg_state,
    missing_legs,
    parlay_outcome,
    profits_match,
    settle_parlay,
    settle_single,
)

logger = get_logger(__name__)


@dataclass
class ReconcileResult:
    success: bool = True
    updated: int = 0
    scanned: int = 0
    skipped_pending: int = 0
    skipped_incomplete: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "updated": self.updated,
            "scanned": self.scanned,
            "skippedPending": self.skipped_pending,
            "skippedIncomplete": self.skipped_incomplete,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class Discrepancy:
    """A parlay leg whose stored profit differs from the recomputed one."""
    parlay_id: str
    bet_id: str
    expected: Optional[float]
    stored: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parlayId": self.parlay_id,
            "betId": self.bet_id,
            "expected": self.expected,
            "stored": self.stored,
        }


class SettlementReconciler:
    """Recalculates and validates stored bet profits."""

    def __init__(self, db: Session, batch_size: Optional[int] = None):
        self.db = db
        self.bets = BetRepository(db)
        self.batch_size = batch_size or settings.RECONCILE_BATCH_SIZE

    # ========================================================================
    # Recalculation
    # ========================================================================

    def recalc_all(self) -> ReconcileResult:
        """Recalculate profit for every stored bet."""
        return self._recalc(user_id=None, scope="all")

    def recalc_for_user(self, user_id: str) -> ReconcileResult:
        """Recalculate profit for one user's bets."""
        return self._recalc(user_id=user_id, scope="user")

    def _recalc(self, user_id: Optional[str], scope: str) -> ReconcileResult:
        result = ReconcileResult()
        label = f"user {user_id}" if user_id else "all users"
        logger.info(f"Starting profit recalculation for {label} (batch_size={self.batch_size})")

        after_id = None
        while True:
            page = self.bets.standalone_page(after_id, self.batch_size, user_id=user_id)
            if not page:
                break
            changed = sum(self._reconcile_standalone(bet, result) for bet in page)
            self._commit_batch(changed, result)
            after_id = page[-1].id

        after_parlay = None
        while True:
            parlay_ids = self.bets.parlay_id_page(after_parlay, self.batch_size, user_id=user_id)
            if not parlay_ids:
                break
            legs = self.bets.legs_for_parlays(parlay_ids)
            changed = 0
            for parlay_id, group in groupby(legs, key=lambda bet: bet.parlay_id):
                changed += self._reconcile_parlay(parlay_id, list(group), result)
            self._commit_batch(changed, result)
            after_parlay = parlay_ids[-1]

        result.success = not result.errors
        record_reconcile(scope, result.updated, len(result.errors))
        logger.info(
            f"Profit recalculation for {label} complete: {result.scanned} bets scanned, "
            f"{result.updated} updated, {result.skipped_pending} pending parlays skipped, "
            f"{result.skipped_incomplete} incomplete parlays skipped, "
            f"{len(result.errors)} errors"
        )
        return result

    def _reconcile_standalone(self, bet: Bet, result: ReconcileResult) -> int:
        result.scanned += 1
        try:
            expected = settle_single(bet.status, bet.stake or 0.0, bet.odds)
        except OddsConversionError as e:
            result.errors.append(f"Bet {bet.id}: {e}")
            return 0
        if profits_match(bet.profit, expected):
            return 0
        self.bets.update_fields(bet, profit=expected)
        return 1

    def _reconcile_parlay(self, parlay_id: str, legs: List[Bet], result: ReconcileResult) -> int:
        result.scanned += len(legs)
        states = [leg_state(bet) for bet in legs]
        try:
            outcome = parlay_outcome(states)
            if isinstance(outcome, Pending):
                result.skipped_pending += 1
                return 0
            if missing_legs(legs) and not isinstance(outcome, Lost):
                result.skipped_incomplete += 1
                return 0
            expected = settle_parlay(states)
        except OddsConversionError as e:
            result.errors.append(f"Parlay {parlay_id}: {e}")
            return 0

        changed = 0
        for bet in legs:
            if not profits_match(bet.profit, expected[bet.id]):
                self.bets.update_fields(bet, profit=expected[bet.id])
                changed += 1
        return changed

    def _commit_batch(self, changed: int, result: ReconcileResult) -> None:
        if not changed:
            return
        try:
            self.bets.save()
        except SQLAlchemyError as e:
            self.bets.rollback()
            logger.error(f"Reconciliation batch failed to commit: {e}")
            result.errors.append(f"Batch commit failed: {e}")
            return
        result.updated += changed

    # ========================================================================
    # Validation (read-only)
    # ========================================================================

    def validate(self, sample_limit: Optional[int] = None) -> List[Discrepancy]:
        """
        Recompute profit for a sample of recent parlays without writing.

        Groups still pending, and incomplete groups that do not already
        lose, are left out, matching what recalculation would touch.
        """
        limit = sample_limit or settings.VALIDATE_SAMPLE_LIMIT
        parlay_ids = self.bets.recent_parlay_ids(limit)
        legs = self.bets.legs_for_parlays(parlay_ids)

        issues: List[Discrepancy] = []
        for parlay_id, group in groupby(legs, key=lambda bet: bet.parlay_id):
            group = list(group)
            states = [leg_state(bet) for bet in group]
            try:
                outcome = parlay_outcome(states)
                if isinstance(outcome, Pending):
                    continue
                if missing_legs(group) and not isinstance(outcome, Lost):
                    continue
                expected = settle_parlay(states)
            except OddsConversionError as e:
                logger.warning(f"Parlay {parlay_id} cannot be validated: {e}")
                continue
            for bet in group:
                if not profits_match(bet.profit, expected[bet.id]):
                    issues.append(Discrepancy(
                        parlay_id=parlay_id,
                        bet_id=bet.id,
                        expected=expected[bet.id],
                        stored=bet.profit,
                    ))

        logger.info(f"Validated {len(parlay_ids)} parlays: {len(issues)} discrepancies")
        return issues
