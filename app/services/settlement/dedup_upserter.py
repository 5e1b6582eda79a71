"""
Idempotent leg persistence.

Each incoming leg is looked up by its ``(user_id, external_bet_id)`` natural
key. A new leg is inserted whole; an existing leg is compared on its mutable
fields and written only when one of them differs, so feeding the same slips
twice produces no writes the second time.

Every leg runs inside its own SAVEPOINT. A failed write rolls back that leg
alone and becomes an error entry in the report; the batch keeps going.
"""
from dataclasses import dataclass, field
from datetime import datetime
from functools import reduce
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import PersistenceError
from app.core.logging import get_logger
from app.models import Bet
from app.repositories.bet_repository import BetRepository
from app.services.settlement.parlay_grouper import GroupedSlip, NormalizedLeg
from app.services.settlement.profit_calculator import profits_match

logger = get_logger(__name__)

# The stake-bearing fields move when a re-sync picks a different primary leg.
MUTABLE_FIELDS = (
    "status", "profit", "settled_at", "line_value", "odds",
    "stake", "potential_payout", "is_primary", "parlay_leg_count",
)

INSERTED = "inserted"
UPDATED = "updated"
UNCHANGED = "unchanged"
FAILED = "failed"


@dataclass(frozen=True)
class LegResult:
    """Outcome of persisting (or rejecting) one leg."""
    leg_id: str
    outcome: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome != FAILED

    @classmethod
    def failure(cls, leg_id: str, error: Exception) -> "LegResult":
        return cls(leg_id=leg_id, outcome=FAILED, error=str(error))


@dataclass
class UpsertReport:
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def add(self, result: LegResult) -> "UpsertReport":
        self.processed += 1
        if result.outcome == INSERTED:
            self.inserted += 1
        elif result.outcome == UPDATED:
            self.updated += 1
        elif result.outcome == UNCHANGED:
            self.unchanged += 1
        else:
            self.errors.append({"legId": result.leg_id, "error": result.error})
        return self

    def merge(self, other: "UpsertReport") -> "UpsertReport":
        self.processed += other.processed
        self.inserted += other.inserted
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.errors.extend(other.errors)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "inserted": self.inserted,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "errors": list(self.errors),
        }


def fold_results(results: Iterable[LegResult]) -> UpsertReport:
    """Fold every leg result into one report; failures never short-circuit."""
    return reduce(UpsertReport.add, results, UpsertReport())


def _values_differ(name: str, stored: Any, incoming: Any) -> bool:
    if name in ("profit", "stake", "potential_payout"):
        return not profits_match(stored, incoming)
    if name == "line_value" and stored is not None and incoming is not None:
        return abs(float(stored) - float(incoming)) > 1e-9
    return stored != incoming


def diff_mutable_fields(existing: Bet, leg: NormalizedLeg) -> Dict[str, Any]:
    """Mutable fields whose incoming value differs from the stored one."""
    changes = {}
    for name in MUTABLE_FIELDS:
        incoming = getattr(leg, name)
        if _values_differ(name, getattr(existing, name), incoming):
            changes[name] = incoming
    return changes


class BetUpserter:
    """
    Compare-and-swap upsert of normalized legs.

    Callers must not run two upserts for the same user at once; the sync
    orchestrator serializes syncs per user.
    """

    def __init__(self, db: Session):
        self.db = db
        self.bets = BetRepository(db)

    def upsert_leg(self, leg: NormalizedLeg) -> LegResult:
        try:
            with self.db.begin_nested():
                existing = self.bets.find_by_external_id(leg.user_id, leg.external_bet_id)
                if existing is None:
                    now = datetime.utcnow()
                    self.bets.create(**leg.to_row(), created_at=now, updated_at=now)
                    outcome = INSERTED
                else:
                    changes = diff_mutable_fields(existing, leg)
                    if changes:
                        self.bets.update_fields(existing, **changes)
                        outcome = UPDATED
                    else:
                        outcome = UNCHANGED
        except SQLAlchemyError as e:
            error = PersistenceError(leg.external_bet_id, str(getattr(e, "orig", None) or e))
            logger.error(str(error))
            return LegResult.failure(leg.external_bet_id, error)

        logger.debug(f"Leg {leg.external_bet_id}: {outcome}")
        return LegResult(leg_id=leg.external_bet_id, outcome=outcome)

    def upsert_slip(self, grouped: GroupedSlip) -> UpsertReport:
        """Persist one grouped slip. Validation rejections count as failed legs."""
        results = [LegResult.failure(e.leg_id, e) for e in grouped.rejected]
        results.extend(self.upsert_leg(leg) for leg in grouped.legs)
        return fold_results(results)

    def upsert_slips(self, slips: Iterable[GroupedSlip]) -> UpsertReport:
        report = UpsertReport()
        for grouped in slips:
            report.merge(self.upsert_slip(grouped))
        return report
