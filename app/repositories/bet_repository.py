"""
Bet Repository for leg-level data access.

Usage:
    repo = BetRepository(db)
    leg = repo.find_by_external_id(user_id, "slip-42-bet-7")
    parlay_ids = repo.parlay_id_page(after=None, limit=200)
"""
from typing import Iterable, List, Optional

from sqlalchemy import desc, func

from app.models import Bet
from app.repositories.base import BaseRepository


class BetRepository(BaseRepository[Bet]):
    """Repository for bet legs, standalone and parlay."""

    def __init__(self, db):
        super().__init__(Bet, db)

    # ========================================================================
    # Natural Key Lookups
    # ========================================================================

    def find_by_external_id(self, user_id: str, external_bet_id: str) -> Optional[Bet]:
        """Find a leg by its ``(user_id, external_bet_id)`` natural key."""
        return self.where_first(
            Bet.user_id == user_id,
            Bet.external_bet_id == external_bet_id,
        )

    def find_by_parlay(self, parlay_id: str) -> List[Bet]:
        """All legs of one parlay, in arrival order."""
        return (
            self.query()
            .filter(Bet.parlay_id == parlay_id)
            .order_by(Bet.leg_index, Bet.id)
            .all()
        )

    # ========================================================================
    # Keyset Paging (reconciliation)
    # ========================================================================

    def standalone_page(
        self,
        after_id: Optional[str],
        limit: int,
        user_id: Optional[str] = None,
    ) -> List[Bet]:
        """
        Next page of standalone bets ordered by id.

        Args:
            after_id: Last id of the previous page (None for the first page)
            limit: Page size
            user_id: Restrict to one user's bets
        """
        query = self.query().filter(Bet.parlay_id.is_(None))
        if user_id is not None:
            query = query.filter(Bet.user_id == user_id)
        if after_id is not None:
            query = query.filter(Bet.id > after_id)
        return query.order_by(Bet.id).limit(limit).all()

    def parlay_id_page(
        self,
        after: Optional[str],
        limit: int,
        user_id: Optional[str] = None,
    ) -> List[str]:
        """Next page of distinct parlay ids, ordered."""
        query = self.db.query(Bet.parlay_id).filter(Bet.parlay_id.isnot(None))
        if user_id is not None:
            query = query.filter(Bet.user_id == user_id)
        if after is not None:
            query = query.filter(Bet.parlay_id > after)
        rows = query.distinct().order_by(Bet.parlay_id).limit(limit).all()
        return [row[0] for row in rows]

    def legs_for_parlays(self, parlay_ids: Iterable[str]) -> List[Bet]:
        parlay_ids = list(parlay_ids)
        if not parlay_ids:
            return []
        return (
            self.query()
            .filter(Bet.parlay_id.in_(parlay_ids))
            .order_by(Bet.parlay_id, Bet.leg_index, Bet.id)
            .all()
        )

    def recent_parlay_ids(self, limit: int) -> List[str]:
        """The most recently placed parlay groups, newest first."""
        latest = func.max(Bet.placed_at)
        rows = (
            self.db.query(Bet.parlay_id, latest.label("latest_placed"))
            .filter(Bet.parlay_id.isnot(None))
            .group_by(Bet.parlay_id)
            .order_by(desc("latest_placed"), Bet.parlay_id)
            .limit(limit)
            .all()
        )
        return [row[0] for row in rows]
