"""
Sync Run Repository: last-sync bookkeeping per user and feed.
"""
from typing import Optional

from app.models import SyncRun
from app.repositories.base import BaseRepository


class SyncRunRepository(BaseRepository[SyncRun]):

    def __init__(self, db):
        super().__init__(SyncRun, db)

    def find_for_user(self, user_id: str, bet_source: str) -> Optional[SyncRun]:
        return self.where_first(
            SyncRun.user_id == user_id,
            SyncRun.bet_source == bet_source,
        )

    def get_or_create(self, user_id: str, bet_source: str) -> SyncRun:
        """Return the user's sync row, creating an empty one if needed."""
        run = self.find_for_user(user_id, bet_source)
        if run is None:
            run = self.create(user_id=user_id, bet_source=bet_source)
        return run
