"""
Repository layer for data access.

Usage:
    from app.repositories import BetRepository
    from app.core.database import SessionLocal

    db = SessionLocal()
    bet_repo = BetRepository(db)
    leg = bet_repo.find_by_external_id(user_id, "slip-42-bet-7")
    db.close()
"""

from app.repositories.base import BaseRepository
from app.repositories.bet_repository import BetRepository
from app.repositories.sync_run_repository import SyncRunRepository

__all__ = [
    "BaseRepository",
    "BetRepository",
    "SyncRunRepository",
]
