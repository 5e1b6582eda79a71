"""
Models Module

Usage:
    from app.models import Bet, SyncRun

    pending = db.query(Bet).filter(Bet.status == "pending").all()
"""
from app.models.models import (
    Base,
    Bet,
    SyncRun,
    BET_STATUSES,
    BET_SIDES,
    BET_TYPES,
)

__all__ = [
    "Base",
    "Bet",
    "SyncRun",
    "BET_STATUSES",
    "BET_SIDES",
    "BET_TYPES",
]
