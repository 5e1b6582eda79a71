"""
Database models for bet sync and settlement.

One flat row per wagering leg. Parlay grouping is implicit through the shared
``parlay_id`` column; there is no separate parlay table.
"""
from datetime import datetime
from sqlalchemy import Column, String, Float, Integer, DateTime, Boolean, Text, Index, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()

BET_STATUSES = ("pending", "won", "lost", "void", "cancelled")
BET_SIDES = ("over", "under", "home", "away")
BET_TYPES = (
    "spread", "moneyline", "total", "player_prop",
    "game_prop", "first_half", "quarter", "period",
)


def _in_list(column: str, values: tuple) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class Bet(Base):
    """A single wagering leg, standalone or part of a parlay.

    Within one parlay only the primary leg (``is_primary``) carries a nonzero
    stake, potential payout or profit, so that summing those columns across a
    user's rows counts each real-money wager once. The primary is the first leg
    of the slip that passed validation, chosen once at grouping time.
    """
    __tablename__ = "bets"

    id = Column(String(36), primary_key=True)
    external_bet_id = Column(String(255), nullable=False)  # aggregator id, unique per user
    user_id = Column(String(36), nullable=False, index=True)

    # Grouping
    parlay_id = Column(String(36), nullable=True, index=True)  # shared by all legs of a slip
    is_parlay = Column(Boolean, nullable=False, default=False)
    leg_index = Column(Integer, nullable=False, default=0)  # arrival order inside the slip
    is_primary = Column(Boolean, nullable=False, default=False)  # carries the slip's stake and profit
    parlay_leg_count = Column(Integer, nullable=True)  # legs on the slip, stored or rejected

    # Wager terms
    sport = Column(String(50), nullable=True)
    league = Column(String(50), nullable=True)
    bet_type = Column(String(20), nullable=False, default="player_prop")
    bet_description = Column(Text, nullable=True)
    odds = Column(Integer, nullable=False)  # American odds (-110, +150, ...)
    side = Column(String(10), nullable=True)  # over, under, home, away
    line_value = Column(Float, nullable=True)
    stake = Column(Float, nullable=False, default=0.0)
    potential_payout = Column(Float, nullable=False, default=0.0)  # stake + to_win

    # Outcome
    status = Column(String(20), nullable=False, default="pending", index=True)
    profit = Column(Float, nullable=True)  # NULL exactly while unresolved
    placed_at = Column(DateTime, nullable=False, index=True)
    settled_at = Column(DateTime, nullable=True)
    game_date = Column(DateTime, nullable=True, index=True)
    home_team = Column(String(100), nullable=True)
    away_team = Column(String(100), nullable=True)

    # Provenance
    sportsbook = Column(String(100), nullable=True)
    bet_source = Column(String(50), nullable=False, default="sharpsports")

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "external_bet_id", name="uq_bets_user_external_id"),
        CheckConstraint(_in_list("status", BET_STATUSES), name="ck_bets_status"),
        CheckConstraint(f"side IS NULL OR {_in_list('side', BET_SIDES)}", name="ck_bets_side"),
        CheckConstraint(_in_list("bet_type", BET_TYPES), name="ck_bets_bet_type"),
        Index("ix_bets_user_parlay", "user_id", "parlay_id"),
    )

    def __repr__(self):
        return (f"Bet(id={self.id}, external_bet_id={self.external_bet_id}, "
                f"parlay_id={self.parlay_id}, leg_index={self.leg_index}, "
                f"status={self.status}, profit={self.profit})")


class SyncRun(Base):
    """Tracks the most recent bet sync for each user.

    Lets operators see when a user's bets were last pulled from the aggregator,
    whether it succeeded, and how many legs were written or rejected.
    """
    __tablename__ = "sync_runs"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False)
    bet_source = Column(String(50), nullable=False)
    last_sync_started_at = Column(DateTime, nullable=True)
    last_sync_completed_at = Column(DateTime, nullable=True, index=True)
    last_sync_status = Column(String(16), nullable=True, index=True)  # in_progress, success, partial, failed
    slips_fetched = Column(Integer, nullable=False, default=0)
    legs_processed = Column(Integer, nullable=False, default=0)
    legs_inserted = Column(Integer, nullable=False, default=0)
    legs_updated = Column(Integer, nullable=False, default=0)
    legs_failed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    sync_duration_ms = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "bet_source", name="uq_sync_runs_user_source"),
    )
