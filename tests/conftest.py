"""Shared pytest fixtures for the bet sync & settlement tests."""
import os
import sys
from pathlib import Path
from datetime import datetime
from typing import Generator, List, Optional
import uuid

# Must be set before the app modules read settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_JSON", "false")

import pytest
from sqlalchemy.orm import sessionmaker, Session

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create fresh test database session with isolated in-memory database."""
    from app.core.database import build_engine
    from app.models import Base

    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)

    TestSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestSessionLocal()

    yield session

    session.close()
    engine.dispose()


@pytest.fixture(autouse=True)
def reset_aggregator_breaker():
    """Every test starts with a closed aggregator circuit."""
    from app.services.sync.circuit_breaker import aggregator_breaker

    aggregator_breaker.close()
    yield
    aggregator_breaker.close()


@pytest.fixture(scope="function")
def test_client(db_session):
    """
    Create FastAPI TestClient bound to the test database session.

    Note: We don't use context manager (with TestClient) so the lifespan
    (scheduler, init_db) does not run during tests.

    Usage:
        def test_endpoint(test_client):
            response = test_client.get("/health")
            assert response.status_code == 200
    """
    from fastapi.testclient import TestClient
    from app.main import app
    from app.core.database import get_db

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    client = TestClient(app)
    yield client

    app.dependency_overrides.clear()


# =============================================================================
# FEED BUILDERS
# =============================================================================

def make_leg(
    bet_id: str,
    odds: Optional[int] = -110,
    status: Optional[str] = None,
    outcome: Optional[str] = None,
    proposition: str = "Point Spread",
    position: Optional[str] = "home",
    line: Optional[float] = -2.5,
) -> dict:
    """Build one raw aggregator leg."""
    leg = {
        "id": bet_id,
        "event": {
            "sport": "football",
            "league": "NFL",
            "startTime": "2025-01-05T21:25:00Z",
            "contestantHome": {"fullName": "Cleveland Browns"},
            "contestantAway": {"fullName": "Cincinnati Bengals"},
        },
        "proposition": proposition,
        "bookDescription": f"Cincinnati Bengals @ Cleveland Browns - {proposition}",
        "position": position,
        "line": line,
        "oddsAmerican": odds,
    }
    if status is not None:
        leg["status"] = status
    if outcome is not None:
        leg["outcome"] = outcome
    return leg


def make_slip(
    slip_id: str,
    legs: List[dict],
    status: str = "pending",
    outcome: Optional[str] = None,
    at_risk: Optional[int] = 10000,
    to_win: int = 9091,
    odds: Optional[int] = None,
    time_placed: Optional[str] = "2025-01-05T18:00:00Z",
    date_closed: Optional[str] = None,
) -> dict:
    """Build one raw aggregator bet slip. Amounts are integer cents."""
    return {
        "id": slip_id,
        "type": "parlay" if len(legs) > 1 else "single",
        "status": status,
        "outcome": outcome,
        "oddsAmerican": odds,
        "atRisk": at_risk,
        "toWin": to_win,
        "book": {"name": "FanDuel"},
        "timePlaced": time_placed,
        "dateClosed": date_closed,
        "bets": legs,
    }


def create_bet(db: Session, **kwargs):
    """Insert a Bet row directly, with sensible defaults."""
    from app.models import Bet

    now = datetime.utcnow()
    defaults = {
        "id": str(uuid.uuid4()),
        "external_bet_id": str(uuid.uuid4()),
        "user_id": "user-1",
        "parlay_id": None,
        "is_parlay": False,
        "leg_index": 0,
        "is_primary": True,
        "bet_type": "spread",
        "odds": -110,
        "stake": 100.0,
        "potential_payout": 190.91,
        "status": "pending",
        "profit": None,
        "placed_at": now,
        "bet_source": "sharpsports",
        "created_at": now,
        "updated_at": now,
    }
    defaults.update(kwargs)
    bet = Bet(**defaults)
    db.add(bet)
    db.flush()
    return bet


def create_parlay(db: Session, legs: List[dict], stake: float = 100.0, user_id: str = "user-1",
                  parlay_id: Optional[str] = None, placed_at: Optional[datetime] = None,
                  leg_count: Optional[int] = None):
    """
    Insert a parlay group. Each item of ``legs`` is a dict with at least
    ``status`` and ``odds``, plus optional ``profit``. The first leg is the
    primary; ``leg_count`` records a slip that had more legs than were stored.
    """
    parlay_id = parlay_id or str(uuid.uuid4())
    rows = []
    for index, leg in enumerate(legs):
        fields = {
            "user_id": user_id,
            "parlay_id": parlay_id,
            "is_parlay": True,
            "leg_index": index,
            "is_primary": index == 0,
            "parlay_leg_count": leg_count or len(legs),
            "stake": stake if index == 0 else 0.0,
            "potential_payout": 0.0,
            "placed_at": placed_at or datetime.utcnow(),
        }
        fields.update(leg)
        rows.append(create_bet(db, **fields))
    return rows
