"""Sync API routes for pulling user bets from the aggregator.

Provides endpoints for:
- Triggering a bet sync for one user
- Reading the last sync run for a user
"""
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.exceptions import SyncInProgressError, UpstreamFetchError
from app.core.logging import get_logger
from app.services.sync.orchestrator import BetSyncOrchestrator

logger = get_logger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


class SyncRequest(BaseModel):
    """Request body for a user bet sync."""
    userId: str = Field(..., min_length=1, description="Internal user id")
    bettorId: str = Field(..., min_length=1, description="Aggregator bettor id for this user")


class SyncStats(BaseModel):
    totalBetSlips: int
    totalBets: int
    newBets: int
    updatedBets: int
    errors: int


class SyncResponse(BaseModel):
    success: bool
    message: str
    stats: SyncStats
    errorDetails: list = Field(default_factory=list)


def get_orchestrator(db: Session = Depends(get_db)) -> BetSyncOrchestrator:
    """Dependency to get sync orchestrator instance."""
    return BetSyncOrchestrator(db)


@router.post("", response_model=SyncResponse)
async def sync_user_bets(
    request: SyncRequest,
    orchestrator: BetSyncOrchestrator = Depends(get_orchestrator),
):
    """
    Fetch every bet slip for a user and upsert the legs.

    A malformed leg is reported in ``errorDetails`` without failing the call.
    An unreachable aggregator returns 502; an overlapping sync for the same
    user returns 409.
    """
    try:
        report = await orchestrator.sync_user_bets(request.userId, request.bettorId)
    except UpstreamFetchError as e:
        return JSONResponse(
            status_code=502,
            content={"success": False, "retryable": e.retryable, "message": str(e)},
        )
    except SyncInProgressError as e:
        return JSONResponse(
            status_code=409,
            content={"success": False, "retryable": True, "message": str(e)},
        )
    return report.to_dict()


@router.get("/status/{user_id}")
async def get_sync_status(
    user_id: str,
    orchestrator: BetSyncOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """Get the last sync run for a user."""
    status = orchestrator.get_sync_status(user_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"No sync has run for user {user_id}")
    return status
