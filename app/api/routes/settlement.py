"""
Settlement reconciliation API (administrative).

POST /settlement/reconcile runs one of:
- recalculate_all: recompute profit for every stored bet
- recalculate_user: same, scoped to ``userId``
- validate: read-only sample of recent parlays, returns mismatches

GET /settlement/reconcile documents the settlement rules.
"""
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.logging import get_logger
from app.core.metrics import set_discrepancy_count
from app.services.settlement.profit_calculator import SETTLEMENT_RULES
from app.services.settlement.reconciler import SettlementReconciler

logger = get_logger(__name__)

router = APIRouter(prefix="/settlement", tags=["settlement"])

ACTIONS = {
    "recalculate_all": "Recalculate profit for every stored bet",
    "recalculate_user": "Recalculate profit for one user's bets (requires userId)",
    "validate": "Read-only check of a sample of recent parlays",
}


class ReconcileRequest(BaseModel):
    action: str = Field(..., description="recalculate_all, recalculate_user or validate")
    userId: Optional[str] = Field(None, description="Required for recalculate_user")


@router.post("/reconcile")
def reconcile(request: ReconcileRequest, db: Session = Depends(get_db)) -> Dict:
    """Run a reconciliation action."""
    reconciler = SettlementReconciler(db)

    if request.action == "recalculate_all":
        result = reconciler.recalc_all()
        return {
            "success": result.success,
            "message": f"Recalculated profits for all bets: {result.updated} updated",
            "details": result.to_dict(),
        }

    if request.action == "recalculate_user":
        if not request.userId:
            raise HTTPException(status_code=400, detail="userId is required for recalculate_user")
        result = reconciler.recalc_for_user(request.userId)
        return {
            "success": result.success,
            "message": f"Recalculated profits for user {request.userId}: {result.updated} updated",
            "details": result.to_dict(),
        }

    if request.action == "validate":
        issues = reconciler.validate()
        set_discrepancy_count(len(issues))
        return {
            "success": True,
            "message": f"Validation found {len(issues)} profit discrepancies",
            "details": {"success": True, "issues": [issue.to_dict() for issue in issues]},
        }

    raise HTTPException(
        status_code=400,
        detail=f"Unknown action '{request.action}'. Expected one of: {', '.join(ACTIONS)}",
    )


@router.get("/reconcile")
def describe_reconcile() -> Dict:
    """Document the reconciliation actions and the settlement rules they apply."""
    return {
        "description": "Recalculate or validate stored bet profits from current leg statuses",
        "actions": ACTIONS,
        "rules": SETTLEMENT_RULES,
    }
