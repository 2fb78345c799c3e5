"""Reconciliation routes: run the engine for the current user."""

from typing import Optional

from fastapi import APIRouter, Depends
from loguru import logger

from tradeledger.dependencies import get_current_user_id, get_engine
from tradeledger.pipeline.orchestrator import ReconciliationEngine
from tradeledger.schemas import MatchSummary, ReconcileRequest, ReconcileResponse

router = APIRouter()


@router.post("/api/reconcile", response_model=ReconcileResponse)
def reconcile(
    request: Optional[ReconcileRequest] = None,
    user_id: str = Depends(get_current_user_id),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Match, resolve lifecycle events, detect strategies and record cash."""
    request = request or ReconcileRequest()
    logger.info(f"Reconcile requested by {user_id} (import={request.import_id})")
    result = engine.reconcile(user_id, import_id=request.import_id, as_of=request.as_of)

    return ReconcileResponse(
        matching=MatchSummary(
            positions_created=result.matching.positions_created,
            positions_updated=result.matching.positions_updated,
            unmatched_count=result.matching.unmatched_count,
            errors=[f"{e.transaction_id}: {e.error}" for e in result.matching.errors],
        ),
        assignments_applied=result.assignments.positions_updated,
        positions_expired=result.expirations.positions_updated,
        strategies_created=result.detection.strategies_created,
        positions_grouped=result.detection.positions_grouped,
        strategies_closed=result.strategies_closed,
        cash_entries_created=result.cash.entries_created,
        total_cash=result.balance.total_cash if result.balance else None,
    )
