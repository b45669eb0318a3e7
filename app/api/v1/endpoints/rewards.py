"""API endpoints for shopper loyalty points."""
from uuid import UUID

from fastapi import APIRouter, Query

from app.api.deps import DB, AdminKey
from app.schemas.rewards import (
    PointsBalanceResponse,
    PointsTransactionResponse,
    PointsTransactionListResponse,
    PointsAuditResponse,
)
from app.services.rewards_service import RewardsService

router = APIRouter(dependencies=[AdminKey])


@router.get("/users/{user_id}/points", response_model=PointsBalanceResponse)
async def get_user_points(user_id: UUID, db: DB):
    summary = await RewardsService(db).get_points(user_id)
    return PointsBalanceResponse(
        user_id=user_id,
        balance=summary.balance,
        total_earned=summary.total_earned,
        total_redeemed=summary.total_redeemed,
    )


@router.get("/users/{user_id}/transactions", response_model=PointsTransactionListResponse)
async def get_user_transactions(
    user_id: UUID,
    db: DB,
    limit: int = Query(100, ge=1, le=500),
):
    """Ledger entries, newest first."""
    transactions = await RewardsService(db).list_transactions(user_id, limit=limit)
    return PointsTransactionListResponse(
        items=[PointsTransactionResponse.model_validate(t) for t in transactions],
        total=len(transactions),
    )


@router.get("/users/{user_id}/audit", response_model=PointsAuditResponse)
async def audit_user_points(user_id: UUID, db: DB):
    """Compare the cached balance with the ledger."""
    audit = await RewardsService(db).audit_balance(user_id)
    return PointsAuditResponse(
        user_id=user_id,
        balance=audit.balance,
        total_earned=audit.total_earned,
        total_redeemed=audit.total_redeemed,
        ledger_earned=audit.ledger_earned,
        ledger_redeemed=audit.ledger_redeemed,
        ledger_balance=audit.ledger_balance,
        is_consistent=audit.is_consistent,
    )
