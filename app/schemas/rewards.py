"""Loyalty points schemas."""
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel
from typing import Optional, List
from uuid import UUID

from app.schemas.base import BaseResponseSchema


class PointsBalanceResponse(BaseModel):
    user_id: UUID
    balance: Decimal
    total_earned: Decimal
    total_redeemed: Decimal


class PointsTransactionResponse(BaseResponseSchema):
    id: UUID
    order_id: Optional[UUID] = None
    transaction_type: str
    amount: Decimal
    description: Optional[str] = None
    created_at: datetime


class PointsTransactionListResponse(BaseModel):
    items: List[PointsTransactionResponse]
    total: int


class PointsAuditResponse(BaseModel):
    user_id: UUID
    balance: Decimal
    total_earned: Decimal
    total_redeemed: Decimal
    ledger_earned: Decimal
    ledger_redeemed: Decimal
    ledger_balance: Decimal
    is_consistent: bool
