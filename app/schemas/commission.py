"""Commission tier schemas."""
from decimal import Decimal
from pydantic import BaseModel
from typing import Optional, List
from uuid import UUID


class CommissionTierResponse(BaseModel):
    name: str
    min_turnover: Decimal
    max_turnover: Optional[Decimal] = None
    rate: Decimal


class CommissionScheduleResponse(BaseModel):
    version: str
    default_rate: Decimal
    window_days: int
    tiers: List[CommissionTierResponse]


class BusinessTierResponse(BaseModel):
    """Where a business sits in the schedule and how far the next tier is."""
    business_id: UUID
    effective_rate: Decimal
    source: str  # trial, override, default or a tier name
    turnover: Decimal
    current_tier: Optional[CommissionTierResponse] = None
    next_tier: Optional[CommissionTierResponse] = None
    turnover_to_next_tier: Optional[Decimal] = None
