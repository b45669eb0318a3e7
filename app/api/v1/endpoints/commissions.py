"""API endpoints for business commission tiers."""
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import select

from app.api.deps import DB, Resolver, AdminKey
from app.models.business import Business
from app.schemas.commission import (
    CommissionTierResponse,
    CommissionScheduleResponse,
    BusinessTierResponse,
)

router = APIRouter(dependencies=[AdminKey])


@router.get("/tiers", response_model=CommissionScheduleResponse)
async def get_commission_tiers(resolver: Resolver):
    """The commission tier schedule in force."""
    if resolver.schedule is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Commission tier schedule is not configured"
        )

    return CommissionScheduleResponse(
        version=resolver.schedule.version,
        default_rate=resolver.default_rate,
        window_days=resolver.window_days,
        tiers=[CommissionTierResponse(**tier.to_dict()) for tier in resolver.schedule.tiers],
    )


@router.get("/businesses/{business_id}/tier", response_model=BusinessTierResponse)
async def get_business_tier(
    business_id: UUID,
    db: DB,
    resolver: Resolver,
):
    """Current tier, rolling turnover and distance to the next tier."""
    result = await db.execute(select(Business.id).where(Business.id == business_id))
    if result.scalar_one_or_none() is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Business not found"
        )

    quote = await resolver.resolve_rate(db, business_id)
    turnover = await resolver.turnover_for_business(db, business_id)

    current = next_tier = None
    turnover_to_next = None
    if resolver.schedule is not None:
        tier = resolver.schedule.tier_for_turnover(turnover)
        current = CommissionTierResponse(**tier.to_dict())
        upcoming = resolver.schedule.next_tier(tier)
        if upcoming is not None:
            next_tier = CommissionTierResponse(**upcoming.to_dict())
            turnover_to_next = max(upcoming.min_turnover - turnover, Decimal("0.00"))

    return BusinessTierResponse(
        business_id=business_id,
        effective_rate=quote.rate,
        source=quote.tier_name,
        turnover=turnover,
        current_tier=current,
        next_tier=next_tier,
        turnover_to_next_tier=turnover_to_next,
    )
