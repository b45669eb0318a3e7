from fastapi import APIRouter

from app.api.v1.endpoints import (
    # Payments & settlement
    payments,
    # Business commission tiers
    commissions,
    # Shopper loyalty points
    rewards,
)

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(
    payments.router,
    prefix="/payments",
    tags=["Payments"]
)

api_router.include_router(
    commissions.router,
    prefix="/commissions",
    tags=["Commissions"]
)

api_router.include_router(
    rewards.router,
    prefix="/rewards",
    tags=["Rewards"]
)
