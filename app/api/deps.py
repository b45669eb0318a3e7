from typing import Annotated, Optional
import hmac
import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.services.commission_service import CommissionResolver, get_commission_resolver
from app.services.payment_service import PaymentService, get_payment_service
from app.services.settlement_service import SettlementService


logger = logging.getLogger(__name__)


async def require_admin_key(
    x_admin_key: Annotated[Optional[str], Header(alias="X-Admin-Key")] = None,
) -> None:
    """
    Dependency guarding operator endpoints.

    The X-Admin-Key header must match ADMIN_API_KEY. With no key configured
    every admin request is refused.
    """
    if not settings.ADMIN_API_KEY:
        logger.warning("ADMIN_API_KEY is not configured, refusing admin request")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access is not configured"
        )

    if not x_admin_key or not hmac.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin key"
        )


def get_settlement_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    resolver: Annotated[CommissionResolver, Depends(get_commission_resolver)],
) -> SettlementService:
    return SettlementService(db, resolver)


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
Resolver = Annotated[CommissionResolver, Depends(get_commission_resolver)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
Settlement = Annotated[SettlementService, Depends(get_settlement_service)]
AdminKey = Depends(require_admin_key)
