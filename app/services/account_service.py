"""
Payment Account Service

Keeps the cached capability flags on BusinessPaymentAccount in line with
Razorpay. Account webhooks normally do this; refresh() pulls the linked
account directly so a missed account.* delivery can be recovered.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.business import BusinessPaymentAccount
from app.services.payment_service import PaymentService, account_capabilities

logger = logging.getLogger(__name__)


class PaymentAccountService:
    """Refreshes linked account state from the processor."""

    def __init__(self, db: AsyncSession, payment_service: PaymentService):
        self.db = db
        self.payment_service = payment_service

    async def get_account(self, business_id: uuid.UUID) -> Optional[BusinessPaymentAccount]:
        result = await self.db.execute(
            select(BusinessPaymentAccount).where(BusinessPaymentAccount.business_id == business_id)
        )
        return result.scalar_one_or_none()

    async def refresh(self, account: BusinessPaymentAccount) -> BusinessPaymentAccount:
        """
        Fetch the linked account and update status and capability flags.

        Raises PaymentGatewayError when Razorpay cannot be reached; the cached
        flags are left as they were.
        """
        # The razorpay SDK is blocking
        remote = await asyncio.to_thread(self.payment_service.fetch_account, account.processor_account_id)
        account_status = remote.get("status")
        charges_enabled, payouts_enabled = account_capabilities(account_status)

        if (
            account.account_status != account_status
            or account.charges_enabled != charges_enabled
            or account.payouts_enabled != payouts_enabled
        ):
            logger.info(
                f"Account {account.processor_account_id} refreshed: {account.account_status} -> {account_status} "
                f"(charges={charges_enabled}, payouts={payouts_enabled})"
            )

        account.account_status = account_status
        account.charges_enabled = charges_enabled
        account.payouts_enabled = payouts_enabled
        account.updated_at = datetime.now(timezone.utc)
        await self.db.commit()
        return account

    async def refresh_for_business(self, business_id: uuid.UUID) -> Optional[BusinessPaymentAccount]:
        account = await self.get_account(business_id)
        if account is None:
            return None
        return await self.refresh(account)
