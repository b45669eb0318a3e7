"""
Reconciliation Service

Recovers settlements whose webhook never arrived: asks Razorpay for the
payments made against an order's checkout and, when one is captured,
finalizes the order exactly as the webhook would have.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.order import Order, OrderStatus
from app.services.payment_service import PaymentService
from app.services.settlement_service import SettlementService, PaymentNotification

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    order_id: uuid.UUID
    outcome: str
    correlation_id: Optional[str] = None


class ReconciliationService:
    """Pulls payment state from the processor for awaiting-payment orders."""

    def __init__(
        self,
        db: AsyncSession,
        settlement: SettlementService,
        payment_service: PaymentService,
    ):
        self.db = db
        self.settlement = settlement
        self.payment_service = payment_service

    async def reconcile_order(self, order_id: uuid.UUID) -> ReconciliationResult:
        result = await self.db.execute(
            select(Order.status, Order.checkout_session_id, Order.business_id)
            .where(Order.id == order_id)
        )
        row = result.one_or_none()
        if row is None:
            return ReconciliationResult(order_id=order_id, outcome="order_not_found")

        status, checkout_session_id, business_id = row
        if status != OrderStatus.AWAITING_PAYMENT.value:
            return ReconciliationResult(order_id=order_id, outcome="not_awaiting_payment")
        if not checkout_session_id:
            return ReconciliationResult(order_id=order_id, outcome="no_checkout")

        # The razorpay SDK is blocking
        payments = await asyncio.to_thread(self.payment_service.get_order_payments, checkout_session_id)
        captured = next((p for p in payments if p.get("status") == "captured"), None)
        if captured is None:
            logger.info(f"No captured payment yet for order {order_id} ({checkout_session_id})")
            return ReconciliationResult(order_id=order_id, outcome="no_captured_payment")

        settlement = await self.settlement.finalize(PaymentNotification(
            correlation_id=captured["id"],
            order_id=order_id,
            business_id=business_id,
            amount_minor=captured.get("amount"),
            currency=captured.get("currency"),
        ))
        logger.info(f"Reconciled order {order_id} with payment {captured['id']}: {settlement.outcome.value}")
        return ReconciliationResult(
            order_id=order_id,
            outcome=settlement.outcome.value,
            correlation_id=captured["id"],
        )

    async def reconcile_stale_orders(
        self,
        min_age_minutes: Optional[int] = None,
        limit: int = 100,
    ) -> Dict[str, int]:
        """Reconcile awaiting-payment orders older than min_age_minutes."""
        min_age = min_age_minutes if min_age_minutes is not None else settings.PENDING_PAYMENT_MIN_AGE_MINUTES
        cutoff_time = datetime.now(timezone.utc) - timedelta(minutes=min_age)

        result = await self.db.execute(
            select(Order.id)
            .where(
                Order.status == OrderStatus.AWAITING_PAYMENT.value,
                Order.checkout_session_id.is_not(None),
                Order.created_at < cutoff_time,
            )
            .order_by(Order.created_at)
            .limit(limit)
        )
        order_ids: List[uuid.UUID] = list(result.scalars().all())
        await self.db.rollback()

        stats = {"processed": 0, "finalized": 0, "errors": 0}
        for order_id in order_ids:
            stats["processed"] += 1
            try:
                outcome = await self.reconcile_order(order_id)
            except Exception as e:
                # One bad order must not stop the sweep
                logger.error(f"Error reconciling order {order_id}: {e}")
                await self.db.rollback()
                stats["errors"] += 1
                continue
            if outcome.outcome == "finalized":
                stats["finalized"] += 1
            # Release the read snapshot between orders
            await self.db.rollback()

        return stats
