"""
Settlement Service - finalizes an order once its payment has succeeded.

Everything an order needs after payment happens inside one transaction under
a row lock on the order:
- commission split at the business's effective rate
- awaiting_payment -> processing (compare-and-swap)
- stock decrements for product lines
- cart clearing
- points redemption and cashback
- order.finalized outbox event

Repeated notifications for the same payment are no-ops.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, List, Dict

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.models.cart import CartItem, CartServiceItem
from app.models.order import Order, OrderItemType, OrderStatus, can_transition, statuses_allowing
from app.services.commission_service import CommissionResolver, CommissionQuote, compute_split
from app.services.inventory_service import InventoryService
from app.services.notification_service import enqueue_order_finalized
from app.services.payment_service import from_minor_units
from app.services.rewards_service import RewardsService, InsufficientBalanceError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Shown to shoppers for any failed payment. Processor reasons stay internal.
PAYMENT_FAILED_MESSAGE = "Payment could not be completed. Please try again or use a different payment method."


class SettlementError(Exception):
    """Raised when a payment notification cannot be settled."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class SettlementOutcome(str, Enum):
    FINALIZED = "finalized"
    DUPLICATE = "duplicate"
    ALREADY_SETTLED = "already_settled"
    AUDIT_ONLY = "audit_only"
    ORDER_NOT_FOUND = "order_not_found"
    CANCELLED = "cancelled"
    NOT_CANCELLABLE = "not_cancellable"


@dataclass
class PaymentNotification:
    """A verified, correlated "payment succeeded" signal from the processor."""
    correlation_id: str
    order_id: uuid.UUID
    business_id: Optional[uuid.UUID] = None
    amount_minor: Optional[int] = None
    currency: Optional[str] = None


@dataclass
class SettlementResult:
    outcome: SettlementOutcome
    order_id: uuid.UUID
    status: Optional[str] = None
    commission_rate: Optional[Decimal] = None
    commission_tier: Optional[str] = None
    platform_commission: Optional[Decimal] = None
    business_amount: Optional[Decimal] = None
    points_earned: Decimal = Decimal("0.00")
    notes: List[str] = field(default_factory=list)


def append_internal_note(order: Order, note: str) -> None:
    """Append a timestamped line to the order's internal notes."""
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    entry = f"[{stamp} UTC] {note}"
    order.internal_notes = f"{order.internal_notes}\n{entry}" if order.internal_notes else entry


class SettlementService:
    """Applies payment outcomes to orders."""

    def __init__(
        self,
        db: AsyncSession,
        resolver: CommissionResolver,
        inventory: Optional[InventoryService] = None,
        rewards: Optional[RewardsService] = None,
        cashback_rate: Optional[Decimal] = None,
    ):
        self.db = db
        self.resolver = resolver
        self.inventory = inventory or InventoryService(db)
        self.rewards = rewards or RewardsService(db)
        self.cashback_rate = (
            Decimal(str(cashback_rate)) if cashback_rate is not None
            else Decimal(str(settings.CASHBACK_RATE))
        )

    async def _lock_order(self, order_id: uuid.UUID) -> Optional[Order]:
        result = await self.db.execute(
            select(Order)
            .options(
                selectinload(Order.items),
                selectinload(Order.user),
                selectinload(Order.business),
            )
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _correlation_owner(self, correlation_id: str) -> Optional[uuid.UUID]:
        result = await self.db.execute(
            select(Order.id).where(Order.payment_correlation_id == correlation_id)
        )
        return result.scalar_one_or_none()

    def _settled_amount(self, order: Order, notification: PaymentNotification) -> Decimal:
        if notification.amount_minor is None:
            return Decimal(order.total_amount).quantize(CENT)

        settled = from_minor_units(notification.amount_minor)
        if settled != Decimal(order.total_amount).quantize(CENT):
            logger.warning(
                f"Payment {notification.correlation_id} amount {settled} differs from "
                f"order {order.order_number} total {order.total_amount}"
            )
            append_internal_note(
                order,
                f"Payment {notification.correlation_id} settled {settled} against order total {order.total_amount}.",
            )
        return settled

    async def finalize(self, notification: PaymentNotification) -> SettlementResult:
        """
        Finalize an order for a succeeded payment.

        Safe to call any number of times for the same correlation id. Any
        database error rolls the whole settlement back and propagates.
        """
        if not notification.correlation_id:
            raise SettlementError(
                "Payment notification has no correlation id",
                {"order_id": str(notification.order_id)},
            )

        try:
            order = await self._lock_order(notification.order_id)
            if order is None:
                logger.error(
                    f"Order {notification.order_id} not found for payment {notification.correlation_id}"
                )
                await self.db.rollback()
                return SettlementResult(outcome=SettlementOutcome.ORDER_NOT_FOUND, order_id=notification.order_id)

            # Rollback expires the instance, so keep what the result needs.
            order_id, status = order.id, order.status

            if order.payment_correlation_id == notification.correlation_id:
                logger.info(
                    f"Payment {notification.correlation_id} already applied to order {order.order_number}, skipping"
                )
                await self.db.rollback()
                return SettlementResult(outcome=SettlementOutcome.DUPLICATE, order_id=order_id, status=status)

            owner = await self._correlation_owner(notification.correlation_id)
            if owner is not None:
                logger.error(
                    f"Payment {notification.correlation_id} already settled order {owner}, "
                    f"ignoring it for order {order_id}"
                )
                await self.db.rollback()
                return SettlementResult(outcome=SettlementOutcome.DUPLICATE, order_id=order_id, status=status)

            if notification.business_id and notification.business_id != order.business_id:
                logger.warning(
                    f"Payment {notification.correlation_id} names business {notification.business_id} "
                    f"but order {order.order_number} belongs to {order.business_id}"
                )

            if not can_transition(order.status, OrderStatus.PROCESSING.value):
                return await self._record_late_payment(order, notification)

            return await self._settle(order, notification)
        except Exception:
            await self.db.rollback()
            raise

    async def _record_late_payment(self, order: Order, notification: PaymentNotification) -> SettlementResult:
        """Payment for an order that already left awaiting_payment: record it, touch nothing else."""
        settled = self._settled_amount(order, notification)

        if order.payment_correlation_id is None:
            quote = await self.resolver.resolve_rate(self.db, order.business_id)
            commission, business_amount = compute_split(settled, quote.rate)
            order.payment_correlation_id = notification.correlation_id
            order.paid_at = datetime.now(timezone.utc)
            order.commission_rate = quote.rate
            order.commission_tier = quote.tier_name
            order.platform_commission = commission
            order.business_amount = business_amount
            note = (
                f"Payment {notification.correlation_id} received while order was {order.status}. "
                f"Recorded for audit, no fulfilment changes made."
            )
        else:
            note = (
                f"Additional payment {notification.correlation_id} received; order already settled by "
                f"{order.payment_correlation_id}. Refund review required."
            )

        append_internal_note(order, note)
        await self.db.commit()

        logger.warning(f"Order {order.order_number}: {note}")
        return SettlementResult(
            outcome=SettlementOutcome.AUDIT_ONLY,
            order_id=order.id,
            status=order.status,
            commission_rate=order.commission_rate,
            commission_tier=order.commission_tier,
            platform_commission=order.platform_commission,
            business_amount=order.business_amount,
            notes=[note],
        )

    async def _settle(self, order: Order, notification: PaymentNotification) -> SettlementResult:
        settled = self._settled_amount(order, notification)
        quote: CommissionQuote = await self.resolver.resolve_rate(self.db, order.business_id)
        commission, business_amount = compute_split(settled, quote.rate)
        now = datetime.now(timezone.utc)

        swapped = await self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.status.in_(statuses_allowing(OrderStatus.PROCESSING.value)),
            )
            .values(
                status=OrderStatus.PROCESSING.value,
                payment_correlation_id=notification.correlation_id,
                paid_at=now,
                commission_rate=quote.rate,
                commission_tier=quote.tier_name,
                platform_commission=commission,
                business_amount=business_amount,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if swapped.rowcount == 0:
            order_id = order.id
            await self.db.rollback()
            logger.info(f"Order {order_id} left awaiting_payment concurrently, nothing to do")
            return SettlementResult(outcome=SettlementOutcome.ALREADY_SETTLED, order_id=order_id)

        await self.db.refresh(order, [
            "status", "payment_correlation_id", "paid_at", "commission_rate",
            "commission_tier", "platform_commission", "business_amount", "updated_at",
        ])

        notes: List[str] = []

        # Stock
        for item in order.items:
            if item.item_type != OrderItemType.PRODUCT.value or item.product_id is None:
                continue
            decrement = await self.inventory.decrement_if_available(item.product_id, item.quantity)
            if decrement.applied:
                continue
            previous = await self.inventory.clamp_to_zero(item.product_id)
            note = (
                f"Stock shortage for {item.item_name}: ordered {item.quantity}, "
                f"available {previous if previous is not None else 'unknown'}. Stock set to 0."
            )
            logger.warning(f"Order {order.order_number}: {note}")
            notes.append(note)

        # Carts
        await self.db.execute(delete(CartItem).where(CartItem.user_id == order.user_id))
        await self.db.execute(delete(CartServiceItem).where(CartServiceItem.user_id == order.user_id))

        # Points
        if order.points_used and Decimal(order.points_used) > 0:
            try:
                await self.rewards.redeem(order.user_id, order.id, Decimal(order.points_used))
            except InsufficientBalanceError as e:
                note = (
                    f"Points redemption of {e.requested} skipped, only {e.available} available."
                )
                logger.warning(f"Order {order.order_number}: {note}")
                notes.append(note)

        cashback = (settled * self.cashback_rate).quantize(CENT, rounding=ROUND_HALF_UP)
        if cashback > 0:
            await self.rewards.earn(
                order.user_id,
                order.id,
                cashback,
                description=f"Cashback on order {order.order_number}",
            )
        order.points_earned = cashback

        for note in notes:
            append_internal_note(order, note)

        enqueue_order_finalized(self.db, order)
        await self.db.commit()

        logger.info(
            f"Order {order.order_number} settled by payment {notification.correlation_id}: "
            f"commission {commission} ({quote.tier_name} @ {quote.rate}), business {business_amount}, "
            f"cashback {cashback}"
        )
        return SettlementResult(
            outcome=SettlementOutcome.FINALIZED,
            order_id=order.id,
            status=OrderStatus.PROCESSING.value,
            commission_rate=quote.rate,
            commission_tier=quote.tier_name,
            platform_commission=commission,
            business_amount=business_amount,
            points_earned=cashback,
            notes=notes,
        )

    async def cancel_for_failed_payment(
        self,
        order_id: uuid.UUID,
        correlation_id: Optional[str],
        reason: Optional[str],
    ) -> SettlementResult:
        """Cancel an order whose payment failed, if it is still awaiting payment."""
        now = datetime.now(timezone.utc)
        failure_reason = reason or "payment_failed"
        if correlation_id:
            failure_reason = f"{failure_reason} (payment {correlation_id})"

        try:
            result = await self.db.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.status.in_(statuses_allowing(OrderStatus.CANCELLED.value)),
                )
                .values(
                    status=OrderStatus.CANCELLED.value,
                    payment_failure_reason=failure_reason,
                    cancelled_at=now,
                    updated_at=now,
                )
                .returning(Order.id)
                .execution_options(synchronize_session=False)
            )
            cancelled = result.scalar_one_or_none()

            if cancelled is None:
                existing = await self.db.execute(select(Order.status).where(Order.id == order_id))
                status = existing.scalar_one_or_none()
                await self.db.rollback()
                if status is None:
                    logger.error(f"Order {order_id} not found for failed payment {correlation_id}")
                    return SettlementResult(outcome=SettlementOutcome.ORDER_NOT_FOUND, order_id=order_id)
                logger.info(
                    f"Ignoring failed payment {correlation_id} for order {order_id} in status {status}"
                )
                return SettlementResult(
                    outcome=SettlementOutcome.NOT_CANCELLABLE,
                    order_id=order_id,
                    status=status,
                )

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Order {order_id} cancelled after failed payment {correlation_id}: {failure_reason}")
        return SettlementResult(
            outcome=SettlementOutcome.CANCELLED,
            order_id=order_id,
            status=OrderStatus.CANCELLED.value,
        )
