"""
Order Notification Service

Settlement writes an "order.finalized" row to the outbox inside its own
transaction. The dispatcher here runs from the background scheduler and
delivers those rows to the notification collaborator:
- customer: order confirmation
- business: new order alert

Delivery goes to NOTIFICATION_WEBHOOK_URL when configured; otherwise the
message is logged. Delivery failures only touch the outbox row, never the
order.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any
from enum import Enum

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.order import Order
from app.models.outbox import OutboxEvent, OutboxEventType, OutboxStatus


logger = logging.getLogger(__name__)


class NotificationRecipient(str, Enum):
    """Who an order notification is addressed to."""
    CUSTOMER = "customer"
    BUSINESS = "business"


class NotificationType(str, Enum):
    """Types of notifications."""
    ORDER_CONFIRMED = "order_confirmed"
    NEW_ORDER_ALERT = "new_order_alert"


class NotificationDeliveryError(Exception):
    """Raised when the notification collaborator rejects or is unreachable."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


def build_order_finalized_payload(order: Order) -> Dict[str, Any]:
    """
    Snapshot of a settled order for the outbox.

    Expects order.items, order.user and order.business to be loaded.
    """
    return {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "total_amount": str(order.total_amount),
        "currency": order.currency,
        "points_earned": str(order.points_earned),
        "items": [
            {
                "item_type": item.item_type,
                "name": item.item_name,
                "quantity": item.quantity,
                "unit_price": str(item.unit_price),
                "total_price": str(item.total_price),
            }
            for item in order.items
        ],
        "customer": {
            "user_id": str(order.user_id),
            "name": order.user.full_name if order.user else None,
            "email": order.user.email if order.user else None,
            "phone": order.user.phone if order.user else None,
        },
        "business": {
            "business_id": str(order.business_id),
            "name": order.business.business_name if order.business else None,
            "email": order.business.email if order.business else None,
        },
    }


def enqueue_order_finalized(db: AsyncSession, order: Order) -> OutboxEvent:
    """Add an order.finalized event to the caller's transaction."""
    event = OutboxEvent(
        event_type=OutboxEventType.ORDER_FINALIZED.value,
        aggregate_id=order.id,
        payload=build_order_finalized_payload(order),
        status=OutboxStatus.PENDING.value,
    )
    db.add(event)
    return event


class NotificationSender:
    """Delivers one message to the notification collaborator."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[float] = None):
        self.webhook_url = webhook_url if webhook_url is not None else settings.NOTIFICATION_WEBHOOK_URL
        self.timeout = timeout if timeout is not None else settings.NOTIFICATION_TIMEOUT_SECONDS

    async def send(
        self,
        notification_type: NotificationType,
        recipient: NotificationRecipient,
        payload: Dict[str, Any],
    ) -> None:
        message = {
            "type": notification_type.value,
            "recipient": recipient.value,
            "data": payload,
        }

        if not self.webhook_url:
            logger.info(
                f"[NOTIFICATION] {notification_type.value} -> {recipient.value} "
                f"for order {payload.get('order_number')}"
            )
            return

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.webhook_url, json=message)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(
                f"Notification delivery failed: {e}",
                {"order_number": payload.get("order_number"), "recipient": recipient.value},
            ) from e


class NotificationDispatcher:
    """Drains pending outbox rows."""

    def __init__(
        self,
        db: AsyncSession,
        sender: Optional[NotificationSender] = None,
        max_attempts: Optional[int] = None,
    ):
        self.db = db
        self.sender = sender or NotificationSender()
        self.max_attempts = max_attempts if max_attempts is not None else settings.OUTBOX_MAX_ATTEMPTS

    async def _deliver(self, event: OutboxEvent) -> None:
        if event.event_type != OutboxEventType.ORDER_FINALIZED.value:
            logger.warning(f"Skipping outbox event {event.id} with unknown type {event.event_type}")
            return
        await self.sender.send(NotificationType.ORDER_CONFIRMED, NotificationRecipient.CUSTOMER, event.payload)
        await self.sender.send(NotificationType.NEW_ORDER_ALERT, NotificationRecipient.BUSINESS, event.payload)

    async def dispatch_pending(self, limit: Optional[int] = None) -> Dict[str, int]:
        """
        Deliver up to limit pending events and commit their new states.

        Rows are claimed with FOR UPDATE SKIP LOCKED so several workers can
        run side by side.
        """
        limit = limit or settings.OUTBOX_BATCH_SIZE
        result = await self.db.execute(
            select(OutboxEvent)
            .where(OutboxEvent.status == OutboxStatus.PENDING.value)
            .order_by(OutboxEvent.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        events: List[OutboxEvent] = list(result.scalars().all())

        stats = {"processed": 0, "sent": 0, "failed": 0, "retrying": 0}
        for event in events:
            stats["processed"] += 1
            event.attempts += 1
            try:
                await self._deliver(event)
            except NotificationDeliveryError as e:
                event.last_error = e.message
                if event.attempts >= self.max_attempts:
                    event.status = OutboxStatus.FAILED.value
                    stats["failed"] += 1
                    logger.error(f"Giving up on outbox event {event.id} after {event.attempts} attempts: {e.message}")
                else:
                    stats["retrying"] += 1
                    logger.warning(f"Outbox event {event.id} delivery failed (attempt {event.attempts}): {e.message}")
                continue

            event.status = OutboxStatus.SENT.value
            event.dispatched_at = datetime.now(timezone.utc)
            event.last_error = None
            stats["sent"] += 1

        await self.db.commit()
        return stats
