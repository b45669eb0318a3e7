"""
Webhook Service - turns Razorpay deliveries into settlement calls.

Flow for one delivery:
1. verify_signature() on the raw body (before anything else)
2. parse_event() into a typed event
3. WebhookService.handle() correlates it to an order and dispatches

Event mapping:
- order.paid        -> CheckoutCompleted
- payment.captured  -> PaymentSucceeded
- payment.failed    -> PaymentFailed
- account.*         -> AccountStatusChanged
- anything else     -> UnknownEvent (logged and ignored)
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Union, Any

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.business import BusinessPaymentAccount
from app.models.order import Order
from app.schemas.webhook import (
    RazorpayWebhookEnvelope,
    RazorpayPaymentEntity,
    RazorpayOrderEntity,
    RazorpayAccountEntity,
)
from app.services.payment_service import PaymentService, account_capabilities
from app.services.settlement_service import (
    SettlementService,
    SettlementError,
    PaymentNotification,
)

logger = logging.getLogger(__name__)


class WebhookEvent:
    """Razorpay event names handled here."""
    ORDER_PAID = "order.paid"
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    ACCOUNT_PREFIX = "account."


class WebhookSignatureError(Exception):
    """Raised when a delivery is not signed with the webhook secret."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class WebhookPayloadError(Exception):
    """Raised when a signed delivery cannot be parsed."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


@dataclass
class CheckoutCompleted:
    event: str
    checkout_session_id: str
    order_notes: Dict[str, Any]
    payment: Optional[RazorpayPaymentEntity] = None


@dataclass
class PaymentSucceeded:
    event: str
    payment: RazorpayPaymentEntity


@dataclass
class PaymentFailed:
    event: str
    payment: RazorpayPaymentEntity

    @property
    def reason(self) -> str:
        parts = [p for p in (self.payment.error_code, self.payment.error_description) if p]
        return ": ".join(parts) if parts else "payment_failed"


@dataclass
class AccountStatusChanged:
    event: str
    account_id: str
    account_status: str
    charges_enabled: bool
    payouts_enabled: bool


@dataclass
class UnknownEvent:
    event: str


TypedEvent = Union[CheckoutCompleted, PaymentSucceeded, PaymentFailed, AccountStatusChanged, UnknownEvent]


def verify_signature(payment_service: PaymentService, body: bytes, signature: Optional[str]) -> None:
    if not payment_service.verify_webhook_signature(body, signature):
        raise WebhookSignatureError("Invalid webhook signature")


def _parse_uuid(value: Any) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def parse_event(body: bytes) -> TypedEvent:
    """Parse a verified webhook body into a typed event."""
    try:
        raw = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise WebhookPayloadError("Invalid JSON payload") from e

    try:
        envelope = RazorpayWebhookEnvelope.model_validate(raw)
        event = envelope.event

        if event == WebhookEvent.PAYMENT_CAPTURED or event == WebhookEvent.PAYMENT_FAILED:
            entity = envelope.entity("payment")
            if entity is None:
                raise WebhookPayloadError(f"{event} without payment entity", {"event": event})
            payment = RazorpayPaymentEntity.model_validate(entity)
            if event == WebhookEvent.PAYMENT_CAPTURED:
                return PaymentSucceeded(event=event, payment=payment)
            return PaymentFailed(event=event, payment=payment)

        if event == WebhookEvent.ORDER_PAID:
            entity = envelope.entity("order")
            if entity is None:
                raise WebhookPayloadError(f"{event} without order entity", {"event": event})
            order = RazorpayOrderEntity.model_validate(entity)
            payment_entity = envelope.entity("payment")
            payment = RazorpayPaymentEntity.model_validate(payment_entity) if payment_entity else None
            return CheckoutCompleted(
                event=event,
                checkout_session_id=order.id,
                order_notes=order.notes,
                payment=payment,
            )

        if event.startswith(WebhookEvent.ACCOUNT_PREFIX):
            entity = envelope.entity("account")
            account_id = entity.get("id") if entity else envelope.account_id
            if not account_id:
                raise WebhookPayloadError(f"{event} without account id", {"event": event})
            suffix = event[len(WebhookEvent.ACCOUNT_PREFIX):]
            account = RazorpayAccountEntity.model_validate(entity or {"id": account_id})
            # account.<suffix> names the new account status
            charges_enabled, payouts_enabled = account_capabilities(suffix)
            return AccountStatusChanged(
                event=event,
                account_id=account.id,
                account_status=account.status or suffix,
                charges_enabled=charges_enabled,
                payouts_enabled=payouts_enabled,
            )
    except ValidationError as e:
        raise WebhookPayloadError("Webhook payload failed validation", {"errors": e.errors()}) from e

    return UnknownEvent(event=event)


class WebhookService:
    """Correlates typed events to orders and applies them."""

    def __init__(self, db: AsyncSession, settlement: SettlementService):
        self.db = db
        self.settlement = settlement

    async def _order_for_checkout(self, checkout_session_id: Optional[str]) -> Optional[uuid.UUID]:
        if not checkout_session_id:
            return None
        result = await self.db.execute(
            select(Order.id).where(Order.checkout_session_id == checkout_session_id)
        )
        return result.scalars().first()

    async def resolve_order_id(
        self,
        notes: Dict[str, Any],
        checkout_session_id: Optional[str],
    ) -> Optional[uuid.UUID]:
        """Order id from notes.order_id, else the order holding this checkout session."""
        order_id = _parse_uuid(notes.get("order_id"))
        if order_id is not None:
            return order_id
        if notes.get("order_id"):
            logger.warning(f"Ignoring malformed order_id in notes: {notes.get('order_id')}")
        return await self._order_for_checkout(checkout_session_id)

    async def handle(self, event: TypedEvent) -> Optional[str]:
        """Apply an event. Returns an outcome label for the acknowledgement."""
        if isinstance(event, PaymentSucceeded):
            return await self._handle_payment_succeeded(event.payment)
        if isinstance(event, CheckoutCompleted):
            return await self._handle_checkout_completed(event)
        if isinstance(event, PaymentFailed):
            return await self._handle_payment_failed(event)
        if isinstance(event, AccountStatusChanged):
            return await self._handle_account_status(event)

        logger.info(f"Unhandled webhook event: {event.event}")
        return "ignored"

    async def _handle_payment_succeeded(
        self,
        payment: RazorpayPaymentEntity,
        order_id: Optional[uuid.UUID] = None,
    ) -> str:
        if order_id is None:
            order_id = await self.resolve_order_id(payment.notes, payment.order_id)
        if order_id is None:
            logger.error(
                f"Dropping captured payment {payment.id}: no order for checkout {payment.order_id}"
            )
            return "uncorrelated"

        notification = PaymentNotification(
            correlation_id=payment.id,
            order_id=order_id,
            business_id=_parse_uuid(payment.notes.get("business_id")),
            amount_minor=payment.amount or None,
            currency=payment.currency,
        )
        try:
            result = await self.settlement.finalize(notification)
        except SettlementError as e:
            logger.error(f"Dropping payment {payment.id}: {e.message}")
            return "rejected"
        return result.outcome.value

    async def _handle_checkout_completed(self, event: CheckoutCompleted) -> str:
        order_id = await self.resolve_order_id(event.order_notes, event.checkout_session_id)
        if order_id is None:
            logger.error(f"Dropping order.paid for {event.checkout_session_id}: no matching order")
            return "uncorrelated"

        await self.db.execute(
            update(Order)
            .where(Order.id == order_id, Order.checkout_session_id.is_(None))
            .values(checkout_session_id=event.checkout_session_id, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if event.payment is not None and event.payment.status == "captured":
            return await self._handle_payment_succeeded(event.payment, order_id=order_id)

        logger.info(f"Checkout {event.checkout_session_id} completed for order {order_id}, awaiting capture")
        return "recorded"

    async def _handle_payment_failed(self, event: PaymentFailed) -> str:
        payment = event.payment
        order_id = await self.resolve_order_id(payment.notes, payment.order_id)
        if order_id is None:
            logger.error(f"Dropping failed payment {payment.id}: no order for checkout {payment.order_id}")
            return "uncorrelated"

        logger.info(f"Payment failed: {payment.id} - {event.reason}")
        result = await self.settlement.cancel_for_failed_payment(order_id, payment.id, event.reason)
        return result.outcome.value

    async def _handle_account_status(self, event: AccountStatusChanged) -> str:
        result = await self.db.execute(
            update(BusinessPaymentAccount)
            .where(BusinessPaymentAccount.processor_account_id == event.account_id)
            .values(
                account_status=event.account_status,
                charges_enabled=event.charges_enabled,
                payouts_enabled=event.payouts_enabled,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount == 0:
            logger.warning(f"Account event {event.event} for unknown account {event.account_id}")
            return "uncorrelated"

        logger.info(
            f"Account {event.account_id} is now {event.account_status} "
            f"(charges={event.charges_enabled}, payouts={event.payouts_enabled})"
        )
        return "account_updated"
