"""
Payment API endpoints for Razorpay integration.

Handles:
- Checkout creation with the commission split
- Webhook handling for payment and account events
- Shopper-facing payment status
- Manual reconciliation and linked account refresh
"""

import asyncio
import uuid
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, status, Request, Header
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app.api.deps import DB, Resolver, PaymentServiceDep, Settlement, AdminKey
from app.models.business import Business
from app.models.order import Order, OrderStatus
from app.schemas.payment import (
    CreatePaymentOrderRequest,
    PaymentOrderResponse,
    OrderPaymentStatusResponse,
    PaymentAccountResponse,
    ReconcileResponse,
)
from app.schemas.webhook import WebhookAck
from app.services.account_service import PaymentAccountService
from app.services.commission_service import compute_split
from app.services.payment_service import CheckoutRequest, PaymentGatewayError
from app.services.reconciliation_service import ReconciliationService
from app.services.settlement_service import PAYMENT_FAILED_MESSAGE
from app.services.webhook_service import (
    WebhookService,
    WebhookSignatureError,
    WebhookPayloadError,
    verify_signature,
    parse_event,
)

logger = logging.getLogger(__name__)


router = APIRouter(tags=["Payments"])


# ==================== PUBLIC ENDPOINTS ====================

@router.post(
    "/create-order",
    response_model=PaymentOrderResponse,
    summary="Create a Razorpay payment order",
    description="Open a checkout for an awaiting-payment order, routing the business share to its linked account."
)
async def create_payment_order(
    data: CreatePaymentOrderRequest,
    db: DB,
    resolver: Resolver,
    payment_service: PaymentServiceDep,
):
    """
    Create a Razorpay order for payment.

    The business must have a linked account that can accept charges.
    """
    result = await db.execute(
        select(Order)
        .options(selectinload(Order.business).selectinload(Business.payment_account))
        .where(Order.id == data.order_id)
    )
    order = result.scalar_one_or_none()

    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found"
        )

    if order.status != OrderStatus.AWAITING_PAYMENT.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Order is not awaiting payment"
        )

    account = order.business.payment_account if order.business else None
    if account is not None and not account.charges_enabled:
        # The account.* webhook may have been missed
        try:
            await PaymentAccountService(db, payment_service).refresh(account)
        except PaymentGatewayError as e:
            logger.warning(f"Could not refresh account {account.processor_account_id}: {e.message}")

    if account is None or not account.charges_enabled:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Business cannot accept payments yet"
        )

    quote = await resolver.resolve_rate(db, order.business_id)
    commission, _ = compute_split(order.total_amount, quote.rate)

    try:
        # The razorpay SDK is blocking
        checkout = await asyncio.to_thread(
            payment_service.create_checkout,
            CheckoutRequest(
                order_id=order.id,
                business_id=order.business_id,
                order_number=order.order_number,
                amount=order.total_amount,
                currency=order.currency,
                platform_commission=commission,
                destination_account_id=account.processor_account_id,
                customer_email=data.customer_email,
            ),
        )
    except PaymentGatewayError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=e.message
        )

    order.checkout_session_id = checkout.checkout_session_id
    order.processor_transfer_id = checkout.transfer_id
    order.updated_at = datetime.now(timezone.utc)
    await db.commit()

    return PaymentOrderResponse(
        order_id=order.id,
        checkout_session_id=checkout.checkout_session_id,
        amount=checkout.amount,
        currency=checkout.currency,
        key_id=checkout.key_id,
        platform_commission=checkout.platform_commission,
        business_amount=checkout.business_amount,
        commission_tier=quote.tier_name,
        transfer_id=checkout.transfer_id,
    )


@router.get(
    "/orders/{order_id}/status",
    response_model=OrderPaymentStatusResponse,
    summary="Get payment status of an order",
)
async def get_order_payment_status(
    order_id: uuid.UUID,
    db: DB,
):
    """Shopper-facing payment status."""
    result = await db.execute(select(Order).where(Order.id == order_id))
    order = result.scalar_one_or_none()

    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found"
        )

    message = None
    if order.status == OrderStatus.CANCELLED.value and order.payment_failure_reason:
        message = PAYMENT_FAILED_MESSAGE

    return OrderPaymentStatusResponse(
        order_id=order.id,
        order_number=order.order_number,
        status=order.status,
        paid=order.is_settled,
        total_amount=order.total_amount,
        currency=order.currency,
        paid_at=order.paid_at,
        points_earned=order.points_earned,
        message=message,
    )


# ==================== ADMIN ENDPOINTS ====================

@router.post(
    "/orders/{order_id}/reconcile",
    response_model=ReconcileResponse,
    dependencies=[AdminKey],
    summary="Reconcile an order with Razorpay",
)
async def reconcile_order(
    order_id: uuid.UUID,
    db: DB,
    settlement: Settlement,
    payment_service: PaymentServiceDep,
):
    """Finalize an awaiting-payment order whose captured payment was never delivered."""
    service = ReconciliationService(db, settlement, payment_service)
    try:
        result = await service.reconcile_order(order_id)
    except PaymentGatewayError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=e.message
        )

    if result.outcome == "order_not_found":
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found"
        )

    return ReconcileResponse(
        order_id=result.order_id,
        outcome=result.outcome,
        correlation_id=result.correlation_id,
    )


@router.post(
    "/businesses/{business_id}/account/refresh",
    response_model=PaymentAccountResponse,
    dependencies=[AdminKey],
    summary="Refresh a business's linked account from Razorpay",
)
async def refresh_payment_account(
    business_id: uuid.UUID,
    db: DB,
    payment_service: PaymentServiceDep,
):
    """Re-read account status and capability flags, e.g. after a missed account webhook."""
    service = PaymentAccountService(db, payment_service)
    try:
        account = await service.refresh_for_business(business_id)
    except PaymentGatewayError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=e.message
        )

    if account is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Business has no linked payment account"
        )

    return account


# ==================== WEBHOOK ENDPOINT ====================

@router.post(
    "/webhook",
    response_model=WebhookAck,
    summary="Razorpay webhook handler",
    description="Handle payment events from Razorpay. This endpoint is called by Razorpay servers.",
    include_in_schema=False  # Hide from API docs for security
)
async def razorpay_webhook(
    request: Request,
    db: DB,
    settlement: Settlement,
    payment_service: PaymentServiceDep,
    x_razorpay_signature: Optional[str] = Header(None, alias="X-Razorpay-Signature"),
):
    """
    Handle Razorpay webhook events.

    - 401: missing or invalid signature
    - 400: body is not a valid event
    - 200: applied, duplicate, or dropped as uncorrelatable
    - 500: database failure, so Razorpay redelivers
    """
    # Get raw body for signature verification
    body = await request.body()

    try:
        verify_signature(payment_service, body, x_razorpay_signature)
    except WebhookSignatureError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message
        )

    try:
        event = parse_event(body)
    except WebhookPayloadError as e:
        logger.error(f"Dropping malformed webhook: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message
        )

    logger.info(f"Received Razorpay webhook: {event.event}")

    outcome = await WebhookService(db, settlement).handle(event)
    return WebhookAck(event=event.event, outcome=outcome)
