from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.database import async_session_factory
from app.models import Order, OrderStatus
from app.services.commission_service import CommissionResolver
from app.services.reconciliation_service import ReconciliationService
from app.services.settlement_service import SettlementService

from conftest import reload


@pytest.fixture
async def reconciliation(payment_service):
    async with async_session_factory() as session:
        settlement = SettlementService(session, CommissionResolver(schedule=None, default_rate=Decimal("0.10")))
        yield ReconciliationService(session, settlement, payment_service)


async def test_no_captured_payment_leaves_order_waiting(marketplace, reconciliation, razorpay_client):
    user = await marketplace.user()
    business = await marketplace.business()
    order = await marketplace.order(user, business, total="12.00", checkout_session_id="order_rzp_wait")
    razorpay_client.order.payments_by_order["order_rzp_wait"] = [
        {"id": "pay_attempt", "status": "failed", "amount": 1200},
    ]

    result = await reconciliation.reconcile_order(order.id)

    assert result.outcome == "no_captured_payment"
    assert (await reload(Order, order.id)).status == OrderStatus.AWAITING_PAYMENT.value


async def test_order_without_checkout(marketplace, reconciliation):
    user = await marketplace.user()
    business = await marketplace.business()
    order = await marketplace.order(user, business, total="12.00")

    result = await reconciliation.reconcile_order(order.id)

    assert result.outcome == "no_checkout"


async def test_sweep_only_touches_stale_orders(marketplace, reconciliation, razorpay_client):
    user = await marketplace.user()
    business = await marketplace.business()
    stale = await marketplace.order(
        user, business, total="20.00",
        checkout_session_id="order_rzp_stale",
        created_at=datetime.now(timezone.utc) - timedelta(minutes=30),
    )
    fresh = await marketplace.order(user, business, total="20.00", checkout_session_id="order_rzp_fresh")
    captured = {"status": "captured", "amount": 2000, "currency": "GBP"}
    razorpay_client.order.payments_by_order["order_rzp_stale"] = [{"id": "pay_stale", **captured}]
    razorpay_client.order.payments_by_order["order_rzp_fresh"] = [{"id": "pay_fresh", **captured}]

    stats = await reconciliation.reconcile_stale_orders(min_age_minutes=5)

    assert stats == {"processed": 1, "finalized": 1, "errors": 0}
    saved_stale = await reload(Order, stale.id)
    assert saved_stale.status == OrderStatus.PROCESSING.value
    assert saved_stale.commission_tier == "default"
    assert saved_stale.platform_commission == Decimal("2.00")
    assert (await reload(Order, fresh.id)).status == OrderStatus.AWAITING_PAYMENT.value
