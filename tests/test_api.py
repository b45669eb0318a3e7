import uuid
from decimal import Decimal

from app.models import BusinessPaymentAccount, Order, OrderStatus
from app.services.rewards_service import RewardsService

from conftest import ADMIN_HEADERS, reload


class TestAdminKey:
    async def test_missing_key_is_rejected(self, client):
        response = await client.get("/api/v1/commissions/tiers")

        assert response.status_code == 401

    async def test_wrong_key_is_rejected(self, client):
        response = await client.get("/api/v1/commissions/tiers", headers={"X-Admin-Key": "guess"})

        assert response.status_code == 401


class TestCommissionEndpoints:
    async def test_tier_schedule(self, client):
        response = await client.get("/api/v1/commissions/tiers", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert [t["name"] for t in data["tiers"]] == ["Starter", "Growth", "Momentum", "Elite"]
        assert data["tiers"][-1]["max_turnover"] is None
        assert data["window_days"] == 30

    async def test_business_tier_with_distance_to_next(self, client, marketplace):
        user = await marketplace.user()
        business = await marketplace.business()
        await marketplace.order(user, business, total="4200.00", status=OrderStatus.COMPLETED.value)

        response = await client.get(
            f"/api/v1/commissions/businesses/{business.id}/tier",
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["source"] == "Starter"
        assert data["current_tier"]["name"] == "Starter"
        assert data["next_tier"]["name"] == "Growth"
        assert Decimal(data["turnover"]) == Decimal("4200.00")
        assert Decimal(data["turnover_to_next_tier"]) == Decimal("800.00")

    async def test_unknown_business(self, client):
        response = await client.get(
            f"/api/v1/commissions/businesses/{uuid.uuid4()}/tier",
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 404


class TestRewardsEndpoints:
    async def test_points_transactions_and_audit(self, client, db, marketplace):
        user = await marketplace.user()
        rewards = RewardsService(db)
        await rewards.earn(user.id, None, Decimal("5.00"))
        await rewards.redeem(user.id, None, Decimal("2.00"))
        await db.commit()

        points = await client.get(f"/api/v1/rewards/users/{user.id}/points", headers=ADMIN_HEADERS)
        transactions = await client.get(f"/api/v1/rewards/users/{user.id}/transactions", headers=ADMIN_HEADERS)
        audit = await client.get(f"/api/v1/rewards/users/{user.id}/audit", headers=ADMIN_HEADERS)

        assert Decimal(points.json()["balance"]) == Decimal("3.00")
        assert transactions.json()["total"] == 2
        assert audit.json()["is_consistent"] is True
        assert Decimal(audit.json()["ledger_balance"]) == Decimal("3.00")


class TestCreateOrder:
    async def test_creates_checkout_with_commission_transfer(self, client, marketplace, razorpay_client):
        user = await marketplace.user()
        business = await marketplace.business()
        bread = await marketplace.product(business, price="50.00")
        order = await marketplace.order(user, business, products=[(bread, 2)])

        response = await client.post("/api/v1/payments/create-order", json={"order_id": str(order.id)})

        assert response.status_code == 200
        data = response.json()
        assert data["amount"] == 10000
        assert data["platform_commission"] == 900
        assert data["business_amount"] == 9100
        assert data["commission_tier"] == "Starter"

        sent = razorpay_client.order.created[0]
        assert sent["notes"]["order_id"] == str(order.id)
        assert sent["transfers"][0]["amount"] == 9100
        assert sent["transfers"][0]["account"].startswith("acc_")

        saved = await reload(Order, order.id)
        assert saved.checkout_session_id == data["checkout_session_id"]
        assert data["transfer_id"].startswith("trf_")
        assert saved.processor_transfer_id == data["transfer_id"]

    async def test_missed_activation_is_picked_up_from_razorpay(self, client, marketplace, razorpay_client):
        user = await marketplace.user()
        business = await marketplace.business(charges_enabled=False)
        account = await marketplace.payment_account(business)
        razorpay_client.account.statuses[account.processor_account_id] = "activated"
        order = await marketplace.order(user, business, total="10.00")

        response = await client.post("/api/v1/payments/create-order", json={"order_id": str(order.id)})

        assert response.status_code == 200
        saved = await reload(BusinessPaymentAccount, account.id)
        assert saved.charges_enabled is True
        assert saved.account_status == "activated"

    async def test_business_without_charges_enabled(self, client, marketplace, razorpay_client):
        user = await marketplace.user()
        business = await marketplace.business(charges_enabled=False)
        order = await marketplace.order(user, business, total="10.00")

        response = await client.post("/api/v1/payments/create-order", json={"order_id": str(order.id)})

        assert response.status_code == 409
        assert razorpay_client.order.created == []

    async def test_order_not_awaiting_payment(self, client, marketplace):
        user = await marketplace.user()
        business = await marketplace.business()
        order = await marketplace.order(user, business, total="10.00", status=OrderStatus.PROCESSING.value)

        response = await client.post("/api/v1/payments/create-order", json={"order_id": str(order.id)})

        assert response.status_code == 400


class TestReconcileEndpoint:
    async def test_finalizes_captured_payment(self, client, marketplace, razorpay_client):
        user = await marketplace.user()
        business = await marketplace.business()
        order = await marketplace.order(user, business, total="30.00", checkout_session_id="order_rzp_rec")
        razorpay_client.order.payments_by_order["order_rzp_rec"] = [
            {"id": "pay_rec_failed", "status": "failed", "amount": 3000, "currency": "GBP"},
            {"id": "pay_rec_ok", "status": "captured", "amount": 3000, "currency": "GBP"},
        ]

        response = await client.post(f"/api/v1/payments/orders/{order.id}/reconcile", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json()["outcome"] == "finalized"
        assert response.json()["correlation_id"] == "pay_rec_ok"
        saved = await reload(Order, order.id)
        assert saved.status == OrderStatus.PROCESSING.value

    async def test_requires_admin_key(self, client):
        response = await client.post(f"/api/v1/payments/orders/{uuid.uuid4()}/reconcile")

        assert response.status_code == 401


class TestAccountRefresh:
    async def test_updates_capability_flags(self, client, marketplace, razorpay_client):
        business = await marketplace.business(charges_enabled=True)
        account = await marketplace.payment_account(business)
        razorpay_client.account.statuses[account.processor_account_id] = "suspended"

        response = await client.post(
            f"/api/v1/payments/businesses/{business.id}/account/refresh",
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["account_status"] == "suspended"
        assert data["charges_enabled"] is False
        assert data["payouts_enabled"] is False
        saved = await reload(BusinessPaymentAccount, account.id)
        assert saved.charges_enabled is False

    async def test_kyc_pending_allows_charges_only(self, client, marketplace, razorpay_client):
        business = await marketplace.business(charges_enabled=False)
        account = await marketplace.payment_account(business)
        razorpay_client.account.statuses[account.processor_account_id] = "activated_kyc_pending"

        response = await client.post(
            f"/api/v1/payments/businesses/{business.id}/account/refresh",
            headers=ADMIN_HEADERS,
        )

        assert response.json()["charges_enabled"] is True
        assert response.json()["payouts_enabled"] is False

    async def test_gateway_failure_keeps_cached_flags(self, client, marketplace, razorpay_client):
        business = await marketplace.business(charges_enabled=True)
        account = await marketplace.payment_account(business)
        razorpay_client.account.unavailable = True

        response = await client.post(
            f"/api/v1/payments/businesses/{business.id}/account/refresh",
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 502
        assert (await reload(BusinessPaymentAccount, account.id)).charges_enabled is True

    async def test_unknown_business(self, client):
        response = await client.post(
            f"/api/v1/payments/businesses/{uuid.uuid4()}/account/refresh",
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 404

    async def test_requires_admin_key(self, client):
        response = await client.post(f"/api/v1/payments/businesses/{uuid.uuid4()}/account/refresh")

        assert response.status_code == 401


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "connected"
