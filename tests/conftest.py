"""
Shared fixtures.

Every test runs against a fresh SQLite database file; tables are dropped and
recreated around each test. Environment is set before the app is imported
so Settings picks it up.
"""
import hashlib
import hmac
import json
import os
import tempfile
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"settlement_test_{os.getpid()}.db")

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "test_webhook_secret"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["SCHEDULER_ENABLED"] = "false"

import httpx
import pytest
from sqlalchemy import select

from app.database import Base, engine, async_session_factory
from app.models import (
    User,
    Business,
    BusinessPaymentAccount,
    Product,
    Service,
    CartItem,
    CartServiceItem,
    Order,
    OrderItem,
    OrderItemType,
    OrderStatus,
)
from app.services.payment_service import PaymentService

WEBHOOK_SECRET = "test_webhook_secret"
ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}


@pytest.fixture(autouse=True)
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # Pooled connections belong to this test's event loop
    await engine.dispose()


@pytest.fixture
async def db():
    async with async_session_factory() as session:
        yield session


async def reload(model, pk):
    """Fetch a row through a brand new session."""
    async with async_session_factory() as session:
        return await session.get(model, pk)


class MarketplaceFactory:
    """Builds users, businesses, catalog items and orders."""

    def __init__(self, db):
        self.db = db

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        return obj

    async def user(self, full_name: str = "Test Shopper") -> User:
        return await self._save(User(
            email=f"{uuid.uuid4().hex[:10]}@example.com",
            full_name=full_name,
            phone="+447700900123",
        ))

    async def business(
        self,
        name: str = "Corner Bakery",
        charges_enabled: bool = True,
        trial_ends_at=None,
        commission_rate_override=None,
    ) -> Business:
        business = Business(
            business_name=name,
            email=f"{uuid.uuid4().hex[:10]}@shop.example.com",
            trial_ends_at=trial_ends_at,
            commission_rate_override=commission_rate_override,
        )
        self.db.add(business)
        await self.db.flush()
        self.db.add(BusinessPaymentAccount(
            business_id=business.id,
            processor_account_id=f"acc_{uuid.uuid4().hex[:14]}",
            account_status="activated" if charges_enabled else "created",
            charges_enabled=charges_enabled,
            payouts_enabled=charges_enabled,
        ))
        await self.db.commit()
        return business

    async def payment_account(self, business: Business) -> BusinessPaymentAccount:
        result = await self.db.execute(
            select(BusinessPaymentAccount).where(BusinessPaymentAccount.business_id == business.id)
        )
        return result.scalar_one()

    async def product(self, business: Business, stock: int = 10, price: str = "25.00", name: str = "Sourdough") -> Product:
        return await self._save(Product(
            business_id=business.id,
            name=name,
            price=Decimal(price),
            stock=stock,
        ))

    async def service(self, business: Business, price: str = "40.00", name: str = "Cake Decorating Class") -> Service:
        return await self._save(Service(
            business_id=business.id,
            name=name,
            price=Decimal(price),
            duration_minutes=60,
        ))

    async def cart(self, user: User, product: Product = None, service: Service = None):
        if product is not None:
            self.db.add(CartItem(user_id=user.id, product_id=product.id, quantity=1))
        if service is not None:
            self.db.add(CartServiceItem(user_id=user.id, service_id=service.id))
        await self.db.commit()

    async def order(
        self,
        user: User,
        business: Business,
        products=(),
        services=(),
        total=None,
        status: str = OrderStatus.AWAITING_PAYMENT.value,
        points_used: str = "0.00",
        checkout_session_id: str = None,
        created_at: datetime = None,
    ) -> Order:
        """products: iterable of (product, quantity); services: iterable of services."""
        items = []
        for product, quantity in products:
            items.append(OrderItem(
                item_type=OrderItemType.PRODUCT.value,
                product_id=product.id,
                item_name=product.name,
                quantity=quantity,
                unit_price=product.price,
                total_price=product.price * quantity,
            ))
        for service in services:
            items.append(OrderItem(
                item_type=OrderItemType.SERVICE.value,
                service_id=service.id,
                item_name=service.name,
                quantity=1,
                unit_price=service.price,
                total_price=service.price,
            ))

        if total is None:
            total = sum((item.total_price for item in items), Decimal("0.00"))

        order = Order(
            order_number=f"ORD-{uuid.uuid4().hex[:10].upper()}",
            user_id=user.id,
            business_id=business.id,
            total_amount=Decimal(str(total)),
            currency="GBP",
            status=status,
            points_used=Decimal(points_used),
            checkout_session_id=checkout_session_id,
            created_at=created_at or datetime.now(timezone.utc),
            items=items,
        )
        return await self._save(order)


@pytest.fixture
def marketplace(db):
    return MarketplaceFactory(db)


# ==================== Razorpay fakes ====================

class FakeRazorpayOrders:
    def __init__(self):
        self.created = []
        self.payments_by_order = {}

    def create(self, data):
        self.created.append(data)
        transfers = [
            {"id": f"trf_{uuid.uuid4().hex[:14]}", "recipient": t["account"], "amount": t["amount"]}
            for t in data.get("transfers", [])
        ]
        return {
            "id": f"order_{uuid.uuid4().hex[:14]}",
            "amount": data["amount"],
            "status": "created",
            "transfers": transfers,
        }

    def payments(self, order_id):
        return {"items": self.payments_by_order.get(order_id, [])}


class FakeRazorpayAccounts:
    """Linked accounts are "created" unless a test says otherwise."""

    def __init__(self):
        self.statuses = {}
        self.unavailable = False

    def fetch(self, account_id):
        if self.unavailable:
            raise ConnectionError("razorpay unreachable")
        return {"id": account_id, "status": self.statuses.get(account_id, "created")}


@pytest.fixture
def razorpay_client():
    return SimpleNamespace(
        order=FakeRazorpayOrders(),
        account=FakeRazorpayAccounts(),
    )


@pytest.fixture
def payment_service(razorpay_client):
    return PaymentService(client=razorpay_client)


# ==================== HTTP client ====================

@pytest.fixture
async def client(payment_service):
    from app.main import app
    from app.services.payment_service import get_payment_service

    app.dependency_overrides[get_payment_service] = lambda: payment_service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def webhook_body(event: str, **entities) -> bytes:
    """Razorpay-shaped delivery: {"event", "payload": {name: {"entity": ...}}}."""
    payload = {name: {"entity": entity} for name, entity in entities.items()}
    return json.dumps({
        "entity": "event",
        "event": event,
        "payload": payload,
        "created_at": int(datetime.now(timezone.utc).timestamp()),
    }).encode()


def payment_entity(order: Order, payment_id: str = None, status: str = "captured", notes=None, **extra) -> dict:
    entity = {
        "id": payment_id or f"pay_{uuid.uuid4().hex[:14]}",
        "entity": "payment",
        "amount": int(order.total_amount * 100),
        "currency": order.currency,
        "status": status,
        "order_id": order.checkout_session_id,
        "notes": {"order_id": str(order.id), "business_id": str(order.business_id)} if notes is None else notes,
    }
    entity.update(extra)
    return entity
