import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, MoneyType, PointsType, RateType

if TYPE_CHECKING:
    from app.models.business import Business
    from app.models.user import User


class OrderStatus(str, Enum):
    """Order lifecycle status."""
    AWAITING_PAYMENT = "awaiting_payment"  # Created, checkout not yet paid
    PROCESSING = "processing"              # Payment settled

    # Fulfilment
    READY_FOR_PICKUP = "ready_for_pickup"
    SHIPPED = "shipped"

    # Final states
    DELIVERED = "delivered"
    PICKED_UP = "picked_up"
    COLLECTED = "collected"
    COMPLETED = "completed"

    CANCELLED = "cancelled"


# Forward-only transition graph. Settlement owns awaiting_payment -> processing.
ORDER_TRANSITIONS = {
    OrderStatus.AWAITING_PAYMENT: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.READY_FOR_PICKUP, OrderStatus.SHIPPED},
    OrderStatus.READY_FOR_PICKUP: {
        OrderStatus.PICKED_UP,
        OrderStatus.COLLECTED,
        OrderStatus.COMPLETED,
    },
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.COMPLETED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.PICKED_UP: set(),
    OrderStatus.COLLECTED: set(),
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}

# Statuses whose totals count towards a business's rolling turnover
REVENUE_RECOGNIZED_STATUSES = (
    OrderStatus.PROCESSING,
    OrderStatus.READY_FOR_PICKUP,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.PICKED_UP,
    OrderStatus.COLLECTED,
    OrderStatus.COMPLETED,
)


def can_transition(from_status: str, to_status: str) -> bool:
    """Check whether an order may move from one status to another."""
    try:
        source = OrderStatus(from_status)
        target = OrderStatus(to_status)
    except ValueError:
        return False
    return target in ORDER_TRANSITIONS[source]


def statuses_allowing(to_status: str) -> List[str]:
    """Statuses an order may be in to move to `to_status`, for guarded UPDATEs."""
    return [source.value for source in ORDER_TRANSITIONS if can_transition(source.value, to_status)]


class OrderItemType(str, Enum):
    """Catalog item kinds an order line can reference."""
    PRODUCT = "product"
    SERVICE = "service"


class Order(Base):
    """
    Marketplace order placed by a shopper with a single business.

    Line items and total are fixed at creation; settlement only records
    payment, commission and loyalty figures and advances the status.
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index('ix_order_business_status_created', 'business_id', 'status', 'created_at'),
        Index('ix_order_status_created', 'status', 'created_at'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    order_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    business_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("businesses.id", ondelete="RESTRICT"),
        nullable=False
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(50),
        default=OrderStatus.AWAITING_PAYMENT.value,
        nullable=False,
        index=True,
        comment="awaiting_payment, processing, ready_for_pickup, shipped, ..., cancelled"
    )

    # Pricing
    total_amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="Final amount to be paid (after discounts and points)"
    )
    currency: Mapped[str] = mapped_column(String(3), default="GBP", nullable=False)

    # Payment processor correlation
    checkout_session_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        index=True,
        comment="Processor checkout/order ID (order_xxx)"
    )
    processor_transfer_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Route transfer (trf_xxx) carrying the business share"
    )
    payment_correlation_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        unique=True,
        nullable=True,
        comment="Processor payment ID (pay_xxx) that settled this order"
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_failure_reason: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Processor failure code/description, support-facing only"
    )

    # Commission split
    commission_rate: Mapped[Optional[Decimal]] = mapped_column(RateType, nullable=True)
    commission_tier: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    platform_commission: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    business_amount: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)

    # Loyalty
    points_used: Mapped[Decimal] = mapped_column(
        PointsType,
        default=Decimal("0.00"),
        nullable=False,
        comment="Points the shopper chose to redeem at checkout"
    )
    points_earned: Mapped[Decimal] = mapped_column(
        PointsType,
        default=Decimal("0.00"),
        nullable=False
    )

    # Audit notes (stock shortages, points anomalies, late payments)
    internal_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    user: Mapped["User"] = relationship("User")
    business: Mapped["Business"] = relationship("Business")
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan"
    )

    @property
    def item_count(self) -> int:
        """Get total number of items."""
        return sum(item.quantity for item in self.items)

    @property
    def is_settled(self) -> bool:
        """Check if a payment has been recorded against this order."""
        return self.payment_correlation_id is not None

    def __repr__(self) -> str:
        return f"<Order(number='{self.order_number}', status='{self.status}')>"


class OrderItem(Base):
    """Order line item. Price is captured at order creation."""
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    item_type: Mapped[str] = mapped_column(
        String(20),
        default=OrderItemType.PRODUCT.value,
        nullable=False,
        comment="product or service"
    )
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=True
    )
    service_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("services.id", ondelete="RESTRICT"),
        nullable=True
    )

    # Snapshot (stored for historical record)
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Quantity & Pricing
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    @property
    def catalog_item_id(self) -> Optional[uuid.UUID]:
        if self.item_type == OrderItemType.SERVICE.value:
            return self.service_id
        return self.product_id

    def __repr__(self) -> str:
        return f"<OrderItem(item='{self.item_name}', qty={self.quantity})>"
