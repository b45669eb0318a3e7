# Models module - importing registers every table on Base.metadata
from app.models.user import User
from app.models.business import Business, BusinessPaymentAccount
from app.models.catalog import Product, Service
from app.models.cart import CartItem, CartServiceItem
from app.models.order import Order, OrderItem, OrderStatus, OrderItemType
from app.models.rewards import PointsAccount, PointsTransaction, PointsTransactionType
from app.models.outbox import OutboxEvent, OutboxEventType, OutboxStatus

__all__ = [
    "User",
    "Business",
    "BusinessPaymentAccount",
    "Product",
    "Service",
    "CartItem",
    "CartServiceItem",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderItemType",
    "PointsAccount",
    "PointsTransaction",
    "PointsTransactionType",
    "OutboxEvent",
    "OutboxEventType",
    "OutboxStatus",
]
