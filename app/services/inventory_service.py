"""
Inventory Service - race-safe stock decrements.

Every decrement is a single conditional UPDATE guarded by stock >= quantity.
There is no read-then-write, so concurrent settlements against the same
product can never drive stock negative.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.catalog import Product

logger = logging.getLogger(__name__)


@dataclass
class StockDecrement:
    """Result of a guarded decrement."""
    applied: bool
    remaining: Optional[int] = None  # None when the product does not exist


class InventoryService:
    """Stock mutations used by settlement."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def decrement_if_available(self, product_id: uuid.UUID, quantity: int) -> StockDecrement:
        """
        Atomically take quantity units if at least that many are in stock.

        Returns applied=False with the current stock when the guard misses.
        """
        if quantity <= 0:
            raise ValueError(f"Quantity must be positive, got {quantity}")

        result = await self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .returning(Product.stock)
            .execution_options(synchronize_session=False)
        )
        remaining = result.scalar_one_or_none()

        if remaining is not None:
            logger.info(f"Deducted {quantity} units from product {product_id}, {remaining} left")
            return StockDecrement(applied=True, remaining=remaining)

        current = await self.db.execute(select(Product.stock).where(Product.id == product_id))
        return StockDecrement(applied=False, remaining=current.scalar_one_or_none())

    async def clamp_to_zero(self, product_id: uuid.UUID) -> Optional[int]:
        """
        Set stock to zero after an oversell.

        Returns the stock level that was cleared, or None for an unknown product.
        """
        locked = await self.db.execute(
            select(Product.stock).where(Product.id == product_id).with_for_update()
        )
        previous = locked.scalar_one_or_none()
        if previous is None:
            return None

        await self.db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=0)
            .execution_options(synchronize_session=False)
        )
        logger.warning(f"Clamped stock of product {product_id} from {previous} to 0 after oversell")
        return previous
