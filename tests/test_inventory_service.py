import uuid

import pytest

from app.models.catalog import Product
from app.services.inventory_service import InventoryService

from conftest import reload


async def test_decrement_when_stock_available(db, marketplace):
    business = await marketplace.business()
    product = await marketplace.product(business, stock=5)

    result = await InventoryService(db).decrement_if_available(product.id, 3)
    await db.commit()

    assert result.applied is True
    assert result.remaining == 2
    assert (await reload(Product, product.id)).stock == 2


async def test_decrement_misses_without_touching_stock(db, marketplace):
    business = await marketplace.business()
    product = await marketplace.product(business, stock=2)

    result = await InventoryService(db).decrement_if_available(product.id, 3)
    await db.commit()

    assert result.applied is False
    assert result.remaining == 2
    assert (await reload(Product, product.id)).stock == 2


async def test_decrement_unknown_product(db):
    result = await InventoryService(db).decrement_if_available(uuid.uuid4(), 1)

    assert result.applied is False
    assert result.remaining is None


@pytest.mark.parametrize("quantity", [0, -1])
async def test_decrement_rejects_non_positive_quantity(db, quantity):
    with pytest.raises(ValueError):
        await InventoryService(db).decrement_if_available(uuid.uuid4(), quantity)


async def test_clamp_to_zero(db, marketplace):
    business = await marketplace.business()
    product = await marketplace.product(business, stock=4)

    previous = await InventoryService(db).clamp_to_zero(product.id)
    await db.commit()

    assert previous == 4
    assert (await reload(Product, product.id)).stock == 0


async def test_clamp_unknown_product(db):
    assert await InventoryService(db).clamp_to_zero(uuid.uuid4()) is None
