"""
Unit tests for the inventory reservation service.
"""

import pytest

from src.storebot.exceptions import IntegrityViolation
from src.storebot.services.inventory import InventoryService


@pytest.fixture
def inventory(session_factory):
    return InventoryService(session_factory)


class TestReserve:
    """Tests for InventoryService.reserve."""

    async def test_reserve_takes_one_unit(self, store, inventory, stock_of):
        result = await inventory.reserve(store.streaming_product_id)

        assert result.reserved
        assert result.product_id == store.streaming_product_id
        assert await stock_of(store.streaming_product_id) == 4

    async def test_reserve_last_unit_then_fail(self, store, inventory, stock_of):
        product_id = store.gift_product_ids[0]

        first = await inventory.reserve(product_id)
        second = await inventory.reserve(product_id)

        assert first.reserved
        assert not second.reserved
        assert await stock_of(product_id) == 0

    async def test_reserve_unknown_product(self, store, inventory):
        result = await inventory.reserve(999999)

        assert not result.reserved


class TestRelease:
    """Tests for InventoryService.release."""

    async def test_release_returns_unit(self, store, inventory, stock_of):
        product_id = store.gift_product_ids[0]
        await inventory.reserve(product_id)

        await inventory.release(product_id)

        assert await stock_of(product_id) == 1

    async def test_release_unknown_product(self, store, inventory):
        with pytest.raises(IntegrityViolation):
            await inventory.release(999999)


class TestFindAvailableProduct:
    """Tests for InventoryService.find_available_product."""

    async def test_least_recently_updated_goes_first(self, store, inventory):
        product = await inventory.find_available_product(store.owner_id, store.gift_id)

        assert product.id == store.gift_product_ids[0]
        assert product.details == "CODE-A"

    async def test_skips_products_without_stock(self, store, inventory):
        await inventory.reserve(store.gift_product_ids[0])

        product = await inventory.find_available_product(store.owner_id, store.gift_id)

        assert product.id == store.gift_product_ids[1]

    async def test_sold_out_category(self, store, inventory):
        assert await inventory.find_available_product(store.owner_id, store.sold_out_id) is None

    async def test_other_owner_sees_nothing(self, store, inventory):
        assert await inventory.find_available_product(store.owner_id + 1, store.gift_id) is None


async def test_get_stock(store, inventory):
    assert await inventory.get_stock(store.streaming_product_id) == 5
    assert await inventory.get_stock(999999) is None
