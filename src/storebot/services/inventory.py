"""
Inventory reservation service.

Stock is only ever changed here, through single conditional UPDATE
statements. reserve() decrements only while stock > 0 and reports success
from the affected row count, so concurrent buyers can never drive a
product below zero.
"""

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..exceptions import IntegrityViolation
from ..models import Product
from ..schemas import ReservationResult
from ..utils.logging import get_logger

logger = get_logger(__name__)


class InventoryService:
    """Atomic stock reservation and release for products."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def find_available_product(
        self, owner_id: int, category_id: int
    ) -> Optional[Product]:
        """
        Pick the next unit to sell from a category.

        Least recently updated products go first so stock rotates.

        Args:
            owner_id: Merchant that owns the category
            category_id: Category to sell from

        Returns:
            A product with stock > 0, or None when the category is sold out
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(Product)
                .where(
                    Product.owner_id == owner_id,
                    Product.category_id == category_id,
                    Product.stock > 0,
                )
                .order_by(Product.updated_at.asc(), Product.id.asc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def reserve(self, product_id: int) -> ReservationResult:
        """
        Take one unit of stock if any is left.

        The check and the decrement are one UPDATE ... WHERE stock > 0.

        Args:
            product_id: Product to reserve

        Returns:
            ReservationResult with reserved=True when a unit was taken

        Raises:
            IntegrityViolation: If more than one row changed for the id
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(Product)
                .where(Product.id == product_id, Product.stock > 0)
                .values(stock=Product.stock - 1)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        affected = result.rowcount or 0
        if affected > 1:
            raise IntegrityViolation("product", product_id, f"reserve touched {affected} rows")

        reserved = affected == 1
        logger.info(
            "Stock reservation attempted",
            extra={"product_id": product_id, "reserved": reserved},
        )
        return ReservationResult(reserved=reserved, product_id=product_id)

    async def release(self, product_id: int) -> None:
        """
        Give back one unit taken by reserve().

        Only call this to compensate a reservation whose debit failed, and
        at most once per reservation.

        Raises:
            IntegrityViolation: If the product no longer exists
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(stock=Product.stock + 1)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if (result.rowcount or 0) != 1:
            raise IntegrityViolation("product", product_id, "release found no product row")

        logger.info("Stock reservation released", extra={"product_id": product_id})

    async def get_stock(self, product_id: int) -> Optional[int]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Product.stock).where(Product.id == product_id)
            )
            return result.scalar_one_or_none()
