"""
Catalog service: category lookup, paging and the admin edits.

Stock itself is never written here; see InventoryService.
"""

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..exceptions import CategoryNotFound
from ..models import Category, Product
from ..utils.logging import get_logger

logger = get_logger(__name__)


class CategoryPage:
    """One page of categories plus whether another page follows."""

    def __init__(self, categories: list[Category], page: int, has_more: bool) -> None:
        self.categories = categories
        self.page = page
        self.has_more = has_more

    @property
    def next_page(self) -> Optional[int]:
        return self.page + 1 if self.has_more else None


class CatalogService:
    """Reads categories for the bots and applies merchant edits."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def get_category(
        self, owner_id: int, category_id: int, active_only: bool = False
    ) -> Optional[Category]:
        """
        Resolve a category that belongs to an owner.

        Args:
            owner_id: Merchant id; categories of other owners never resolve
            category_id: Category primary key
            active_only: Also require is_active

        Returns:
            The Category, or None
        """
        query = select(Category).where(
            Category.id == category_id, Category.owner_id == owner_id
        )
        if active_only:
            query = query.where(Category.is_active.is_(True))

        async with self.session_factory() as session:
            result = await session.execute(query)
            return result.scalar_one_or_none()

    async def list_categories(
        self,
        owner_id: int,
        page: int = 0,
        page_size: int = 9,
        active_only: bool = True,
    ) -> CategoryPage:
        """
        List an owner's categories alphabetically, one page at a time.

        Args:
            owner_id: Merchant id
            page: Zero-based page number
            page_size: Categories per page
            active_only: Hide inactive categories (customer bot)

        Returns:
            CategoryPage
        """
        page = max(page, 0)
        query = select(Category).where(Category.owner_id == owner_id)
        if active_only:
            query = query.where(Category.is_active.is_(True))
        query = (
            query.order_by(func.lower(Category.name), Category.id)
            .offset(page * page_size)
            .limit(page_size + 1)
        )

        async with self.session_factory() as session:
            result = await session.execute(query)
            rows = list(result.scalars().all())

        return CategoryPage(rows[:page_size], page, has_more=len(rows) > page_size)

    async def available_stock(self, category_id: int) -> int:
        """Total units left across a category's products."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.coalesce(func.sum(Product.stock), 0)).where(
                    Product.category_id == category_id, Product.stock > 0
                )
            )
            return int(result.scalar_one())

    async def _update_category(
        self, owner_id: int, category_id: int, **values: object
    ) -> Category:
        """
        Apply field updates to one of the owner's categories.

        Raises:
            CategoryNotFound: If the category does not exist for this owner
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(Category).where(
                    Category.id == category_id, Category.owner_id == owner_id
                )
            )
            category = result.scalar_one_or_none()
            if category is None:
                raise CategoryNotFound(category_id)

            for key, value in values.items():
                setattr(category, key, value)
            await session.commit()
            await session.refresh(category)

        logger.info(
            "Category updated",
            extra={
                "owner_id": owner_id,
                "category_id": category_id,
                "fields": sorted(values),
            },
        )
        return category

    async def rename_category(
        self, owner_id: int, category_id: int, name: str
    ) -> Category:
        return await self._update_category(owner_id, category_id, name=name)

    async def update_price(
        self, owner_id: int, category_id: int, price_cents: int
    ) -> Category:
        return await self._update_category(owner_id, category_id, price_cents=price_cents)

    async def update_sku(
        self, owner_id: int, category_id: int, sku: str
    ) -> Category:
        return await self._update_category(owner_id, category_id, sku=sku)
