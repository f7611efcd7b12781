"""
Append-only purchase history.
"""

from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..models import Category, Customer, Product, PurchaseRecord
from ..utils.input_parsers import to_cents
from ..utils.logging import get_logger

logger = get_logger(__name__)


class PurchaseHistoryService:
    """Writes one PurchaseRecord per completed purchase and never edits it."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def record_purchase(
        self,
        customer: Customer,
        category: Category,
        product: Product,
        balance_after: Decimal,
        metadata: Optional[dict[str, Any]] = None,
    ) -> PurchaseRecord:
        """
        Append a purchase record snapshotting category and product fields.

        Args:
            customer: Buyer
            category: Category the unit was sold from
            product: The reserved unit
            balance_after: Buyer's balance after the debit
            metadata: Extra data stored as JSON

        Returns:
            The persisted PurchaseRecord
        """
        record = PurchaseRecord(
            owner_id=category.owner_id,
            customer_id=customer.id,
            customer_whatsapp=customer.whatsapp_id,
            customer_name=customer.name,
            category_id=category.id,
            category_name=category.name,
            category_price_cents=category.price_cents,
            category_description=category.description,
            product_id=product.id,
            product_details=product.details,
            product_file_path=product.file_path,
            balance_after_cents=to_cents(balance_after),
            currency=settings.currency,
            extra_data=metadata,
        )

        async with self.session_factory() as session:
            session.add(record)
            await session.commit()

        logger.info(
            "Purchase recorded",
            extra={
                "purchase_id": record.id,
                "owner_id": record.owner_id,
                "category_id": record.category_id,
                "product_id": record.product_id,
                "price_cents": record.category_price_cents,
            },
        )
        return record
