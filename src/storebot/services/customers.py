"""
Customer service: registration from inbound messages and merchant edits.

Balances are not written here; see BalanceLedgerService.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import Customer
from ..utils.logging import get_logger
from ..utils.phone import phone_lookup_keys

logger = get_logger(__name__)


class CustomerService:
    """Lookup and maintenance of a merchant's customers."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def record_interaction(
        self, owner_id: int, whatsapp_id: str, profile_name: Optional[str] = None
    ) -> Customer:
        """
        Register a customer on first contact and refresh them afterwards.

        Updates the WhatsApp profile name when one is provided and stamps
        last_interaction_at.

        Args:
            owner_id: Merchant the customer wrote to
            whatsapp_id: Sender's WhatsApp id (digits)
            profile_name: Name from the webhook contacts block

        Returns:
            The Customer row
        """
        now = datetime.now(timezone.utc)

        async with self.session_factory() as session:
            customer = await self._find(session, owner_id, whatsapp_id)
            if customer is None:
                customer = Customer(
                    owner_id=owner_id,
                    whatsapp_id=whatsapp_id,
                    phone=whatsapp_id,
                    profile_name=profile_name,
                    balance_cents=0,
                    is_blocked=False,
                    last_interaction_at=now,
                )
                session.add(customer)
                try:
                    await session.commit()
                    logger.info("Customer registered", extra={"owner_id": owner_id})
                    return customer
                except IntegrityError:
                    # Registered concurrently by another delivery
                    await session.rollback()
                    customer = await self._find(session, owner_id, whatsapp_id)
                    if customer is None:
                        raise

            if profile_name:
                customer.profile_name = profile_name
            customer.last_interaction_at = now
            await session.commit()
            return customer

    async def _find(
        self, session: AsyncSession, owner_id: int, whatsapp_id: str
    ) -> Optional[Customer]:
        result = await session.execute(
            select(Customer).where(
                Customer.owner_id == owner_id, Customer.whatsapp_id == whatsapp_id
            )
        )
        return result.scalar_one_or_none()

    async def get(self, owner_id: int, customer_id: int) -> Optional[Customer]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Customer).where(
                    Customer.id == customer_id, Customer.owner_id == owner_id
                )
            )
            return result.scalar_one_or_none()

    async def find_by_phone(self, owner_id: int, typed_phone: str) -> Optional[Customer]:
        """
        Find a customer from a phone number typed by the merchant.

        Matches the WhatsApp id or the stored phone against every candidate
        from phone_lookup_keys().
        """
        keys = phone_lookup_keys(typed_phone)
        if not keys:
            return None

        async with self.session_factory() as session:
            result = await session.execute(
                select(Customer)
                .where(
                    Customer.owner_id == owner_id,
                    or_(Customer.whatsapp_id.in_(keys), Customer.phone.in_(keys)),
                )
                .order_by(Customer.id)
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_recent(self, owner_id: int, limit: int = 10) -> list[Customer]:
        """Customers ordered by most recent interaction."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Customer)
                .where(Customer.owner_id == owner_id)
                .order_by(Customer.last_interaction_at.desc(), Customer.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def rename(self, owner_id: int, customer_id: int, name: str) -> Optional[Customer]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Customer).where(
                    Customer.id == customer_id, Customer.owner_id == owner_id
                )
            )
            customer = result.scalar_one_or_none()
            if customer is None:
                return None
            customer.display_name = name
            await session.commit()

        logger.info("Customer renamed", extra={"owner_id": owner_id, "customer_id": customer_id})
        return customer

    async def toggle_block(self, owner_id: int, customer_id: int) -> Optional[Customer]:
        """Flip is_blocked and return the updated customer."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Customer).where(
                    Customer.id == customer_id, Customer.owner_id == owner_id
                )
            )
            customer = result.scalar_one_or_none()
            if customer is None:
                return None
            customer.is_blocked = not customer.is_blocked
            await session.commit()

        logger.info(
            "Customer block toggled",
            extra={
                "owner_id": owner_id,
                "customer_id": customer_id,
                "is_blocked": customer.is_blocked,
            },
        )
        return customer
