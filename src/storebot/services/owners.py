"""
Merchant account lookups for the webhook entry points.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import Owner


class OwnerService:
    """Resolves the merchant behind a delivery."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def get(self, owner_id: int) -> Optional[Owner]:
        async with self.session_factory() as session:
            return await session.get(Owner, owner_id)

    async def find_by_whatsapp_id(self, whatsapp_id: str) -> Optional[Owner]:
        """
        Find the owner whose personal WhatsApp id matches, active or not.

        Args:
            whatsapp_id: Digits-only WhatsApp id of the admin bot sender
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(Owner).where(Owner.whatsapp_id == whatsapp_id).limit(1)
            )
            return result.scalar_one_or_none()
