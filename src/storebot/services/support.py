"""
Support transcript service.

Keeps one thread per (merchant, customer WhatsApp id) and an append-only
log of the messages exchanged while a human support handoff is open. The
merchant answers from their own WhatsApp; this module only records.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import Customer, SupportMessage, SupportThread
from ..schemas import InboundMessage, SupportThreadSummary
from ..utils.logging import get_logger

logger = get_logger(__name__)

PREVIEW_LIMIT = 280
SERVICE_WINDOW = timedelta(hours=24)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; they were written as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def build_preview(text: Optional[str], payload: Optional[dict[str, Any]]) -> Optional[str]:
    """
    Short preview for a transcript entry.

    Uses the text, else the media caption, else the media mime type.
    """
    source = text
    if not source and payload:
        source = payload.get("caption") or payload.get("mime_type")
    if not source:
        return None
    return source[:PREVIEW_LIMIT]


class SupportService:
    """Support threads and their transcripts."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def _get_thread(
        self, session: AsyncSession, owner_id: int, customer_whatsapp: str
    ) -> Optional[SupportThread]:
        result = await session.execute(
            select(SupportThread).where(
                SupportThread.owner_id == owner_id,
                SupportThread.customer_whatsapp == customer_whatsapp,
            )
        )
        return result.scalar_one_or_none()

    async def _get_or_create_thread(
        self,
        session: AsyncSession,
        owner_id: int,
        customer_whatsapp: str,
        customer_name: Optional[str] = None,
    ) -> SupportThread:
        thread = await self._get_thread(session, owner_id, customer_whatsapp)
        if thread is not None:
            return thread

        thread = SupportThread(
            owner_id=owner_id,
            customer_whatsapp=customer_whatsapp,
            customer_name=customer_name,
            status="open",
        )
        session.add(thread)
        try:
            await session.flush()
        except IntegrityError:
            await session.rollback()
            thread = await self._get_thread(session, owner_id, customer_whatsapp)
            if thread is None:
                raise
        return thread

    async def open_thread(
        self, owner_id: int, customer_whatsapp: str, customer_name: Optional[str] = None
    ) -> SupportThread:
        """
        Open the customer's thread, creating or reopening it as needed.

        Returns:
            The open SupportThread
        """
        async with self.session_factory() as session:
            thread = await self._get_or_create_thread(
                session, owner_id, customer_whatsapp, customer_name
            )
            if thread.status != "open":
                thread.status = "open"
                thread.closed_at = None
                thread.opened_at = datetime.now(timezone.utc)
            if customer_name:
                thread.customer_name = customer_name
            await session.commit()

        logger.info("Support thread opened", extra={"owner_id": owner_id, "thread_id": thread.id})
        return thread

    async def close_thread(self, owner_id: int, customer_whatsapp: str) -> None:
        async with self.session_factory() as session:
            thread = await self._get_thread(session, owner_id, customer_whatsapp)
            if thread is None or thread.status == "closed":
                return
            thread.status = "closed"
            thread.closed_at = datetime.now(timezone.utc)
            await session.commit()

        logger.info("Support thread closed", extra={"owner_id": owner_id, "thread_id": thread.id})

    async def record_message(
        self,
        owner_id: int,
        customer_whatsapp: str,
        direction: str,
        message_type: str,
        text: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
        provider_message_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        customer_name: Optional[str] = None,
    ) -> SupportMessage:
        """
        Append one entry to the customer's transcript.

        Args:
            owner_id: Merchant id
            customer_whatsapp: Customer WhatsApp id
            direction: "inbound" or "outbound"
            message_type: WhatsApp message type
            text: Message text or caption
            payload: Media descriptor or other structured content
            provider_message_id: WhatsApp message id
            timestamp: When the message was sent (defaults to now)
            customer_name: Refreshes the thread's customer name when given

        Returns:
            The stored SupportMessage
        """
        created_at = timestamp or datetime.now(timezone.utc)

        async with self.session_factory() as session:
            thread = await self._get_or_create_thread(
                session, owner_id, customer_whatsapp, customer_name
            )
            message = SupportMessage(
                thread_id=thread.id,
                direction=direction,
                message_type=message_type,
                content=text,
                payload=payload,
                provider_message_id=provider_message_id,
                created_at=created_at,
            )
            session.add(message)

            thread.last_message_preview = build_preview(text, payload)
            thread.last_message_at = created_at
            if customer_name:
                thread.customer_name = customer_name
            await session.commit()

        logger.info(
            "Support message recorded",
            extra={
                "owner_id": owner_id,
                "thread_id": thread.id,
                "direction": direction,
                "message_type": message_type,
            },
        )
        return message

    async def record_inbound(self, owner_id: int, message: InboundMessage) -> SupportMessage:
        """Append an inbound WhatsApp message, media included, to the transcript."""
        payload = None
        if message.media_ref is not None:
            payload = message.media_ref.model_dump(exclude_none=True)
        elif message.structured_reply_id:
            payload = {"reply_id": message.structured_reply_id}

        return await self.record_message(
            owner_id=owner_id,
            customer_whatsapp=message.sender_id,
            direction="inbound",
            message_type=message.type.value,
            text=message.text,
            payload=payload,
            provider_message_id=message.message_id,
            timestamp=message.provider_timestamp,
            customer_name=message.contact_name,
        )

    async def list_open_summaries(self, owner_id: int, limit: int = 10) -> list[SupportThreadSummary]:
        """
        Open threads, most recent first, with the 24h reply window.

        WhatsApp only allows free-form replies within 24 hours of the
        customer's last message, counted from the customer's last interaction.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(SupportThread, Customer.last_interaction_at)
                .outerjoin(
                    Customer,
                    (Customer.owner_id == SupportThread.owner_id)
                    & (Customer.whatsapp_id == SupportThread.customer_whatsapp),
                )
                .where(SupportThread.owner_id == owner_id, SupportThread.status == "open")
                .order_by(SupportThread.last_message_at.desc(), SupportThread.id.desc())
                .limit(limit)
            )
            rows = result.all()

        now = datetime.now(timezone.utc)
        return [self._summarize(thread, last_interaction, now) for thread, last_interaction in rows]

    @staticmethod
    def _summarize(
        thread: SupportThread, last_interaction: Optional[datetime], now: datetime
    ) -> SupportThreadSummary:
        minutes_left = 0
        last = as_utc(last_interaction)
        if last is not None:
            remaining = SERVICE_WINDOW - (now - last)
            minutes_left = max(0, int(remaining.total_seconds() // 60))

        return SupportThreadSummary(
            thread_id=thread.id,
            customer_whatsapp=thread.customer_whatsapp,
            customer_name=thread.customer_name,
            status=thread.status,
            last_message_preview=thread.last_message_preview,
            last_message_at=as_utc(thread.last_message_at),
            within_24h=minutes_left > 0,
            minutes_left_24h=minutes_left,
        )
