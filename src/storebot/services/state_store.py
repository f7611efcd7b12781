"""
Conversation state store.

Persists, per (owner, WhatsApp user, audience), whether a human support
handoff is open and which pending input flow the next free-text message
answers. Rows live in conversation_sessions; the pending flow is stored as
the JSON dump of its FlowState variant.

ConversationLocks gives the router one asyncio.Lock per conversation so two
deliveries for the same conversation in this process cannot interleave
their read-modify-write of the state.
"""

import asyncio
import weakref
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import ConversationSession
from ..schemas import Audience, ConversationState, FlowState, flow_state_adapter
from ..utils.logging import get_logger

logger = get_logger(__name__)

ConversationKey = tuple[int, str, Audience]


def _flow_name(flow: Optional[FlowState]) -> str:
    return flow.name if flow is not None else "idle"


class ConversationLocks:
    """
    Registry of per-conversation asyncio locks.

    Locks are held weakly, so an idle conversation's lock is dropped once no
    coroutine is waiting on it.
    """

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[ConversationKey, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def for_conversation(self, key: ConversationKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


class ConversationStateStore:
    """
    SQLAlchemy-backed conversation state.

    Every method runs in its own short transaction, so a write is visible
    to the next read as soon as the method returns.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        audience: Audience = Audience.CUSTOMER,
    ) -> None:
        self.session_factory = session_factory
        self.audience = audience

    async def _load_row(
        self, session: AsyncSession, owner_id: int, customer_id: str
    ) -> Optional[ConversationSession]:
        result = await session.execute(
            select(ConversationSession).where(
                ConversationSession.owner_id == owner_id,
                ConversationSession.customer_key == customer_id,
                ConversationSession.audience == self.audience.value,
            )
        )
        return result.scalar_one_or_none()

    async def _ensure_row(
        self, session: AsyncSession, owner_id: int, customer_id: str
    ) -> ConversationSession:
        row = await self._load_row(session, owner_id, customer_id)
        if row is not None:
            return row

        row = ConversationSession(
            owner_id=owner_id,
            customer_key=customer_id,
            audience=self.audience.value,
            support_handoff_open=False,
            flow_state=None,
        )
        session.add(row)
        try:
            await session.flush()
        except IntegrityError:
            # Another worker created it first
            await session.rollback()
            row = await self._load_row(session, owner_id, customer_id)
            if row is None:
                raise
        return row

    def _parse_flow(self, raw: Optional[dict[str, Any]]) -> Optional[FlowState]:
        if not raw:
            return None
        try:
            return flow_state_adapter.validate_python(raw)
        except ValidationError:
            logger.warning(
                "Discarding unreadable pending flow",
                extra={"flow_name": raw.get("name"), "audience": self.audience.value},
            )
            return None

    def _to_state(self, row: ConversationSession, is_new: bool = False) -> ConversationState:
        return ConversationState(
            owner_id=row.owner_id,
            customer_id=row.customer_key,
            audience=self.audience,
            support_handoff_open=row.support_handoff_open,
            pending_flow=self._parse_flow(row.flow_state),
            is_new=is_new,
        )

    async def get(self, owner_id: int, customer_id: str) -> ConversationState:
        """
        Read a conversation's state.

        Missing conversations read as idle with is_new=True; nothing is
        written until one of the setters is called.

        Args:
            owner_id: Merchant that owns the conversation
            customer_id: WhatsApp id of the other party

        Returns:
            ConversationState snapshot
        """
        async with self.session_factory() as session:
            row = await self._load_row(session, owner_id, customer_id)
            if row is None:
                return ConversationState(
                    owner_id=owner_id,
                    customer_id=customer_id,
                    audience=self.audience,
                    is_new=True,
                )
            return self._to_state(row)

    async def touch(self, owner_id: int, customer_id: str) -> ConversationState:
        """
        Create the conversation if needed and bump last_interaction_at.

        Returns:
            State after the touch; is_new is True when the row was created
        """
        async with self.session_factory() as session:
            existed = await self._load_row(session, owner_id, customer_id) is not None
            row = await self._ensure_row(session, owner_id, customer_id)
            row.last_interaction_at = datetime.now(timezone.utc)
            await session.commit()
            return self._to_state(row, is_new=not existed)

    async def set_pending_flow(
        self,
        owner_id: int,
        customer_id: str,
        flow: Optional[FlowState],
        trigger: Optional[str] = None,
    ) -> None:
        """
        Replace the pending flow (None clears it).

        Args:
            owner_id: Merchant that owns the conversation
            customer_id: WhatsApp id of the other party
            flow: New FlowState, or None for idle
            trigger: What caused the transition, for the log line
        """
        async with self.session_factory() as session:
            row = await self._ensure_row(session, owner_id, customer_id)
            from_flow = self._parse_flow(row.flow_state)
            row.flow_state = flow.model_dump(mode="json") if flow is not None else None
            await session.commit()

        logger.info(
            "State transition",
            extra={
                "owner_id": owner_id,
                "audience": self.audience.value,
                "from_state": _flow_name(from_flow),
                "to_state": _flow_name(flow),
                "trigger": trigger or "manual",
            },
        )

    async def set_support_handoff(
        self, owner_id: int, customer_id: str, is_open: bool
    ) -> None:
        """
        Open or close the human support handoff.

        Opening a handoff clears any pending flow so the two never coexist
        in a customer conversation.
        """
        async with self.session_factory() as session:
            row = await self._ensure_row(session, owner_id, customer_id)
            was_open = row.support_handoff_open
            row.support_handoff_open = is_open
            if is_open:
                row.flow_state = None
            await session.commit()

        logger.info(
            "Support handoff updated",
            extra={
                "owner_id": owner_id,
                "audience": self.audience.value,
                "was_open": was_open,
                "is_open": is_open,
            },
        )

    async def evict(self, owner_id: int, customer_id: str) -> None:
        """Delete the conversation entirely."""
        async with self.session_factory() as session:
            await session.execute(
                delete(ConversationSession).where(
                    ConversationSession.owner_id == owner_id,
                    ConversationSession.customer_key == customer_id,
                    ConversationSession.audience == self.audience.value,
                )
            )
            await session.commit()

        logger.info(
            "Conversation evicted",
            extra={"owner_id": owner_id, "audience": self.audience.value},
        )

