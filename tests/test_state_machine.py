"""
Unit tests for the conversation state store.

Covers idle defaults, pending-flow replacement, the support handoff and
eviction, keyed per owner, sender and audience.
"""

import pytest
from sqlalchemy import update

from src.storebot.models import ConversationSession
from src.storebot.schemas import (
    Audience,
    AwaitingCategoryPrice,
    AwaitingCustomerBalanceDelta,
    flow_state_adapter,
)
from src.storebot.services.state_store import ConversationLocks, ConversationStateStore


@pytest.fixture
def customer_states(session_factory):
    return ConversationStateStore(session_factory, Audience.CUSTOMER)


@pytest.fixture
def admin_states(session_factory):
    return ConversationStateStore(session_factory, Audience.ADMIN)


class TestConversationStateStore:
    """Tests for ConversationStateStore."""

    async def test_missing_conversation_reads_idle(self, store, customer_states):
        state = await customer_states.get(store.owner_id, "5511911112222")

        assert state.is_new
        assert state.is_idle
        assert state.pending_flow is None

    async def test_touch_creates_once(self, store, customer_states):
        first = await customer_states.touch(store.owner_id, "5511911112222")
        second = await customer_states.touch(store.owner_id, "5511911112222")

        assert first.is_new
        assert not second.is_new

    async def test_pending_flow_round_trip(self, store, admin_states):
        await admin_states.set_pending_flow(store.owner_id, "5511900000001", AwaitingCategoryPrice(category_id=5))

        state = await admin_states.get(store.owner_id, "5511900000001")

        assert state.pending_flow == AwaitingCategoryPrice(category_id=5)
        assert not state.is_new

    async def test_set_pending_flow_replaces_wholesale(self, store, admin_states):
        await admin_states.set_pending_flow(store.owner_id, "5511900000001", AwaitingCategoryPrice(category_id=5))
        await admin_states.set_pending_flow(
            store.owner_id, "5511900000001", AwaitingCustomerBalanceDelta(customer_id=9)
        )

        state = await admin_states.get(store.owner_id, "5511900000001")

        assert state.pending_flow == AwaitingCustomerBalanceDelta(customer_id=9)

    async def test_clear_pending_flow(self, store, admin_states):
        await admin_states.set_pending_flow(store.owner_id, "5511900000001", AwaitingCategoryPrice(category_id=5))
        await admin_states.set_pending_flow(store.owner_id, "5511900000001", None)

        state = await admin_states.get(store.owner_id, "5511900000001")

        assert state.is_idle

    async def test_opening_handoff_clears_pending_flow(self, store, customer_states):
        await customer_states.set_pending_flow(store.owner_id, "5511911112222", AwaitingCategoryPrice(category_id=1))
        await customer_states.set_support_handoff(store.owner_id, "5511911112222", True)

        state = await customer_states.get(store.owner_id, "5511911112222")

        assert state.support_handoff_open
        assert state.pending_flow is None

    async def test_audiences_are_separate(self, store, customer_states, admin_states):
        """The same number can hold a customer and an admin conversation."""
        await admin_states.set_pending_flow(store.owner_id, "5511900000001", AwaitingCategoryPrice(category_id=5))

        customer_view = await customer_states.get(store.owner_id, "5511900000001")

        assert customer_view.is_new
        assert customer_view.pending_flow is None

    async def test_evict_removes_conversation(self, store, admin_states):
        await admin_states.set_pending_flow(store.owner_id, "5511900000001", AwaitingCategoryPrice(category_id=5))

        await admin_states.evict(store.owner_id, "5511900000001")

        state = await admin_states.get(store.owner_id, "5511900000001")
        assert state.is_new
        assert state.pending_flow is None

    async def test_unreadable_flow_reads_as_idle(self, store, session_factory, admin_states):
        await admin_states.touch(store.owner_id, "5511900000001")
        async with session_factory() as session:
            await session.execute(update(ConversationSession).values(flow_state={"name": "no_such_flow"}))
            await session.commit()

        state = await admin_states.get(store.owner_id, "5511900000001")

        assert state.pending_flow is None


class TestFlowStateSchema:
    """The tagged union serializes by name."""

    def test_discriminated_by_name(self):
        flow = flow_state_adapter.validate_python({"name": "customer_balance_delta", "customer_id": 3})

        assert flow == AwaitingCustomerBalanceDelta(customer_id=3)

    def test_dump_keeps_tag(self):
        assert AwaitingCategoryPrice(category_id=5).model_dump(mode="json") == {
            "name": "category_price",
            "category_id": 5,
        }


class TestConversationLocks:
    """Tests for ConversationLocks."""

    def test_same_key_same_lock(self):
        locks = ConversationLocks()
        key = (1, "5511911112222", Audience.CUSTOMER)

        assert locks.for_conversation(key) is locks.for_conversation(key)

    def test_different_audience_different_lock(self):
        locks = ConversationLocks()

        customer_lock = locks.for_conversation((1, "5511911112222", Audience.CUSTOMER))
        admin_lock = locks.for_conversation((1, "5511911112222", Audience.ADMIN))

        assert customer_lock is not admin_lock
