"""
Shared plumbing for the conversation flows.

FlowServices bundles the services every flow needs, built once per process
from a session factory. FlowContext carries one delivery through the
handlers: the merchant, the sender, the conversation state and lookups
memoized for the lifetime of that delivery only.
"""

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import Category, Customer, Owner, PaymentMethod
from ..schemas import Audience, ConversationState, FlowState, InboundMessage
from .catalog import CatalogService
from .customers import CustomerService
from .inventory import InventoryService
from .ledger import BalanceLedgerService
from .notifications import OwnerNotifier
from .owners import OwnerService
from .payments import MercadoPagoService, PaymentMethodsService
from .purchase_history import PurchaseHistoryService
from .state_store import ConversationLocks, ConversationStateStore
from .support import SupportService
from .whatsapp import WhatsAppService

MessengerFactory = Callable[[str, str], WhatsAppService]
GatewayFactory = Callable[[str], MercadoPagoService]


class FlowServices:
    """
    Services shared by every delivery.

    Args:
        session_factory: Async session factory for the database
        messenger_factory: Builds a WhatsApp client from (phone_number_id, access_token)
        gateway_factory: Builds a Mercado Pago client from an access token
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        messenger_factory: Optional[MessengerFactory] = None,
        gateway_factory: Optional[GatewayFactory] = None,
        notifier: Optional[OwnerNotifier] = None,
    ) -> None:
        self.session_factory = session_factory
        self.messenger_factory = messenger_factory or WhatsAppService
        self.gateway_factory = gateway_factory or MercadoPagoService

        self.owners = OwnerService(session_factory)
        self.catalog = CatalogService(session_factory)
        self.customers = CustomerService(session_factory)
        self.inventory = InventoryService(session_factory)
        self.ledger = BalanceLedgerService(session_factory)
        self.purchases = PurchaseHistoryService(session_factory)
        self.support = SupportService(session_factory)
        self.payments = PaymentMethodsService(session_factory)
        self.notifier = notifier or OwnerNotifier(self.messenger_factory)

        self.states = {
            Audience.CUSTOMER: ConversationStateStore(session_factory, Audience.CUSTOMER),
            Audience.ADMIN: ConversationStateStore(session_factory, Audience.ADMIN),
        }
        self.locks = ConversationLocks()


class FlowContext:
    """One delivery on its way through the flow handlers."""

    def __init__(
        self,
        services: FlowServices,
        owner: Owner,
        message: InboundMessage,
        state: ConversationState,
        messenger: WhatsAppService,
        customer: Optional[Customer] = None,
    ) -> None:
        self.services = services
        self.owner = owner
        self.message = message
        self.state = state
        self.messenger = messenger
        self.customer = customer
        self._categories: dict[tuple[int, bool], Optional[Category]] = {}
        self._payment_methods: Optional[list[PaymentMethod]] = None

    @property
    def sender(self) -> str:
        return self.message.sender_id

    @property
    def store(self) -> ConversationStateStore:
        return self.services.states[self.state.audience]

    async def get_category(self, category_id: int, active_only: bool = False) -> Optional[Category]:
        key = (category_id, active_only)
        if key not in self._categories:
            self._categories[key] = await self.services.catalog.get_category(
                self.owner.id, category_id, active_only=active_only
            )
        return self._categories[key]

    def forget_category(self, category_id: int) -> None:
        """Drop memoized lookups after the category was edited."""
        for active_only in (True, False):
            self._categories.pop((category_id, active_only), None)

    async def payment_methods(self) -> list[PaymentMethod]:
        if self._payment_methods is None:
            self._payment_methods = await self.services.payments.list_available(self.owner.id)
        return self._payment_methods

    async def set_flow(self, flow: Optional[FlowState], trigger: str) -> None:
        """Replace the pending flow and keep the in-memory snapshot in step."""
        await self.store.set_pending_flow(self.owner.id, self.sender, flow, trigger=trigger)
        self.state = self.state.model_copy(update={"pending_flow": flow})

    async def set_support_handoff(self, is_open: bool) -> None:
        await self.store.set_support_handoff(self.owner.id, self.sender, is_open)
        update: dict[str, object] = {"support_handoff_open": is_open}
        if is_open:
            update["pending_flow"] = None
        self.state = self.state.model_copy(update=update)

    async def send_text(self, text: str) -> bool:
        return await self.messenger.send_text(self.sender, text)
