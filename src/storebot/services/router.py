"""
Flow router: the conversation state machine behind both bots.

handle_inbound_event() normalizes one webhook delivery, loads the
conversation under a per-conversation lock and picks exactly one handler:

1. An open support handoff swallows every message into the transcript,
   except the support_finish button which closes it.
2. A reply id is decoded once and dispatched on its kind.
3. Free text answers the pending flow, if any (admin bot only).
4. Anything else gets the main menu again.

Business failures are answered inside the handlers. Database, messaging and
payment failures are logged and turned into a friendly message; integrity
violations are left to propagate.
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..exceptions import PaymentProviderError
from ..models import Owner
from ..schemas import (
    CATEGORY_FLOWS,
    CUSTOMER_EDIT_FLOWS,
    Audience,
    AwaitingCustomerBalanceDelta,
    AwaitingCustomerEditChoice,
    AwaitingCustomerLookup,
    AwaitingCustomerName,
    FlowState,
    InboundMessage,
    MessageType,
    OwnerContext,
)
from ..utils.logging import get_logger, log_error
from ..utils.phone import normalize_whatsapp_id
from .add_balance_flow import AddBalanceFlow
from .admin_catalog_flow import AdminCatalogFlow
from .admin_customer_flow import AdminCustomerFlow
from .flow_context import FlowContext, FlowServices
from .menus import (
    send_admin_category_actions_menu,
    send_admin_customer_actions_menu,
    send_admin_main_menu,
    send_admin_panel_menu,
    send_admin_unknown_option,
    send_customer_main_menu,
)
from .normalizer import parse_incoming_message
from .purchase_flow import PurchaseFlow
from .reply_ids import CategoryEditMode, DecodedReply, ReplyKind, decode_reply_id
from .support_flow import SupportFlow
from .whatsapp import WhatsAppService, get_user_friendly_error_message

logger = get_logger(__name__)


class RouteAction(str, Enum):
    """The single terminal action taken for a delivery."""

    IGNORED = "ignored"
    SUPPORT_RELAYED = "support_relayed"
    SUPPORT_FINISHED = "support_finished"
    REPLY_HANDLED = "reply_handled"
    FLOW_INPUT = "flow_input"
    MAIN_MENU = "main_menu"
    UNKNOWN_OPTION = "unknown_option"
    REGISTRATION_MISSING = "registration_missing"
    ADMIN_WELCOME = "admin_welcome"
    FAILED = "failed"


# Failures from collaborators that end a delivery with an apology
RECOVERABLE_ERRORS = (SQLAlchemyError, httpx.HTTPError, PaymentProviderError)


class FlowRouter:
    """
    Routes canonical messages to the flow handlers.

    Args:
        services: Shared services, built once per process
    """

    def __init__(self, services: FlowServices) -> None:
        self.services = services
        self.purchase = PurchaseFlow()
        self.add_balance = AddBalanceFlow()
        self.support = SupportFlow()
        self.admin_catalog = AdminCatalogFlow()
        self.admin_customers = AdminCustomerFlow()

    async def handle_inbound_event(
        self, owner_context: OwnerContext, raw_payload: dict[str, Any]
    ) -> RouteAction:
        """
        Handle one webhook delivery end to end.

        Args:
            owner_context: Which bot and merchant the delivery arrived for
            raw_payload: The provider's JSON body

        Returns:
            The RouteAction taken

        Raises:
            IntegrityViolation: If a stock or balance invariant is broken
        """
        message = parse_incoming_message(raw_payload, bot_phone_number_id=owner_context.phone_number_id)
        if message is None:
            logger.debug("Delivery without an actionable message", extra={"audience": owner_context.audience.value})
            return RouteAction.IGNORED

        if owner_context.audience is Audience.ADMIN:
            return await self._handle_admin(owner_context, message)
        return await self._handle_customer(owner_context, message)

    async def _guard(
        self, ctx: FlowContext, route: Callable[[FlowContext], Awaitable[RouteAction]]
    ) -> RouteAction:
        try:
            return await route(ctx)
        except RECOVERABLE_ERRORS as e:
            log_error(
                logger,
                e,
                {
                    "owner_id": ctx.owner.id,
                    "audience": ctx.state.audience.value,
                    "message_type": ctx.message.type.value,
                },
            )
            try:
                await ctx.send_text(get_user_friendly_error_message(e))
            except httpx.HTTPError:
                logger.warning("Could not deliver error message", extra={"owner_id": ctx.owner.id})
            return RouteAction.FAILED

    # Customer bot

    async def _handle_customer(self, owner_context: OwnerContext, message: InboundMessage) -> RouteAction:
        owner: Optional[Owner] = None
        if owner_context.owner_id is not None:
            owner = await self.services.owners.get(owner_context.owner_id)
        if owner is None or not owner.is_active:
            logger.warning(
                "Delivery for unknown or inactive owner ignored",
                extra={"owner_id": owner_context.owner_id},
            )
            return RouteAction.IGNORED

        messenger = self.services.messenger_factory(
            owner_context.phone_number_id or owner.phone_number_id or "",
            owner_context.access_token or owner.access_token or "",
        )
        key = (owner.id, message.sender_id, Audience.CUSTOMER)
        async with self.services.locks.for_conversation(key):
            customer = await self.services.customers.record_interaction(
                owner.id, message.sender_id, message.contact_name
            )
            state = await self.services.states[Audience.CUSTOMER].touch(owner.id, message.sender_id)
            ctx = FlowContext(self.services, owner, message, state, messenger, customer=customer)
            return await self._guard(ctx, self._route_customer)

    async def _route_customer(self, ctx: FlowContext) -> RouteAction:
        reply = decode_reply_id(ctx.message.structured_reply_id)

        if ctx.state.support_handoff_open:
            if reply is not None and reply.kind is ReplyKind.SUPPORT_FINISH:
                await self.support.finish(ctx)
                return RouteAction.SUPPORT_FINISHED
            await self.support.relay(ctx)
            return RouteAction.SUPPORT_RELAYED

        if ctx.message.structured_reply_id:
            if reply is None:
                await ctx.send_text("Opção não reconhecida. Escolha uma opção do menu.")
                await send_customer_main_menu(ctx)
                return RouteAction.UNKNOWN_OPTION
            return await self._dispatch_customer_reply(ctx, reply)

        if ctx.state.pending_flow is not None:
            # Customer conversations never take free-text input
            await ctx.set_flow(None, trigger="customer_flow_discarded")

        await send_customer_main_menu(ctx)
        return RouteAction.MAIN_MENU

    async def _dispatch_customer_reply(self, ctx: FlowContext, reply: DecodedReply) -> RouteAction:
        kind = reply.kind
        if kind is ReplyKind.MENU_CATEGORIES:
            await self.purchase.show_categories(ctx)
        elif kind is ReplyKind.CATEGORY_PAGE:
            await self.purchase.show_categories(ctx, page=reply.page or 0)
        elif kind is ReplyKind.CATEGORY:
            await self.purchase.show_category(ctx, reply.entity_id)
        elif kind is ReplyKind.BUY:
            await self.purchase.buy(ctx, reply.entity_id)
        elif kind is ReplyKind.MENU_ADD_BALANCE:
            await self.add_balance.show_methods(ctx)
        elif kind is ReplyKind.PAYMENT_METHOD:
            await self.add_balance.show_amounts(ctx, reply.provider)
        elif kind is ReplyKind.ADD_BALANCE_AMOUNT:
            await self.add_balance.select_amount(ctx, reply.provider, reply.amount_cents)
        elif kind is ReplyKind.MENU_SUPPORT:
            await self.support.open(ctx)
        elif kind is ReplyKind.SUPPORT_FINISH:
            # Finishing a handoff that is not open: nothing to close
            await send_customer_main_menu(ctx)
            return RouteAction.MAIN_MENU
        else:
            await ctx.send_text("Opção não reconhecida. Escolha uma opção do menu.")
            await send_customer_main_menu(ctx)
            return RouteAction.UNKNOWN_OPTION
        return RouteAction.REPLY_HANDLED

    # Admin bot

    async def _handle_admin(self, owner_context: OwnerContext, message: InboundMessage) -> RouteAction:
        sender = normalize_whatsapp_id(message.sender_id)
        if not sender:
            return RouteAction.IGNORED
        message = message.model_copy(update={"sender_id": sender})

        messenger = self.services.messenger_factory(
            owner_context.phone_number_id or settings.admin_phone_number_id,
            owner_context.access_token or settings.admin_access_token,
        )
        store = self.services.states[Audience.ADMIN]

        owner = await self.services.owners.find_by_whatsapp_id(sender)
        if owner is not None and not owner.is_active:
            # A disabled account must not keep acting through an old session
            await store.evict(owner.id, sender)
            owner = None

        if owner is None:
            await self._send_registration_missing(messenger, sender)
            return RouteAction.REGISTRATION_MISSING

        key = (owner.id, sender, Audience.ADMIN)
        async with self.services.locks.for_conversation(key):
            state = await store.touch(owner.id, sender)
            ctx = FlowContext(self.services, owner, message, state, messenger)
            if state.is_new:
                await send_admin_main_menu(ctx)
                return RouteAction.ADMIN_WELCOME
            return await self._guard(ctx, self._route_admin)

    async def _send_registration_missing(self, messenger: WhatsAppService, to: str) -> None:
        await messenger.send_text(
            to,
            "Não encontramos uma conta ativa vinculada a este número. "
            "Cadastre seu WhatsApp no painel do StoreBot para usar o bot administrativo.",
        )

    async def _route_admin(self, ctx: FlowContext) -> RouteAction:
        if ctx.message.structured_reply_id:
            reply = decode_reply_id(ctx.message.structured_reply_id)
            if reply is None:
                await send_admin_unknown_option(ctx)
                return RouteAction.UNKNOWN_OPTION
            return await self._dispatch_admin_reply(ctx, reply)

        flow = ctx.state.pending_flow
        text = (ctx.message.text or "").strip()
        if flow is not None and ctx.message.type is MessageType.TEXT and text:
            await self._submit_admin_flow(ctx, flow, text)
            return RouteAction.FLOW_INPUT

        await send_admin_main_menu(ctx)
        return RouteAction.MAIN_MENU

    async def _submit_admin_flow(self, ctx: FlowContext, flow: FlowState, text: str) -> None:
        if isinstance(flow, CATEGORY_FLOWS):
            await self.admin_catalog.submit(ctx, flow, text)
        elif isinstance(flow, AwaitingCustomerLookup):
            await self.admin_customers.submit_lookup(ctx, text)
        elif isinstance(flow, AwaitingCustomerEditChoice):
            await self.admin_customers.submit_edit_choice(ctx, flow)
        elif isinstance(flow, AwaitingCustomerName):
            await self.admin_customers.submit_name(ctx, flow, text)
        elif isinstance(flow, AwaitingCustomerBalanceDelta):
            await self.admin_customers.submit_balance_delta(ctx, flow, text)

    async def _dispatch_admin_reply(self, ctx: FlowContext, reply: DecodedReply) -> RouteAction:
        kind = reply.kind
        catalog = self.admin_catalog
        customers = self.admin_customers

        if kind is ReplyKind.ADMIN_MENU_PANEL or kind in (
            ReplyKind.ADMIN_CATEGORY_ACTION_BACK,
            ReplyKind.ADMIN_CUSTOMER_ACTION_BACK,
        ):
            await ctx.set_flow(None, trigger=kind.value)
            await send_admin_panel_menu(ctx)
        elif kind is ReplyKind.ADMIN_PANEL_BACK:
            await ctx.set_flow(None, trigger=kind.value)
            await send_admin_main_menu(ctx)
        elif kind is ReplyKind.ADMIN_MENU_SUPPORT:
            await self._send_support_summaries(ctx)
        elif kind is ReplyKind.ADMIN_FLOW_CANCEL:
            await self._cancel(ctx)
        elif kind in (
            ReplyKind.ADMIN_PANEL_CATEGORIES,
            ReplyKind.ADMIN_CATEGORY_LIST_BACK,
            ReplyKind.ADMIN_CATEGORY_BACK_ACTIONS,
        ):
            await catalog.show_actions(ctx)
        elif kind is ReplyKind.ADMIN_CATEGORY_ACTION_LIST:
            await catalog.list_categories(ctx)
        elif kind is ReplyKind.ADMIN_CATEGORY_PAGE:
            await catalog.list_categories(ctx, page=reply.page or 0)
        elif kind is ReplyKind.ADMIN_CATEGORY_ROW:
            await catalog.show_details(ctx, reply.entity_id)
        elif kind in (
            ReplyKind.ADMIN_CATEGORY_ACTION_RENAME,
            ReplyKind.ADMIN_CATEGORY_ACTION_PRICE,
            ReplyKind.ADMIN_CATEGORY_ACTION_SKU,
        ):
            await catalog.show_selection(ctx, _ACTION_MODES[kind])
        elif kind is ReplyKind.ADMIN_CATEGORY_SELECT_PAGE:
            await catalog.show_selection(ctx, reply.mode, page=reply.page or 0)
        elif kind is ReplyKind.ADMIN_CATEGORY_SELECT:
            await catalog.select(ctx, reply.mode, reply.entity_id)
        elif kind in (
            ReplyKind.ADMIN_PANEL_CUSTOMERS,
            ReplyKind.ADMIN_CUSTOMER_EDIT_BACK,
            ReplyKind.ADMIN_CUSTOMER_BACK_ACTIONS,
        ):
            await customers.show_actions(ctx)
        elif kind is ReplyKind.ADMIN_CUSTOMER_ACTION_LIST:
            await customers.list_customers(ctx)
        elif kind is ReplyKind.ADMIN_CUSTOMER_ACTION_EDIT:
            await customers.start_lookup(ctx)
        elif kind in (
            ReplyKind.ADMIN_CUSTOMER_EDIT_BALANCE,
            ReplyKind.ADMIN_CUSTOMER_EDIT_NAME,
            ReplyKind.ADMIN_CUSTOMER_EDIT_TOGGLE_BLOCK,
        ):
            await customers.choose(ctx, kind)
        else:
            await send_admin_unknown_option(ctx)
            return RouteAction.UNKNOWN_OPTION
        return RouteAction.REPLY_HANDLED

    async def _cancel(self, ctx: FlowContext) -> None:
        """Drop the pending flow and return to the menu the flow came from."""
        previous = ctx.state.pending_flow
        await ctx.set_flow(None, trigger="cancel")
        await ctx.send_text("Operação cancelada. Escolha outra opção para continuar.")

        if isinstance(previous, CATEGORY_FLOWS):
            await send_admin_category_actions_menu(ctx)
        elif isinstance(previous, AwaitingCustomerLookup):
            await send_admin_customer_actions_menu(ctx)
        elif isinstance(previous, CUSTOMER_EDIT_FLOWS):
            if not await self.admin_customers.resume_edit_menu(ctx, previous.customer_id):
                await send_admin_customer_actions_menu(ctx)
        else:
            await send_admin_main_menu(ctx)

    async def _send_support_summaries(self, ctx: FlowContext) -> None:
        summaries = await ctx.services.support.list_open_summaries(ctx.owner.id)
        if not summaries:
            await ctx.send_text("Nenhum atendimento aberto no momento.")
        else:
            lines = [f"💬 Atendimentos abertos ({len(summaries)})"]
            for summary in summaries:
                if summary.within_24h:
                    hours, minutes = divmod(summary.minutes_left_24h, 60)
                    window = f"{hours}h{minutes:02d} para responder"
                else:
                    window = "janela de 24h encerrada"
                lines.append(
                    f"\n• {summary.customer_name or 'Cliente'} (+{summary.customer_whatsapp})\n"
                    f"  {summary.last_message_preview or '-'}\n"
                    f"  ⏱ {window}"
                )
            await ctx.send_text("\n".join(lines))
        await send_admin_main_menu(ctx)


_ACTION_MODES = {
    ReplyKind.ADMIN_CATEGORY_ACTION_RENAME: CategoryEditMode.RENAME,
    ReplyKind.ADMIN_CATEGORY_ACTION_PRICE: CategoryEditMode.PRICE,
    ReplyKind.ADMIN_CATEGORY_ACTION_SKU: CategoryEditMode.SKU,
}
