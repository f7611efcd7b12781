"""
Admin bot: customer lookup and edits.

The merchant types a phone number to find a customer, then picks an edit
from the customer's menu: balance adjustment, display name or the block
toggle. Balance adjustments go through the ledger like any purchase.
"""

from typing import Optional

from ..models import Customer
from ..schemas import (
    AwaitingCustomerBalanceDelta,
    AwaitingCustomerEditChoice,
    AwaitingCustomerLookup,
    AwaitingCustomerName,
    DebitFailure,
    DebitFailureReason,
)
from ..utils.input_parsers import (
    format_currency,
    parse_balance_delta_input,
    sanitize_name_input,
)
from ..utils.logging import get_logger
from ..utils.phone import normalize_customer_phone_input
from .flow_context import FlowContext
from .menus import (
    CANCEL_BUTTON,
    send_admin_customer_actions_menu,
    send_admin_customer_edit_menu,
)
from .reply_ids import ReplyKind

logger = get_logger(__name__)

CUSTOMER_NOT_FOUND_TEXT = "Não encontramos esse cliente. Tente novamente."

DEBIT_FAILURE_TEXT = {
    DebitFailureReason.INSUFFICIENT: "Saldo insuficiente para debitar o valor informado.",
    DebitFailureReason.BLOCKED: "Este cliente está banido. Desbana-o antes de ajustar o saldo.",
    DebitFailureReason.NOT_FOUND: "Não foi possível ajustar o saldo. Tente novamente.",
}


class AdminCustomerFlow:
    """Customer screens and edits for the merchant."""

    async def show_actions(self, ctx: FlowContext) -> None:
        await ctx.set_flow(None, trigger="customer_actions")
        await send_admin_customer_actions_menu(ctx)

    async def list_customers(self, ctx: FlowContext, limit: int = 10) -> None:
        """Send the most recently active customers, then the actions menu again."""
        customers = await ctx.services.customers.list_recent(ctx.owner.id, limit=limit)
        if not customers:
            await ctx.send_text(
                "Nenhum cliente encontrado. Assim que novos clientes interagirem com o seu bot, eles aparecerão aqui."
            )
        else:
            lines = [f"📋 Clientes recentes ({len(customers)})", ""]
            for customer in customers:
                status = " 🚫" if customer.is_blocked else ""
                lines.append(
                    f"• {customer.name or '-'} | +{customer.whatsapp_id} | "
                    f"{format_currency(customer.balance_cents)}{status}"
                )
            await ctx.send_text("\n".join(lines))
        await send_admin_customer_actions_menu(ctx)

    async def start_lookup(self, ctx: FlowContext) -> None:
        await ctx.set_flow(AwaitingCustomerLookup(), trigger="customer_lookup")
        await self._send_lookup_prompt(ctx)

    async def _send_lookup_prompt(self, ctx: FlowContext) -> None:
        await ctx.messenger.send_buttons(
            ctx.sender,
            "Envie o número do cliente no formato +5511999998888 ou 11999998888.",
            [CANCEL_BUTTON],
            header="Editar cliente",
        )

    async def submit_lookup(self, ctx: FlowContext, text: Optional[str]) -> bool:
        phone = normalize_customer_phone_input(text)
        if phone is None:
            await ctx.send_text("Não consegui entender o número. Utilize o formato +5511999998888.")
            await self._send_lookup_prompt(ctx)
            return False

        customer = await ctx.services.customers.find_by_phone(ctx.owner.id, phone)
        if customer is None:
            await ctx.send_text("Não encontramos esse cliente. Verifique o número e tente novamente.")
            await self._send_lookup_prompt(ctx)
            return False

        await ctx.set_flow(AwaitingCustomerEditChoice(customer_id=customer.id), trigger="customer_found")
        await send_admin_customer_edit_menu(ctx, customer)
        return True

    async def _load(self, ctx: FlowContext, customer_id: int) -> Optional[Customer]:
        """Load the customer being edited; a vanished one sends the merchant back to the actions menu."""
        customer = await ctx.services.customers.get(ctx.owner.id, customer_id)
        if customer is None:
            await ctx.set_flow(None, trigger="customer_missing")
            await ctx.send_text(CUSTOMER_NOT_FOUND_TEXT)
            await send_admin_customer_actions_menu(ctx)
        return customer

    async def resume_edit_menu(self, ctx: FlowContext, customer_id: int) -> bool:
        """Return to a customer's edit menu; False when the customer is gone."""
        customer = await ctx.services.customers.get(ctx.owner.id, customer_id)
        if customer is None:
            return False
        await ctx.set_flow(AwaitingCustomerEditChoice(customer_id=customer.id), trigger="customer_edit_menu")
        await send_admin_customer_edit_menu(ctx, customer)
        return True

    async def choose(self, ctx: FlowContext, kind: ReplyKind) -> None:
        """
        Handle an option from the customer edit menu.

        The options only make sense while a customer is selected; otherwise
        the merchant gets the unknown-option reply.
        """
        flow = ctx.state.pending_flow
        if not isinstance(flow, AwaitingCustomerEditChoice):
            await ctx.send_text("Selecione um cliente antes de escolher uma opção de edição.")
            await send_admin_customer_actions_menu(ctx)
            return

        customer = await self._load(ctx, flow.customer_id)
        if customer is None:
            return

        if kind is ReplyKind.ADMIN_CUSTOMER_EDIT_BALANCE:
            await ctx.set_flow(AwaitingCustomerBalanceDelta(customer_id=customer.id), trigger="customer_edit_balance")
            await self._send_balance_prompt(ctx, customer)
        elif kind is ReplyKind.ADMIN_CUSTOMER_EDIT_NAME:
            await ctx.set_flow(AwaitingCustomerName(customer_id=customer.id), trigger="customer_edit_name")
            await self._send_name_prompt(ctx, customer)
        elif kind is ReplyKind.ADMIN_CUSTOMER_EDIT_TOGGLE_BLOCK:
            updated = await ctx.services.customers.toggle_block(ctx.owner.id, customer.id)
            if updated is None:
                await self._load(ctx, customer.id)
                return
            notice = "Cliente banido com sucesso." if updated.is_blocked else "Cliente liberado para interações."
            await send_admin_customer_edit_menu(ctx, updated, notice=notice)

    async def _send_balance_prompt(self, ctx: FlowContext, customer: Customer) -> None:
        await ctx.messenger.send_buttons(
            ctx.sender,
            f"Saldo atual: {format_currency(customer.balance_cents)}\n"
            "Envie o valor no formato +10 ou -5. Use 0 para não alterar.",
            [CANCEL_BUTTON],
            header="Ajustar saldo",
        )

    async def _send_name_prompt(self, ctx: FlowContext, customer: Customer) -> None:
        await ctx.messenger.send_buttons(
            ctx.sender,
            f"Nome atual: {customer.name or '-'}\nEnvie o novo nome com pelo menos 2 caracteres.",
            [CANCEL_BUTTON],
            header="Alterar nome",
        )

    async def submit_edit_choice(self, ctx: FlowContext, flow: AwaitingCustomerEditChoice) -> bool:
        """Free text while the edit menu is open: show the menu again."""
        customer = await self._load(ctx, flow.customer_id)
        if customer is None:
            return False
        await send_admin_customer_edit_menu(ctx, customer, notice="Escolha uma das opções da lista.")
        return False

    async def submit_name(self, ctx: FlowContext, flow: AwaitingCustomerName, text: Optional[str]) -> bool:
        customer = await self._load(ctx, flow.customer_id)
        if customer is None:
            return False

        name = sanitize_name_input(text)
        if name is None:
            await ctx.send_text("Informe um nome com pelo menos 2 caracteres.")
            await self._send_name_prompt(ctx, customer)
            return False

        updated = await ctx.services.customers.rename(ctx.owner.id, customer.id, name)
        if updated is None:
            await self._load(ctx, customer.id)
            return False

        await ctx.set_flow(AwaitingCustomerEditChoice(customer_id=updated.id), trigger="customer_name_saved")
        await send_admin_customer_edit_menu(ctx, updated, notice="Nome atualizado com sucesso!")
        return True

    async def submit_balance_delta(
        self, ctx: FlowContext, flow: AwaitingCustomerBalanceDelta, text: Optional[str]
    ) -> bool:
        """
        Apply a signed balance adjustment.

        Positive values are credited, negative values debited through the
        ledger (so blocked customers and the zero floor are respected), and
        zero changes nothing.
        """
        customer = await self._load(ctx, flow.customer_id)
        if customer is None:
            return False

        delta = parse_balance_delta_input(text)
        if delta is None:
            await ctx.send_text("Não consegui entender o valor. Use formatos +10 ou -5.")
            await self._send_balance_prompt(ctx, customer)
            return False

        ledger = ctx.services.ledger
        if delta > 0:
            await ledger.credit(customer.id, delta)
            notice = f"Saldo ajustado em +{format_currency(delta)}."
        elif delta < 0:
            result = await ledger.debit(customer.id, -delta)
            if isinstance(result, DebitFailure):
                await ctx.send_text(DEBIT_FAILURE_TEXT[result.reason])
                refreshed = await self._load(ctx, customer.id)
                if refreshed is not None:
                    await self._send_balance_prompt(ctx, refreshed)
                return False
            notice = f"Saldo ajustado em -{format_currency(-delta)}."
        else:
            notice = "Nenhum ajuste foi aplicado ao saldo."

        logger.info(
            "Customer balance adjusted by merchant",
            extra={"owner_id": ctx.owner.id, "customer_id": customer.id, "delta": str(delta)},
        )
        refreshed = await self._load(ctx, customer.id)
        if refreshed is None:
            return False
        await ctx.set_flow(AwaitingCustomerEditChoice(customer_id=refreshed.id), trigger="customer_balance_saved")
        await send_admin_customer_edit_menu(ctx, refreshed, notice=notice)
        return True
