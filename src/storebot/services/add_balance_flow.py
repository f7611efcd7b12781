"""
Customer balance top-ups.

Lists the merchant's payment methods, then the amount tiers of the chosen
one. Only tiers configured right now are accepted, so an old or edited
reply id cannot create a charge for an arbitrary amount. The balance itself
is credited later, when the provider confirms the payment.
"""

from typing import Optional

from ..exceptions import PaymentProviderError
from ..models import PaymentMethod
from ..schemas import PaymentInstructions, PaymentProvider
from ..utils.input_parsers import format_currency
from ..utils.logging import get_logger
from .flow_context import FlowContext
from .menus import send_customer_main_menu
from .reply_ids import encode_add_balance_amount, encode_payment_method
from .whatsapp import ListRow, ListSection

logger = get_logger(__name__)


class AddBalanceFlow:
    """Payment method choice, tier choice and charge creation."""

    async def _find_method(
        self, ctx: FlowContext, provider: Optional[PaymentProvider]
    ) -> Optional[PaymentMethod]:
        if provider is None:
            return None
        for method in await ctx.payment_methods():
            if method.provider == provider.value:
                return method
        return None

    async def show_methods(self, ctx: FlowContext) -> None:
        methods = await ctx.payment_methods()
        if not methods:
            await ctx.send_text("No momento não há formas de pagamento disponíveis. Tente mais tarde.")
            await send_customer_main_menu(ctx)
            return

        rows = [
            ListRow(
                id=encode_payment_method(PaymentProvider(method.provider)),
                title=ctx.services.payments.label(PaymentProvider(method.provider), method),
            )
            for method in methods
        ]
        await ctx.messenger.send_list(
            ctx.sender,
            "Escolha como deseja adicionar saldo.",
            "Formas de pagamento",
            [ListSection(title="Pagamento", rows=rows)],
            header="Adicionar saldo",
        )

    async def show_amounts(self, ctx: FlowContext, provider: Optional[PaymentProvider]) -> None:
        method = await self._find_method(ctx, provider)
        if method is None:
            await ctx.send_text("Essa forma de pagamento não está disponível.")
            await self.show_methods(ctx)
            return

        provider = PaymentProvider(method.provider)
        rows = [
            ListRow(
                id=encode_add_balance_amount(provider, cents),
                title=format_currency(cents),
            )
            for cents in ctx.services.payments.amount_options_cents(method)
        ]
        await ctx.messenger.send_list(
            ctx.sender,
            "Quanto deseja adicionar ao seu saldo?",
            "Ver valores",
            [ListSection(title=ctx.services.payments.label(provider, method), rows=rows)],
            header="Adicionar saldo",
        )

    async def select_amount(
        self,
        ctx: FlowContext,
        provider: Optional[PaymentProvider],
        amount_cents: Optional[int],
    ) -> Optional[PaymentInstructions]:
        """
        Create a charge for a tier chosen from the amount list.

        Args:
            ctx: Current delivery; ctx.customer must be set
            provider: Provider decoded from the reply id
            amount_cents: Tier decoded from the reply id

        Returns:
            The relayed PaymentInstructions, or None when the tier was
            rejected or the provider failed
        """
        method = await self._find_method(ctx, provider)
        if method is None or ctx.customer is None:
            await ctx.send_text("Essa forma de pagamento não está disponível.")
            await self.show_methods(ctx)
            return None

        tiers = ctx.services.payments.amount_options_cents(method)
        if amount_cents not in tiers:
            logger.warning(
                "Rejected top-up amount outside configured tiers",
                extra={
                    "owner_id": ctx.owner.id,
                    "provider": method.provider,
                    "amount_cents": amount_cents,
                },
            )
            await ctx.send_text("Esse valor não está mais disponível. Escolha um dos valores atuais.")
            await self.show_amounts(ctx, PaymentProvider(method.provider))
            return None

        gateway = ctx.services.gateway_factory(method.access_token or "")
        try:
            instructions = await ctx.services.payments.create_top_up(
                method, ctx.customer, amount_cents, gateway=gateway
            )
        except PaymentProviderError as e:
            logger.error(
                "Top-up charge creation failed",
                extra={"owner_id": ctx.owner.id, "provider": e.provider, "reason": e.reason},
            )
            await ctx.send_text(
                "Não foi possível gerar o pagamento agora. Tente novamente em instantes."
            )
            await send_customer_main_menu(ctx)
            return None

        await self._relay(ctx, instructions)
        return instructions

    async def _relay(self, ctx: FlowContext, instructions: PaymentInstructions) -> None:
        lines = [f"💳 Pagamento de {format_currency(instructions.amount)} gerado!"]
        if instructions.checkout_url:
            lines.append(f"Finalize pelo link: {instructions.checkout_url}")
        if instructions.ticket_url:
            lines.append(f"Abra o Pix: {instructions.ticket_url}")
        if instructions.expires_at:
            lines.append(f"Válido até {instructions.expires_at.strftime('%d/%m/%Y %H:%M')} (UTC).")
        lines.append("Seu saldo será atualizado assim que o pagamento for confirmado.")

        await ctx.send_text("\n".join(lines))
        if instructions.qr_code:
            # Sent alone so the customer can copy it in one tap
            await ctx.send_text(instructions.qr_code)
