"""
Human support handoff for the customer bot.

While a handoff is open the bot stays silent and every inbound message is
appended to the support transcript for the merchant. The customer leaves
with the support_finish button.
"""

from .flow_context import FlowContext
from .menus import send_customer_main_menu
from .reply_ids import ReplyKind
from .whatsapp import Button

FINISH_BUTTON = Button(id=ReplyKind.SUPPORT_FINISH.value, title="Encerrar suporte")


class SupportFlow:
    """Open, relay and close a support handoff."""

    async def open(self, ctx: FlowContext) -> None:
        customer_name = ctx.customer.name if ctx.customer else ctx.message.contact_name
        await ctx.services.support.open_thread(ctx.owner.id, ctx.sender, customer_name)
        await ctx.set_support_handoff(True)
        await ctx.messenger.send_buttons(
            ctx.sender,
            "👩‍💻 Você está falando com o suporte humano.\n"
            "Envie sua mensagem e aguarde o retorno da nossa equipe.\n"
            "Quando terminar, toque em *Encerrar suporte*.",
            [FINISH_BUTTON],
        )

    async def relay(self, ctx: FlowContext) -> None:
        """Append the inbound message to the transcript; nothing is sent back."""
        await ctx.services.support.record_inbound(ctx.owner.id, ctx.message)

    async def finish(self, ctx: FlowContext) -> None:
        """Close the handoff and bring the customer back to the main menu."""
        await ctx.send_text("Atendimento encerrado. Obrigado pelo contato! 👋")
        await ctx.services.support.close_thread(ctx.owner.id, ctx.sender)
        await ctx.set_support_handoff(False)
        await send_customer_main_menu(ctx)
