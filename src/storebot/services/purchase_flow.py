"""
Customer catalog browsing and the purchase transaction.

A purchase reserves one unit, debits the category price and only then
records the sale. When the debit fails the unit is released exactly once,
so stock always returns to its value before the attempt.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..models import Category, Product
from ..schemas import DebitFailure, DebitFailureReason
from ..utils.input_parsers import format_currency, from_cents, to_cents
from ..utils.logging import get_logger
from .flow_context import FlowContext
from .menus import send_customer_main_menu
from .reply_ids import ReplyKind, encode_buy, encode_category, encode_category_page
from .whatsapp import Button, ListRow, ListSection

logger = get_logger(__name__)


class PurchaseOutcome(str, Enum):
    """How a purchase attempt ended."""

    COMPLETED = "completed"
    CATEGORY_UNAVAILABLE = "category_unavailable"
    OUT_OF_STOCK = "out_of_stock"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    BLOCKED = "blocked"
    CUSTOMER_NOT_FOUND = "customer_not_found"


def describe_shortfall(price: Decimal, balance: Optional[Decimal]) -> Decimal:
    """
    Amount still missing to afford price, never negative.

    Examples:
        >>> describe_shortfall(Decimal("49.90"), Decimal("30.00"))
        Decimal('19.90')
    """
    return max(price - (balance or Decimal("0")), Decimal("0.00"))


class PurchaseFlow:
    """Category list, category details and the buy action."""

    async def show_categories(self, ctx: FlowContext, page: int = 0) -> None:
        """Send one page of active categories, with a next-page row when more remain."""
        result = await ctx.services.catalog.list_categories(
            ctx.owner.id, page=page, page_size=settings.category_page_size
        )
        if not result.categories:
            await ctx.send_text("Nenhuma categoria disponível no momento. Volte mais tarde!")
            await send_customer_main_menu(ctx)
            return

        rows = [
            ListRow(
                id=encode_category(category.id),
                title=category.name,
                description=format_currency(category.price_cents),
            )
            for category in result.categories
        ]
        if result.next_page is not None:
            rows.append(
                ListRow(
                    id=encode_category_page(result.next_page),
                    title="Próxima página",
                    description="Ver mais categorias",
                )
            )

        await ctx.messenger.send_list(
            ctx.sender,
            "Selecione uma categoria para ver os detalhes.",
            "Ver categorias",
            [ListSection(title=f"Página {result.page + 1}", rows=rows)],
            header="Categorias",
        )

    async def show_category(self, ctx: FlowContext, category_id: int) -> None:
        """Send a category's price and stock with a buy button when units remain."""
        category = await ctx.get_category(category_id, active_only=True)
        if category is None:
            await ctx.send_text("Categoria indisponível. Escolha outra opção.")
            await self.show_categories(ctx)
            return

        stock = await ctx.services.catalog.available_stock(category.id)
        lines = [f"*{category.name}*"]
        if category.description:
            lines.append(category.description)
        lines.append(f"Preço: {format_currency(category.price_cents)}")
        lines.append(f"Disponíveis: {stock}")

        if stock <= 0:
            lines.append("\nEsta categoria está esgotada no momento.")
            await ctx.send_text("\n".join(lines))
            await send_customer_main_menu(ctx, category_id=category.id)
            return

        await ctx.messenger.send_buttons(
            ctx.sender,
            "\n".join(lines),
            [
                Button(id=encode_buy(category.id), title="Comprar"),
                Button(id=ReplyKind.MENU_CATEGORIES.value, title="Categorias"),
            ],
        )

    async def buy(self, ctx: FlowContext, category_id: int) -> PurchaseOutcome:
        """
        Run the purchase transaction for one unit of a category.

        Steps: pick the least recently updated unit, reserve it, debit the
        price, record the sale, deliver the product and notify the owner.
        Whatever happens the customer ends at the main menu.

        Args:
            ctx: Current delivery; ctx.customer must be set
            category_id: Category to buy from

        Returns:
            PurchaseOutcome
        """
        outcome = await self._buy(ctx, category_id)
        logger.info(
            "Purchase attempt finished",
            extra={"owner_id": ctx.owner.id, "category_id": category_id, "outcome": outcome.value},
        )
        await send_customer_main_menu(ctx, category_id=category_id)
        return outcome

    async def _buy(self, ctx: FlowContext, category_id: int) -> PurchaseOutcome:
        services = ctx.services
        customer = ctx.customer

        category = await ctx.get_category(category_id, active_only=True)
        if category is None or category.price_cents <= 0:
            await ctx.send_text("Categoria indisponível para compra no momento.")
            return PurchaseOutcome.CATEGORY_UNAVAILABLE

        if customer is None:
            await ctx.send_text("Não encontramos seu cadastro. Envie uma mensagem e tente novamente.")
            return PurchaseOutcome.CUSTOMER_NOT_FOUND

        product = await services.inventory.find_available_product(ctx.owner.id, category.id)
        if product is None:
            await ctx.send_text(f"😕 {category.name} está esgotada no momento.")
            return PurchaseOutcome.OUT_OF_STOCK

        reservation = await services.inventory.reserve(product.id)
        if not reservation.reserved:
            # Another buyer took the last unit between lookup and reservation
            await ctx.send_text(f"😕 {category.name} acabou de esgotar.")
            return PurchaseOutcome.OUT_OF_STOCK

        price = from_cents(category.price_cents)
        try:
            result = await services.ledger.debit(customer.id, price)
        except SQLAlchemyError:
            await services.inventory.release(product.id)
            raise

        if isinstance(result, DebitFailure):
            await services.inventory.release(product.id)
            return await self._report_debit_failure(ctx, category, result)

        try:
            await services.purchases.record_purchase(
                customer, category, product, result.new_balance, metadata={"sku": category.sku}
            )
        except SQLAlchemyError:
            # Undo both sides so no sale exists without its record
            try:
                await services.ledger.credit(customer.id, price)
            finally:
                await services.inventory.release(product.id)
            raise

        customer.balance_cents = to_cents(result.new_balance)
        await ctx.send_text(
            f"✅ Compra concluída: {category.name}\n"
            f"Valor: {format_currency(price)}\n"
            f"Saldo atual: {format_currency(result.new_balance)}"
        )
        await self._deliver(ctx, category, product)
        await services.notifier.notify_purchase(
            ctx.owner, customer, category, product, result.new_balance
        )
        return PurchaseOutcome.COMPLETED

    async def _report_debit_failure(
        self, ctx: FlowContext, category: Category, failure: DebitFailure
    ) -> PurchaseOutcome:
        if failure.reason is DebitFailureReason.BLOCKED:
            await ctx.send_text(
                "🚫 Sua conta está bloqueada para compras. Fale com o suporte para mais informações."
            )
            return PurchaseOutcome.BLOCKED

        if failure.reason is DebitFailureReason.NOT_FOUND:
            await ctx.send_text("Não encontramos seu cadastro. Envie uma mensagem e tente novamente.")
            return PurchaseOutcome.CUSTOMER_NOT_FOUND

        price = from_cents(category.price_cents)
        shortfall = describe_shortfall(price, failure.current_balance)
        await ctx.send_text(
            "💸 Saldo insuficiente.\n"
            f"Preço: {format_currency(price)}\n"
            f"Seu saldo: {format_currency(failure.current_balance or from_cents(0))}\n"
            f"Faltam: {format_currency(shortfall)}\n\n"
            "Use *Adicionar saldo* no menu para recarregar."
        )
        return PurchaseOutcome.INSUFFICIENT_BALANCE

    async def _deliver(self, ctx: FlowContext, category: Category, product: Product) -> None:
        caption = product.details or category.name
        if product.file_path:
            delivered = await ctx.messenger.send_file(ctx.sender, product.file_path, caption=caption)
        else:
            delivered = await ctx.send_text(f"📦 Seu produto:\n{caption}")

        if not delivered:
            logger.warning(
                "Product delivery message not sent",
                extra={"owner_id": ctx.owner.id, "product_id": product.id},
            )
