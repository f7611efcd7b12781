"""
Admin bot: category listing and the rename, price and SKU edits.

Choosing a category from a selection list sets the matching Awaiting*
pending flow; the merchant's next free-text message is parsed as the new
value. Unparseable answers keep the pending flow and resend the prompt.
"""

from typing import Optional, Union

from ..config import settings
from ..exceptions import CategoryNotFound
from ..models import Category
from ..schemas import AwaitingCategoryPrice, AwaitingCategoryRename, AwaitingCategorySku
from ..utils.input_parsers import (
    format_currency,
    parse_price_input,
    sanitize_name_input,
    sanitize_sku_input,
    to_cents,
)
from ..utils.logging import get_logger
from .flow_context import FlowContext
from .menus import (
    CANCEL_BUTTON,
    category_summary_lines,
    send_admin_category_actions_menu,
)
from .reply_ids import (
    CategoryEditMode,
    ReplyKind,
    encode_admin_category_page,
    encode_admin_category_row,
    encode_admin_category_select,
    encode_admin_category_select_page,
)
from .whatsapp import Button, ListRow, ListSection

logger = get_logger(__name__)

CategoryFlow = Union[AwaitingCategoryRename, AwaitingCategoryPrice, AwaitingCategorySku]

FLOW_FOR_MODE = {
    CategoryEditMode.RENAME: AwaitingCategoryRename,
    CategoryEditMode.PRICE: AwaitingCategoryPrice,
    CategoryEditMode.SKU: AwaitingCategorySku,
}

SELECTION_BODY = {
    CategoryEditMode.RENAME: "Escolha a categoria que deseja renomear.",
    CategoryEditMode.PRICE: "Selecione a categoria para definir um novo valor padrão.",
    CategoryEditMode.SKU: "Escolha a categoria para atualizar o SKU.",
}

CATEGORY_NOT_FOUND_TEXT = "Não encontramos essa categoria. Atualize a lista e tente novamente."

BACK_TO_ACTIONS_BUTTON = Button(id=ReplyKind.ADMIN_CATEGORY_BACK_ACTIONS.value, title="Voltar")


def mode_for_flow(flow: CategoryFlow) -> CategoryEditMode:
    for mode, flow_type in FLOW_FOR_MODE.items():
        if isinstance(flow, flow_type):
            return mode
    raise ValueError(f"Not a category flow: {flow!r}")


class AdminCatalogFlow:
    """Category screens and edits for the merchant."""

    async def show_actions(self, ctx: FlowContext) -> None:
        await ctx.set_flow(None, trigger="category_actions")
        await send_admin_category_actions_menu(ctx)

    async def _send_category_list(
        self,
        ctx: FlowContext,
        page: int,
        body: str,
        row_id,
        page_id,
    ) -> None:
        result = await ctx.services.catalog.list_categories(
            ctx.owner.id,
            page=page,
            page_size=settings.category_page_size - 1,
            active_only=False,
        )
        if not result.categories:
            await ctx.send_text(
                "Nenhuma categoria encontrada. Cadastre suas categorias pelo painel web para começar a vender."
            )
            await send_admin_category_actions_menu(ctx)
            return

        rows = [
            ListRow(
                id=row_id(category.id),
                title=category.name,
                description=(
                    f"{'Ativa' if category.is_active else 'Inativa'} · "
                    f"{format_currency(category.price_cents)}"
                ),
            )
            for category in result.categories
        ]
        if result.next_page is not None:
            rows.append(
                ListRow(
                    id=page_id(result.next_page),
                    title="Próxima página",
                    description="Ver mais categorias",
                )
            )
        rows.append(
            ListRow(
                id=ReplyKind.ADMIN_CATEGORY_LIST_BACK.value,
                title="Voltar",
                description="Retornar ao menu anterior.",
            )
        )

        await ctx.messenger.send_list(
            ctx.sender,
            body,
            "Ver categorias",
            [ListSection(title=f"Página {result.page + 1}", rows=rows)],
            header="Gerenciar categorias",
        )

    async def list_categories(self, ctx: FlowContext, page: int = 0) -> None:
        await self._send_category_list(
            ctx,
            page,
            "Selecione uma categoria para visualizar detalhes.",
            encode_admin_category_row,
            encode_admin_category_page,
        )

    async def show_details(self, ctx: FlowContext, category_id: int) -> None:
        category = await ctx.get_category(category_id)
        if category is None:
            await ctx.send_text(CATEGORY_NOT_FOUND_TEXT)
            await self.list_categories(ctx)
            return

        stock = await ctx.services.catalog.available_stock(category.id)
        await ctx.messenger.send_buttons(
            ctx.sender,
            "\n".join(category_summary_lines(category, stock)),
            [BACK_TO_ACTIONS_BUTTON],
            header="Resumo da categoria",
        )

    async def show_selection(self, ctx: FlowContext, mode: CategoryEditMode, page: int = 0) -> None:
        """Send the category list whose rows start an edit in the given mode."""
        await ctx.set_flow(None, trigger=f"category_{mode.value}_selection")
        await self._send_category_list(
            ctx,
            page,
            SELECTION_BODY[mode],
            lambda category_id: encode_admin_category_select(mode, category_id),
            lambda next_page: encode_admin_category_select_page(mode, next_page),
        )

    async def select(self, ctx: FlowContext, mode: CategoryEditMode, category_id: int) -> None:
        category = await ctx.get_category(category_id)
        if category is None:
            await ctx.send_text(CATEGORY_NOT_FOUND_TEXT)
            await self.show_selection(ctx, mode)
            return

        await ctx.set_flow(FLOW_FOR_MODE[mode](category_id=category.id), trigger="category_selected")
        await self._send_prompt(ctx, category, mode)

    async def _send_prompt(self, ctx: FlowContext, category: Category, mode: CategoryEditMode) -> None:
        if mode is CategoryEditMode.RENAME:
            lines = [
                f"Categoria selecionada: {category.name}",
                "Envie o novo nome (mínimo 2 caracteres).",
            ]
        elif mode is CategoryEditMode.PRICE:
            lines = [
                f"Categoria selecionada: {category.name}",
                f"Preço atual: {format_currency(category.price_cents)}",
                "Envie o novo valor. Exemplos: 49,90 ou 49.90.",
            ]
        else:
            lines = [
                f"Categoria selecionada: {category.name}",
                f"SKU atual: {category.sku or '-'}",
                "Envie o novo SKU (letras, números, hífen ou sublinhado).",
            ]
        await ctx.messenger.send_buttons(ctx.sender, "\n".join(lines), [CANCEL_BUTTON])

    async def submit(self, ctx: FlowContext, flow: CategoryFlow, text: Optional[str]) -> bool:
        """
        Apply the merchant's answer to a pending category edit.

        Args:
            ctx: Current delivery
            flow: The pending category flow
            text: Free text typed by the merchant

        Returns:
            True when the edit was applied, False when the prompt was resent
            or the category disappeared
        """
        mode = mode_for_flow(flow)
        category = await ctx.get_category(flow.category_id)
        if category is None:
            return await self._abandon(ctx)

        reason = self._validate(mode, text)
        if reason is not None:
            return await self._reject(ctx, category, mode, reason)

        catalog = ctx.services.catalog
        try:
            if mode is CategoryEditMode.RENAME:
                updated = await catalog.rename_category(ctx.owner.id, category.id, sanitize_name_input(text))
                notice = "Nome atualizado com sucesso!"
            elif mode is CategoryEditMode.PRICE:
                updated = await catalog.update_price(ctx.owner.id, category.id, to_cents(parse_price_input(text)))
                notice = "Valor atualizado com sucesso!"
            else:
                updated = await catalog.update_sku(ctx.owner.id, category.id, sanitize_sku_input(text))
                notice = "SKU atualizado com sucesso!"
        except CategoryNotFound:
            ctx.forget_category(category.id)
            return await self._abandon(ctx)

        ctx.forget_category(category.id)
        await ctx.set_flow(None, trigger=f"category_{mode.value}_saved")
        await ctx.messenger.send_buttons(
            ctx.sender,
            "\n".join([notice, ""] + category_summary_lines(updated)),
            [BACK_TO_ACTIONS_BUTTON],
            header="Resumo da categoria",
        )
        return True

    @staticmethod
    def _validate(mode: CategoryEditMode, text: Optional[str]) -> Optional[str]:
        """Return why the answer is unusable, or None when it parses."""
        if mode is CategoryEditMode.RENAME:
            if sanitize_name_input(text) is None:
                return "Informe um nome com pelo menos 2 caracteres."
        elif mode is CategoryEditMode.PRICE:
            if parse_price_input(text) is None:
                return "Não consegui entender o valor. Exemplos válidos: 49,90 ou 49.90."
        elif sanitize_sku_input(text) is None:
            return (
                "Envie um SKU usando apenas letras, números, hífen ou sublinhado "
                f"(máx. {settings.sku_max_length} caracteres)."
            )
        return None

    async def _abandon(self, ctx: FlowContext) -> bool:
        await ctx.set_flow(None, trigger="category_missing")
        await ctx.send_text("Não encontramos essa categoria. Voltando ao menu de categorias.")
        await send_admin_category_actions_menu(ctx)
        return False

    async def _reject(
        self, ctx: FlowContext, category: Category, mode: CategoryEditMode, reason: str
    ) -> bool:
        """Explain the problem and resend the same prompt; the pending flow stays."""
        logger.info(
            "Category edit input rejected",
            extra={"owner_id": ctx.owner.id, "category_id": category.id, "mode": mode.value},
        )
        await ctx.send_text(reason)
        await self._send_prompt(ctx, category, mode)
        return False
