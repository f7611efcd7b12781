"""
Menus sent by the customer and admin bots.

Only composition lives here; every message goes out through the context's
WhatsApp client.
"""

import re
from typing import Optional

from ..models import Category, Customer
from ..utils.input_parsers import format_currency
from .flow_context import FlowContext
from .reply_ids import ReplyKind
from .whatsapp import Button, ListRow, ListSection

DEFAULT_MENU_TEXT = "Olá {{nome_cliente}}! 👋\n\nConfira nosso menu principal:"

CANCEL_BUTTON = Button(id=ReplyKind.ADMIN_FLOW_CANCEL.value, title="Cancelar")


def render_menu_text(
    template: Optional[str],
    customer_name: Optional[str] = None,
    customer_number: Optional[str] = None,
    category_id: Optional[int] = None,
) -> str:
    """
    Fill the menu placeholders, case-insensitively.

    Examples:
        >>> render_menu_text("Oi {{NOME_CLIENTE}}", customer_name=None)
        'Oi Cliente'
    """
    text = (template or DEFAULT_MENU_TEXT).strip() or DEFAULT_MENU_TEXT
    replacements = {
        "{{nome_cliente}}": (customer_name or "").strip() or "Cliente",
        "{{numero_cliente}}": (customer_number or "").strip(),
        "{{id_categoria}}": str(category_id) if category_id is not None else "",
    }
    for token, value in replacements.items():
        # Replacement via callable so backslashes in names are kept literally
        text = re.sub(re.escape(token), lambda _match, value=value: value, text, flags=re.IGNORECASE)
    return text


# Customer bot


async def send_customer_main_menu(ctx: FlowContext, category_id: Optional[int] = None) -> None:
    customer = ctx.customer
    body = render_menu_text(
        ctx.owner.menu_text,
        customer_name=customer.name if customer else ctx.message.contact_name,
        customer_number=ctx.sender,
        category_id=category_id,
    )
    if customer is not None:
        body += f"\n\n💰 Saldo: {format_currency(customer.balance_cents)}"

    await ctx.messenger.send_buttons(
        ctx.sender,
        body,
        [
            Button(id=ReplyKind.MENU_CATEGORIES.value, title="Categorias"),
            Button(id=ReplyKind.MENU_ADD_BALANCE.value, title="Adicionar saldo"),
            Button(id=ReplyKind.MENU_SUPPORT.value, title="Suporte"),
        ],
    )


# Admin bot


async def send_admin_main_menu(ctx: FlowContext) -> None:
    await ctx.messenger.send_buttons(
        ctx.sender,
        f"Olá, {ctx.owner.name}! 👋\nEscolha uma opção para gerenciar sua loja.",
        [
            Button(id=ReplyKind.ADMIN_MENU_PANEL.value, title="Painel"),
            Button(id=ReplyKind.ADMIN_MENU_SUPPORT.value, title="Suporte"),
        ],
        header="Painel administrativo",
    )


async def send_admin_panel_menu(ctx: FlowContext) -> None:
    await ctx.messenger.send_list(
        ctx.sender,
        "Escolha o que deseja gerenciar agora.",
        "Abrir painel",
        [
            ListSection(
                title="Painel",
                rows=[
                    ListRow(
                        id=ReplyKind.ADMIN_PANEL_CATEGORIES.value,
                        title="Gerenciar categorias",
                        description="Atualize nomes, valores e SKUs.",
                    ),
                    ListRow(
                        id=ReplyKind.ADMIN_PANEL_CUSTOMERS.value,
                        title="Gerenciar clientes",
                        description="Consulte e organize seus clientes.",
                    ),
                    ListRow(
                        id=ReplyKind.ADMIN_PANEL_BACK.value,
                        title="Voltar",
                        description="Retornar ao menu principal.",
                    ),
                ],
            )
        ],
        header="Painel administrativo",
    )


async def send_admin_category_actions_menu(ctx: FlowContext) -> None:
    await ctx.messenger.send_list(
        ctx.sender,
        "Qual ação deseja executar nas categorias?",
        "Ver ações",
        [
            ListSection(
                title="Gerenciar categorias",
                rows=[
                    ListRow(
                        id=ReplyKind.ADMIN_CATEGORY_ACTION_LIST.value,
                        title="Listar categorias",
                        description="Visualize suas categorias atuais.",
                    ),
                    ListRow(
                        id=ReplyKind.ADMIN_CATEGORY_ACTION_RENAME.value,
                        title="Alterar nome",
                        description="Atualize o nome de uma categoria.",
                    ),
                    ListRow(
                        id=ReplyKind.ADMIN_CATEGORY_ACTION_PRICE.value,
                        title="Alterar valor",
                        description="Defina um novo preço padrão.",
                    ),
                    ListRow(
                        id=ReplyKind.ADMIN_CATEGORY_ACTION_SKU.value,
                        title="Alterar SKU",
                        description="Edite o SKU vinculado.",
                    ),
                    ListRow(
                        id=ReplyKind.ADMIN_CATEGORY_ACTION_BACK.value,
                        title="Voltar",
                        description="Retornar ao painel administrativo.",
                    ),
                ],
            )
        ],
        header="Categorias",
    )


async def send_admin_customer_actions_menu(ctx: FlowContext) -> None:
    await ctx.messenger.send_list(
        ctx.sender,
        "Escolha o que deseja fazer com os clientes.",
        "Ver ações",
        [
            ListSection(
                title="Gerenciar clientes",
                rows=[
                    ListRow(
                        id=ReplyKind.ADMIN_CUSTOMER_ACTION_LIST.value,
                        title="Listar clientes",
                        description="Veja os clientes mais recentes.",
                    ),
                    ListRow(
                        id=ReplyKind.ADMIN_CUSTOMER_ACTION_EDIT.value,
                        title="Editar cliente",
                        description="Alterar saldo, nome ou status de um cliente.",
                    ),
                    ListRow(
                        id=ReplyKind.ADMIN_CUSTOMER_ACTION_BACK.value,
                        title="Voltar",
                        description="Retornar ao painel administrativo.",
                    ),
                ],
            )
        ],
        header="Clientes",
    )


def category_summary_lines(category: Category, stock: Optional[int] = None) -> list[str]:
    lines = [
        f"Categoria: {category.name}",
        f"Status: {'Ativa' if category.is_active else 'Inativa'}",
        f"Preço padrão: {format_currency(category.price_cents)}",
        f"SKU: {category.sku or '-'}",
    ]
    if stock is not None:
        lines.append(f"Unidades em estoque: {stock}")
    return lines


def customer_summary_lines(customer: Customer) -> list[str]:
    last = customer.last_interaction_at
    return [
        f"Cliente: {customer.name or customer.phone or customer.whatsapp_id}",
        f"Telefone: {customer.phone or customer.whatsapp_id}",
        f"Saldo: {format_currency(customer.balance_cents)}",
        f"Status: {'Banido' if customer.is_blocked else 'Ativo'}",
        f"Última interação: {last.strftime('%d/%m/%Y %H:%M') if last else '-'}",
    ]


async def send_admin_customer_edit_menu(
    ctx: FlowContext, customer: Customer, notice: Optional[str] = None
) -> None:
    lines = customer_summary_lines(customer)
    if notice:
        lines = [notice, ""] + lines

    await ctx.messenger.send_list(
        ctx.sender,
        "\n".join(lines),
        "Ver opções",
        [
            ListSection(
                title="Ações disponíveis",
                rows=[
                    ListRow(
                        id=ReplyKind.ADMIN_CUSTOMER_EDIT_BALANCE.value,
                        title="Ajustar saldo",
                        description="Use formatos +10 ou -5 para aplicar o ajuste.",
                    ),
                    ListRow(
                        id=ReplyKind.ADMIN_CUSTOMER_EDIT_NAME.value,
                        title="Alterar nome",
                        description="Defina um novo nome de exibição.",
                    ),
                    ListRow(
                        id=ReplyKind.ADMIN_CUSTOMER_EDIT_TOGGLE_BLOCK.value,
                        title="Desbanir cliente" if customer.is_blocked else "Banir cliente",
                        description="Alterna o bloqueio de compras e ajustes.",
                    ),
                    ListRow(
                        id=ReplyKind.ADMIN_CUSTOMER_EDIT_BACK.value,
                        title="Voltar",
                        description="Retornar ao menu de clientes.",
                    ),
                ],
            )
        ],
        header="Editar cliente",
    )


async def send_admin_unknown_option(ctx: FlowContext) -> None:
    await ctx.send_text("Opção não reconhecida. Use os botões do menu para continuar.")
