"""
Reply-ID codec for interactive button and list replies.

Every button or list row the bots send carries an id built here. When the
user taps it, WhatsApp echoes the id back and decode_reply_id() turns it
into a typed DecodedReply before any routing happens. Decoding never raises:
an id that matches no known shape decodes to None.

Id shapes (all prefixes disjoint once parsed):

    menu_categories | menu_add_balance | menu_support | support_finish
    category_{id} | category_next_{page} | buy_{id}
    payment_{provider} | addbal_{provider}_{amount_cents}

    admin_menu_* | admin_panel_* | admin_category_action_* | ...
    admin_category_{id} | admin_category_next_{page}
    admin_category_{mode}_{id} | admin_category_{mode}_next_{page}
"""

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..schemas import PaymentProvider


class ReplyKind(str, Enum):
    """Every action a reply id can encode."""

    # Customer bot
    MENU_CATEGORIES = "menu_categories"
    MENU_ADD_BALANCE = "menu_add_balance"
    MENU_SUPPORT = "menu_support"
    SUPPORT_FINISH = "support_finish"
    CATEGORY = "category"
    CATEGORY_PAGE = "category_page"
    BUY = "buy"
    PAYMENT_METHOD = "payment_method"
    ADD_BALANCE_AMOUNT = "add_balance_amount"

    # Admin bot: menus
    ADMIN_MENU_PANEL = "admin_menu_panel"
    ADMIN_MENU_SUPPORT = "admin_menu_support"
    ADMIN_PANEL_CATEGORIES = "admin_panel_categories"
    ADMIN_PANEL_CUSTOMERS = "admin_panel_customers"
    ADMIN_PANEL_BACK = "admin_panel_back"
    ADMIN_FLOW_CANCEL = "admin_flow_cancel"

    # Admin bot: categories
    ADMIN_CATEGORY_ACTION_LIST = "admin_category_action_list"
    ADMIN_CATEGORY_ACTION_RENAME = "admin_category_action_rename"
    ADMIN_CATEGORY_ACTION_PRICE = "admin_category_action_price"
    ADMIN_CATEGORY_ACTION_SKU = "admin_category_action_sku"
    ADMIN_CATEGORY_ACTION_BACK = "admin_category_action_back"
    ADMIN_CATEGORY_LIST_BACK = "admin_category_list_back"
    ADMIN_CATEGORY_BACK_ACTIONS = "admin_category_back_actions"
    ADMIN_CATEGORY_ROW = "admin_category_row"
    ADMIN_CATEGORY_PAGE = "admin_category_page"
    ADMIN_CATEGORY_SELECT = "admin_category_select"
    ADMIN_CATEGORY_SELECT_PAGE = "admin_category_select_page"

    # Admin bot: customers
    ADMIN_CUSTOMER_ACTION_LIST = "admin_customer_action_list"
    ADMIN_CUSTOMER_ACTION_EDIT = "admin_customer_action_edit"
    ADMIN_CUSTOMER_ACTION_BACK = "admin_customer_action_back"
    ADMIN_CUSTOMER_EDIT_BALANCE = "admin_customer_edit_balance"
    ADMIN_CUSTOMER_EDIT_NAME = "admin_customer_edit_name"
    ADMIN_CUSTOMER_EDIT_TOGGLE_BLOCK = "admin_customer_edit_toggle_block"
    ADMIN_CUSTOMER_EDIT_BACK = "admin_customer_edit_back"
    ADMIN_CUSTOMER_BACK_ACTIONS = "admin_customer_back_actions"


class CategoryEditMode(str, Enum):
    """Which category attribute an admin selection list is for."""

    RENAME = "rename"
    PRICE = "price"
    SKU = "sku"


class DecodedReply(BaseModel):
    """Typed result of decoding a reply id."""

    model_config = ConfigDict(frozen=True)

    kind: ReplyKind
    entity_id: Optional[int] = None
    page: Optional[int] = None
    provider: Optional[PaymentProvider] = None
    amount_cents: Optional[int] = None
    mode: Optional[CategoryEditMode] = None


# Ids whose whole value is the action. Enum values double as the wire id.
_CONSTANT_KINDS = {
    kind.value: kind
    for kind in ReplyKind
    if kind
    not in (
        ReplyKind.CATEGORY,
        ReplyKind.CATEGORY_PAGE,
        ReplyKind.BUY,
        ReplyKind.PAYMENT_METHOD,
        ReplyKind.ADD_BALANCE_AMOUNT,
        ReplyKind.ADMIN_CATEGORY_ROW,
        ReplyKind.ADMIN_CATEGORY_PAGE,
        ReplyKind.ADMIN_CATEGORY_SELECT,
        ReplyKind.ADMIN_CATEGORY_SELECT_PAGE,
    )
}

CATEGORY_PREFIX = "category_"
CATEGORY_NEXT_PREFIX = "category_next_"
BUY_PREFIX = "buy_"
PAYMENT_PREFIX = "payment_"
ADD_BALANCE_PREFIX = "addbal_"
ADMIN_CATEGORY_PREFIX = "admin_category_"
ADMIN_CATEGORY_NEXT_PREFIX = "admin_category_next_"

_NON_NEGATIVE_INT = re.compile(r"^\d{1,18}$")


def _parse_int(value: str) -> Optional[int]:
    if not _NON_NEGATIVE_INT.match(value):
        return None
    return int(value)


def _parse_provider(value: str) -> Optional[PaymentProvider]:
    try:
        return PaymentProvider(value)
    except ValueError:
        return None


def _require_non_negative(value: int, label: str) -> int:
    if value < 0:
        raise ValueError(f"{label} must be a non-negative integer, got {value}")
    return value


# Encoders


def encode_category(category_id: int) -> str:
    return f"{CATEGORY_PREFIX}{_require_non_negative(category_id, 'category_id')}"


def encode_category_page(page: int) -> str:
    return f"{CATEGORY_NEXT_PREFIX}{_require_non_negative(page, 'page')}"


def encode_buy(category_id: int) -> str:
    return f"{BUY_PREFIX}{_require_non_negative(category_id, 'category_id')}"


def encode_payment_method(provider: PaymentProvider) -> str:
    return f"{PAYMENT_PREFIX}{PaymentProvider(provider).value}"


def encode_add_balance_amount(provider: PaymentProvider, amount_cents: int) -> str:
    """Encode a top-up tier as addbal_{provider}_{amount_cents}."""
    cents = _require_non_negative(amount_cents, "amount_cents")
    return f"{ADD_BALANCE_PREFIX}{PaymentProvider(provider).value}_{cents}"


def encode_admin_category_row(category_id: int) -> str:
    return f"{ADMIN_CATEGORY_PREFIX}{_require_non_negative(category_id, 'category_id')}"


def encode_admin_category_page(page: int) -> str:
    return f"{ADMIN_CATEGORY_NEXT_PREFIX}{_require_non_negative(page, 'page')}"


def encode_admin_category_select(mode: CategoryEditMode, category_id: int) -> str:
    category_id = _require_non_negative(category_id, "category_id")
    return f"{ADMIN_CATEGORY_PREFIX}{CategoryEditMode(mode).value}_{category_id}"


def encode_admin_category_select_page(mode: CategoryEditMode, page: int) -> str:
    page = _require_non_negative(page, "page")
    return f"{ADMIN_CATEGORY_PREFIX}{CategoryEditMode(mode).value}_next_{page}"


# Decoder


def _decode_admin_category(remainder: str) -> Optional[DecodedReply]:
    """Decode what follows "admin_category_"."""
    for mode in CategoryEditMode:
        mode_prefix = f"{mode.value}_"
        if not remainder.startswith(mode_prefix):
            continue
        rest = remainder[len(mode_prefix):]
        if rest.startswith("next_"):
            page = _parse_int(rest[len("next_"):])
            if page is not None:
                return DecodedReply(
                    kind=ReplyKind.ADMIN_CATEGORY_SELECT_PAGE, page=page, mode=mode
                )
            return None
        category_id = _parse_int(rest)
        if category_id is not None:
            return DecodedReply(
                kind=ReplyKind.ADMIN_CATEGORY_SELECT, entity_id=category_id, mode=mode
            )
        return None

    if remainder.startswith("next_"):
        page = _parse_int(remainder[len("next_"):])
        if page is not None:
            return DecodedReply(kind=ReplyKind.ADMIN_CATEGORY_PAGE, page=page)
        return None

    category_id = _parse_int(remainder)
    if category_id is not None:
        return DecodedReply(kind=ReplyKind.ADMIN_CATEGORY_ROW, entity_id=category_id)
    return None


def _decode_add_balance(remainder: str) -> Optional[DecodedReply]:
    """Decode "{provider}_{amount_cents}"; the provider may contain underscores."""
    provider_part, separator, amount_part = remainder.rpartition("_")
    if not separator:
        return None
    provider = _parse_provider(provider_part)
    amount_cents = _parse_int(amount_part)
    if provider is None or amount_cents is None:
        return None
    return DecodedReply(
        kind=ReplyKind.ADD_BALANCE_AMOUNT, provider=provider, amount_cents=amount_cents
    )


def decode_reply_id(token: Optional[str]) -> Optional[DecodedReply]:
    """
    Decode a reply id into a DecodedReply.

    Constant ids are looked up first, then prefixes are tried from the most
    specific to the least specific so "category_next_2" is never read as a
    category row.

    Args:
        token: Raw id from a button or list reply

    Returns:
        DecodedReply, or None when the id matches no known shape
    """
    if not token:
        return None

    token = token.strip()
    constant = _CONSTANT_KINDS.get(token)
    if constant is not None:
        return DecodedReply(kind=constant)

    if token.startswith(ADMIN_CATEGORY_PREFIX):
        return _decode_admin_category(token[len(ADMIN_CATEGORY_PREFIX):])

    if token.startswith(CATEGORY_NEXT_PREFIX):
        page = _parse_int(token[len(CATEGORY_NEXT_PREFIX):])
        return DecodedReply(kind=ReplyKind.CATEGORY_PAGE, page=page) if page is not None else None

    if token.startswith(CATEGORY_PREFIX):
        category_id = _parse_int(token[len(CATEGORY_PREFIX):])
        if category_id is None:
            return None
        return DecodedReply(kind=ReplyKind.CATEGORY, entity_id=category_id)

    if token.startswith(BUY_PREFIX):
        category_id = _parse_int(token[len(BUY_PREFIX):])
        return DecodedReply(kind=ReplyKind.BUY, entity_id=category_id) if category_id is not None else None

    if token.startswith(ADD_BALANCE_PREFIX):
        return _decode_add_balance(token[len(ADD_BALANCE_PREFIX):])

    if token.startswith(PAYMENT_PREFIX):
        provider = _parse_provider(token[len(PAYMENT_PREFIX):])
        return DecodedReply(kind=ReplyKind.PAYMENT_METHOD, provider=provider) if provider else None

    return None
