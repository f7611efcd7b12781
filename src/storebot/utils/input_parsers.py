"""
Parsers for free-text answers typed by merchants in the admin bot.

Every parser returns None when the input cannot be used, so the caller can
re-prompt without raising. Money values are Decimals rounded to cents.
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from ..config import settings

CENTS = Decimal("0.01")

# Largest amount accepted from typed input; its cents fit a 64-bit column
MAX_AMOUNT = Decimal("1000000000")

# Leading decimal number, the way a lenient float parser reads it
_LEADING_NUMBER = re.compile(r"^(\d+(?:\.\d*)?|\.\d+)")
_WHITESPACE = re.compile(r"\s+")
_PRICE_CHARS = re.compile(r"[^0-9.,]")
_SKU_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def quantize_cents(value: Decimal) -> Decimal:
    """Round a Decimal to two places, half away from zero."""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal) -> int:
    """Convert a currency Decimal to integer cents."""
    return int(quantize_cents(value) * 100)


def from_cents(cents: int) -> Decimal:
    """Convert integer cents to a currency Decimal."""
    return quantize_cents(Decimal(cents) / 100)


def format_currency(amount: Decimal | int, symbol: Optional[str] = None) -> str:
    """
    Format an amount for display in chat messages.

    Args:
        amount: Decimal amount, or int cents
        symbol: Currency symbol (defaults to settings.currency_symbol)

    Examples:
        >>> format_currency(Decimal("19.9"))
        'R$ 19.90'
        >>> format_currency(2500)
        'R$ 25.00'
    """
    if isinstance(amount, int):
        amount = from_cents(amount)
    return f"{symbol or settings.currency_symbol} {quantize_cents(amount):.2f}"


def _leading_decimal(value: str) -> Optional[Decimal]:
    match = _LEADING_NUMBER.match(value)
    if not match:
        return None
    try:
        return Decimal(match.group(1))
    except InvalidOperation:
        return None


def sanitize_name_input(value: Optional[str], max_length: Optional[int] = None) -> Optional[str]:
    """
    Collapse whitespace, trim, require two characters and truncate.

    Examples:
        >>> sanitize_name_input("  Gift   cards  ")
        'Gift cards'
        >>> sanitize_name_input(" a ") is None
        True
    """
    if value is None:
        return None

    collapsed = _WHITESPACE.sub(" ", value).strip()
    if len(collapsed) < 2:
        return None
    return collapsed[: max_length or settings.name_max_length]


def parse_price_input(value: Optional[str]) -> Optional[Decimal]:
    """
    Parse a price typed with either comma or dot as decimal separator.

    Only digits and separators are kept. When more than one separator
    remains, the last one is the decimal point and the others are grouping.
    The result is clamped to zero and rounded to cents. Amounts above
    MAX_AMOUNT are rejected.

    Examples:
        >>> parse_price_input("R$ 49,90")
        Decimal('49.90')
        >>> parse_price_input("1.234,5")
        Decimal('1234.50')
        >>> parse_price_input("abc") is None
        True
    """
    if value is None:
        return None

    cleaned = _PRICE_CHARS.sub("", value).replace(",", ".")
    if not cleaned:
        return None

    parts = cleaned.split(".")
    if len(parts) > 2:
        cleaned = f"{''.join(parts[:-1])}.{parts[-1]}"

    parsed = _leading_decimal(cleaned)
    if parsed is None or parsed > MAX_AMOUNT:
        return None

    return quantize_cents(max(parsed, Decimal("0")))


def sanitize_sku_input(value: Optional[str], max_length: Optional[int] = None) -> Optional[str]:
    """
    Reduce a SKU to [A-Z0-9_-], uppercased and truncated.

    Examples:
        >>> sanitize_sku_input(" gift-card 10 ")
        'GIFT-CARD10'
        >>> sanitize_sku_input("***") is None
        True
    """
    if value is None:
        return None

    cleaned = _SKU_CHARS.sub("", value.strip()).upper()
    if not cleaned:
        return None
    return cleaned[: max_length or settings.sku_max_length]


def parse_balance_delta_input(value: Optional[str]) -> Optional[Decimal]:
    """
    Parse a signed balance adjustment.

    A leading "+" or "-" sets the sign, no sign means a credit. Commas are
    accepted as decimal separators and whitespace is ignored. Magnitudes
    above MAX_AMOUNT are rejected.

    Examples:
        >>> parse_balance_delta_input("-10,5")
        Decimal('-10.50')
        >>> parse_balance_delta_input("25")
        Decimal('25.00')
        >>> parse_balance_delta_input("-") is None
        True
    """
    if value is None:
        return None

    normalized = _WHITESPACE.sub("", value.strip().replace(",", "."))
    if not normalized:
        return None

    sign = normalized[0]
    has_sign = sign in "+-"
    numeric = normalized[1:] if has_sign else normalized
    if not numeric:
        return None

    parsed = _leading_decimal(numeric)
    if parsed is None or parsed > MAX_AMOUNT:
        return None

    if has_sign and sign == "-":
        parsed = -parsed
    return quantize_cents(parsed)
