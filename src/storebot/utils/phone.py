"""
Phone number and WhatsApp id normalization.

WhatsApp ids are the sender's international number as bare digits
(e.g. 5511987654321). Merchants type customer numbers in whatever format
they like, so lookups try both the digits as typed and the E.164 form that
libphonenumbers derives using Brazil as the default region.
"""

import re
from typing import Optional

import phonenumbers
from phonenumbers import NumberParseException

# Default region for numbers typed without a country code
DEFAULT_REGION = "BR"

_NON_DIGITS = re.compile(r"\D+")


def digits_only(value: Optional[str]) -> str:
    """Strip everything except ASCII digits."""
    if not value:
        return ""
    return _NON_DIGITS.sub("", value)


def normalize_whatsapp_id(value: Optional[str]) -> Optional[str]:
    """
    Normalize a WhatsApp sender id to bare digits.

    Args:
        value: Raw id from the webhook ("5511987654321", "+55 11 ...")

    Returns:
        Digits-only id, or None if no digits remain
    """
    digits = digits_only(value)
    return digits or None


def normalize_customer_phone_input(value: Optional[str]) -> Optional[str]:
    """
    Normalize a phone number typed by a merchant.

    Keeps digits only and preserves a leading "+" when one was typed.

    Examples:
        >>> normalize_customer_phone_input(" +55 (11) 98765-4321 ")
        '+5511987654321'
        >>> normalize_customer_phone_input("11 98765 4321")
        '11987654321'
        >>> normalize_customer_phone_input("abc") is None
        True
    """
    if value is None:
        return None

    trimmed = value.strip()
    digits = digits_only(trimmed)
    if not digits:
        return None

    return f"+{digits}" if trimmed.startswith("+") else digits


def to_e164_digits(value: str, region: Optional[str] = None) -> Optional[str]:
    """
    Parse a number with libphonenumbers and return its E.164 digits.

    Args:
        value: Number as typed, with or without "+"
        region: Region hint for numbers without a country code (default BR)

    Returns:
        E.164 digits without "+", or None when the number is not valid
    """
    try:
        parsed = phonenumbers.parse(value, region or DEFAULT_REGION)
    except NumberParseException:
        return None

    if not phonenumbers.is_valid_number(parsed):
        return None

    formatted = phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
    return formatted.lstrip("+")


def phone_lookup_keys(value: Optional[str]) -> list[str]:
    """
    Candidate WhatsApp ids for a merchant-typed customer number.

    Returns the typed digits first, then the E.164 digits when libphonenumbers
    can parse the number and they differ.

    Examples:
        >>> phone_lookup_keys("(11) 98765-4321")
        ['11987654321', '5511987654321']
    """
    normalized = normalize_customer_phone_input(value)
    if not normalized:
        return []

    keys = [normalized.lstrip("+")]
    international = to_e164_digits(normalized)
    if international and international not in keys:
        keys.append(international)
    return keys
