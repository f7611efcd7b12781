"""
Webhook event normalizer.

Turns a raw WhatsApp Cloud API webhook payload into a canonical
InboundMessage. The walk mirrors the payload shape:
payload['entry'][i]['changes'][j]['value']['messages'][k]. Status receipts,
echoes of the bot's own number, and system/unknown messages yield None.
This module has no side effects and never raises on malformed payloads.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from ..schemas import InboundMessage, MediaRef, MessageType
from ..utils.logging import get_logger
from ..utils.phone import normalize_whatsapp_id

logger = get_logger(__name__)

IGNORED_TYPES = frozenset({"system", "unknown"})
MEDIA_TYPES = frozenset({"image", "document", "audio", "video", "sticker"})


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _clean_str(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _find_message_value(payload: dict[str, Any]) -> Optional[dict[str, Any]]:
    """Return the first change value that carries a message with a sender."""
    for entry in _as_list(payload.get("entry")):
        for change in _as_list(_as_dict(entry).get("changes")):
            change = _as_dict(change)
            field = change.get("field")
            if field and field != "messages":
                continue
            value = _as_dict(change.get("value"))
            for message in _as_list(value.get("messages")):
                if isinstance(_as_dict(message).get("from"), str):
                    return value
    return None


def _first_message_with_sender(value: dict[str, Any]) -> dict[str, Any]:
    for message in _as_list(value.get("messages")):
        message = _as_dict(message)
        if isinstance(message.get("from"), str):
            return message
    return {}


def _resolve_contact_name(value: dict[str, Any], wa_id: str) -> Optional[str]:
    for contact in _as_list(value.get("contacts")):
        contact = _as_dict(contact)
        if normalize_whatsapp_id(_clean_str(contact.get("wa_id"))) == wa_id:
            return _clean_str(_as_dict(contact.get("profile")).get("name"))
    return None


def _parse_timestamp(raw: Any) -> Optional[datetime]:
    """WhatsApp sends epoch seconds as a string."""
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _message_type(raw: Any) -> MessageType:
    try:
        return MessageType(raw)
    except ValueError:
        return MessageType.UNKNOWN


def _extract_interactive(message: dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    """
    Return (reply_id, title) for an interactive reply.

    A list reply wins over a button reply when both are present.
    """
    interactive = _as_dict(message.get("interactive"))
    list_reply = _as_dict(interactive.get("list_reply"))
    button_reply = _as_dict(interactive.get("button_reply"))

    list_id = _clean_str(list_reply.get("id"))
    if list_id:
        return list_id, _clean_str(list_reply.get("title"))

    button_id = _clean_str(button_reply.get("id")) or _clean_str(button_reply.get("payload"))
    if button_id:
        return button_id, _clean_str(button_reply.get("title"))

    title = _clean_str(list_reply.get("title")) or _clean_str(button_reply.get("title"))
    return None, title


def _extract_media(message: dict[str, Any], message_type: MessageType) -> Optional[MediaRef]:
    media = _as_dict(message.get(message_type.value))
    if not media:
        return None
    return MediaRef(
        media_id=_clean_str(media.get("id")),
        mime_type=_clean_str(media.get("mime_type")),
        filename=_clean_str(media.get("filename")),
        caption=_clean_str(media.get("caption")),
        sha256=_clean_str(media.get("sha256")),
    )


def parse_incoming_message(
    payload: Any, bot_phone_number_id: Optional[str] = None
) -> Optional[InboundMessage]:
    """
    Parse a webhook payload into an InboundMessage.

    Args:
        payload: Decoded JSON body of one webhook delivery
        bot_phone_number_id: The receiving number's id; messages whose sender
            equals it are echoes and are ignored

    Returns:
        InboundMessage, or None when the delivery holds nothing actionable
    """
    try:
        if not isinstance(payload, dict):
            logger.debug("Webhook payload is not an object")
            return None

        value = _find_message_value(payload)
        if value is None:
            logger.debug(
                "No message in webhook payload - likely a status update",
                extra={"payload_keys": list(payload.keys())},
            )
            return None

        message = _first_message_with_sender(value)
        sender = normalize_whatsapp_id(message.get("from"))
        if not sender:
            logger.debug("Message sender has no digits")
            return None

        own_ids = {
            normalize_whatsapp_id(_clean_str(bot_phone_number_id)),
            normalize_whatsapp_id(_clean_str(_as_dict(value.get("metadata")).get("phone_number_id"))),
            normalize_whatsapp_id(
                _clean_str(_as_dict(value.get("metadata")).get("display_phone_number"))
            ),
        }
        own_ids.discard(None)
        if sender in own_ids:
            logger.debug("Ignoring message sent by the bot's own number")
            return None

        raw_type = message.get("type")
        if not isinstance(raw_type, str) or raw_type in IGNORED_TYPES:
            logger.debug("Ignoring message type", extra={"message_type": raw_type})
            return None

        message_type = _message_type(raw_type)
        if message_type is MessageType.UNKNOWN:
            logger.info(
                "Unsupported message type", extra={"message_type": raw_type}
            )

        text: Optional[str] = None
        reply_id: Optional[str] = None
        media_ref: Optional[MediaRef] = None

        if message_type is MessageType.TEXT:
            text = _clean_str(_as_dict(message.get("text")).get("body"))
        elif message_type is MessageType.INTERACTIVE:
            reply_id, text = _extract_interactive(message)
        elif message_type is MessageType.BUTTON:
            button = _as_dict(message.get("button"))
            reply_id = _clean_str(button.get("payload")) or _clean_str(button.get("text"))
            text = _clean_str(button.get("text"))
        elif message_type.value in MEDIA_TYPES:
            media_ref = _extract_media(message, message_type)
            text = media_ref.caption if media_ref else None

        inbound = InboundMessage(
            sender_id=sender,
            type=message_type,
            text=text,
            structured_reply_id=reply_id,
            media_ref=media_ref,
            provider_timestamp=_parse_timestamp(message.get("timestamp")),
            message_id=_clean_str(message.get("id")),
            contact_name=_resolve_contact_name(value, sender),
        )

        logger.debug(
            "Webhook message normalized",
            extra={
                "message_type": inbound.type.value,
                "has_reply_id": inbound.structured_reply_id is not None,
                "has_media": inbound.media_ref is not None,
            },
        )
        return inbound

    except (KeyError, IndexError, TypeError, ValueError) as e:
        logger.warning(
            "Failed to normalize webhook payload",
            extra={"error_type": type(e).__name__},
        )
        return None
