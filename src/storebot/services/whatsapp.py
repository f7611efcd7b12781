"""
WhatsApp Cloud API messaging client.

Sends text, reply-button, list, image and document messages through the
Meta Graph API on behalf of one phone number. Network errors are retried
with exponential backoff; every other failure is logged and reported as a
False return so conversation handlers never abort on a lost message.
"""

import logging
import mimetypes
import time
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import settings
from ..utils.logging import get_logger, log_api_call

logger = get_logger(__name__)

# WhatsApp interactive message limits
MAX_BUTTONS = 3
BUTTON_TITLE_LIMIT = 20
ROW_TITLE_LIMIT = 24
ROW_DESCRIPTION_LIMIT = 72
MAX_LIST_ROWS = 10
BODY_LIMIT = 1024
TEXT_LIMIT = 4096


def truncate(value: str, limit: int) -> str:
    """Cut a string to limit characters, marking the cut with an ellipsis."""
    if len(value) <= limit:
        return value
    if limit <= 1:
        return value[:limit]
    return value[: limit - 1] + "…"


class Button(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str


class ListRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: Optional[str] = None


class ListSection(BaseModel):
    title: str
    rows: list[ListRow] = Field(default_factory=list)


def get_user_friendly_error_message(error: Exception) -> str:
    """
    Convert technical errors to a short message for the chat user.

    Never exposes technical details; unmapped errors get a generic message.

    Args:
        error: The exception that occurred

    Returns:
        A user-friendly error message string

    Examples:
        >>> get_user_friendly_error_message(httpx.ReadTimeout("timed out"))
        'Serviço temporariamente indisponível. Tente novamente em instantes.'
    """
    error_type = type(error).__name__
    error_message = str(error).lower()

    # Network and timeout errors
    if isinstance(error, httpx.TimeoutException):
        return "Serviço temporariamente indisponível. Tente novamente em instantes."

    if isinstance(error, httpx.RequestError):
        return "Problema de conexão. Tente novamente em instantes."

    # Payment provider errors
    if "circuit breaker" in error_message:
        return "O serviço de pagamento está temporariamente indisponível. Tente mais tarde."

    if error_type == "PaymentProviderError":
        return "Não foi possível gerar o pagamento. Tente novamente ou fale com o suporte."

    if "rate limit" in error_message or "too many" in error_message:
        return "Muitas solicitações. Aguarde um momento e tente novamente."

    # Database errors
    if error_type in ("OperationalError", "DBAPIError", "TimeoutError") or "database" in error_message:
        return "Sistema temporariamente indisponível. Tente novamente em breve."

    logger.warning(
        "Unmapped error type in user-friendly message helper",
        extra={"error_type": error_type},
    )
    return "Algo deu errado. Tente novamente ou fale com o suporte se o problema continuar."


def public_file_url(file_path: str) -> str:
    """Resolve a stored product file to a URL WhatsApp can download."""
    if file_path.startswith(("http://", "https://")):
        return file_path
    return f"{settings.app_base_url.rstrip('/')}/uploads/{file_path.lstrip('/')}"


def is_image_file(file_path: str) -> bool:
    mime_type, _ = mimetypes.guess_type(file_path)
    return bool(mime_type and mime_type.startswith("image/"))


class WhatsAppService:
    """
    Client for the WhatsApp Cloud API bound to one phone number.

    Args:
        phone_number_id: Sending number's Graph API id
        access_token: Bearer token for that number
    """

    def __init__(self, phone_number_id: str, access_token: str) -> None:
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.base_url = (
            f"{settings.meta_graph_base_url.rstrip('/')}/{settings.meta_api_version}"
        )

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/{self.phone_number_id}/messages"

    @retry(
        retry=retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )
    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        POST one message payload, retrying only network errors.

        Raises:
            httpx.HTTPStatusError: If the API answers with an error status
            httpx.RequestError: If the network fails after 3 attempts
        """
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        started = time.perf_counter()
        async with httpx.AsyncClient(timeout=httpx.Timeout(10.0)) as client:
            response = await client.post(self.messages_url, json=payload, headers=headers)

        log_api_call(
            service="whatsapp",
            endpoint="/messages",
            method="POST",
            status_code=response.status_code,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        response.raise_for_status()
        return response.json()

    async def _dispatch(self, to: str, message_type: str, body: dict[str, Any]) -> bool:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": message_type,
            message_type: body,
        }

        try:
            data = await self._post(payload)
        except httpx.HTTPStatusError as e:
            logger.error(
                "WhatsApp API returned error status",
                extra={
                    "status_code": e.response.status_code,
                    "message_type": message_type,
                    "response": e.response.text[:500],
                },
            )
            return False
        except httpx.HTTPError as e:
            logger.error(
                "Failed to send WhatsApp message",
                extra={"error_type": type(e).__name__, "message_type": message_type},
            )
            return False

        logger.info(
            "WhatsApp message sent",
            extra={
                "message_type": message_type,
                "message_id": (data.get("messages") or [{}])[0].get("id"),
            },
        )
        return True

    async def send_text(self, to: str, body: str) -> bool:
        """Send a plain text message."""
        return await self._dispatch(
            to, "text", {"preview_url": False, "body": truncate(body, TEXT_LIMIT)}
        )

    async def send_buttons(
        self,
        to: str,
        body: str,
        buttons: list[Button],
        header: Optional[str] = None,
        footer: Optional[str] = None,
    ) -> bool:
        """
        Send an interactive message with up to three reply buttons.

        Extra buttons beyond the WhatsApp limit are dropped.
        """
        interactive: dict[str, Any] = {
            "type": "button",
            "body": {"text": truncate(body, BODY_LIMIT)},
            "action": {
                "buttons": [
                    {
                        "type": "reply",
                        "reply": {
                            "id": button.id,
                            "title": truncate(button.title, BUTTON_TITLE_LIMIT),
                        },
                    }
                    for button in buttons[:MAX_BUTTONS]
                ]
            },
        }
        if header:
            interactive["header"] = {"type": "text", "text": truncate(header, 60)}
        if footer:
            interactive["footer"] = {"text": truncate(footer, 60)}
        return await self._dispatch(to, "interactive", interactive)

    async def send_list(
        self,
        to: str,
        body: str,
        button_label: str,
        sections: list[ListSection],
        header: Optional[str] = None,
        footer: Optional[str] = None,
    ) -> bool:
        """
        Send an interactive list message.

        Rows beyond the ten-row WhatsApp limit are dropped; empty sections
        are skipped.
        """
        remaining = MAX_LIST_ROWS
        rendered_sections = []
        for section in sections:
            rows = section.rows[:remaining]
            if not rows:
                continue
            remaining -= len(rows)
            rendered_rows = []
            for row in rows:
                rendered: dict[str, Any] = {
                    "id": row.id,
                    "title": truncate(row.title, ROW_TITLE_LIMIT),
                }
                if row.description:
                    rendered["description"] = truncate(row.description, ROW_DESCRIPTION_LIMIT)
                rendered_rows.append(rendered)
            rendered_sections.append(
                {"title": truncate(section.title, ROW_TITLE_LIMIT), "rows": rendered_rows}
            )

        interactive: dict[str, Any] = {
            "type": "list",
            "body": {"text": truncate(body, BODY_LIMIT)},
            "action": {
                "button": truncate(button_label, BUTTON_TITLE_LIMIT),
                "sections": rendered_sections,
            },
        }
        if header:
            interactive["header"] = {"type": "text", "text": truncate(header, 60)}
        if footer:
            interactive["footer"] = {"text": truncate(footer, 60)}
        return await self._dispatch(to, "interactive", interactive)

    async def send_image(self, to: str, link: str, caption: Optional[str] = None) -> bool:
        body: dict[str, Any] = {"link": link}
        if caption:
            body["caption"] = truncate(caption, BODY_LIMIT)
        return await self._dispatch(to, "image", body)

    async def send_document(
        self,
        to: str,
        link: str,
        filename: Optional[str] = None,
        caption: Optional[str] = None,
    ) -> bool:
        body: dict[str, Any] = {"link": link}
        if filename:
            body["filename"] = filename
        if caption:
            body["caption"] = truncate(caption, BODY_LIMIT)
        return await self._dispatch(to, "document", body)

    async def send_file(self, to: str, file_path: str, caption: Optional[str] = None) -> bool:
        """Send a stored product file as an image or a document by its type."""
        link = public_file_url(file_path)
        if is_image_file(file_path):
            return await self.send_image(to, link, caption)
        filename = file_path.rsplit("/", 1)[-1]
        return await self.send_document(to, link, filename=filename, caption=caption)
