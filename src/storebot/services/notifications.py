"""
Merchant notifications for completed sales.

Owners hear about each purchase on their personal WhatsApp (sent from the
admin bot number) and, when SMTP is configured, by e-mail. Both channels are
best-effort: a failure is logged and never reaches the purchase flow.
"""

import asyncio
import smtplib
from decimal import Decimal
from email.message import EmailMessage
from typing import Callable, Optional

import httpx

from ..config import settings
from ..models import Category, Customer, Owner, Product
from ..utils.input_parsers import format_currency
from ..utils.logging import get_logger
from .whatsapp import WhatsAppService

logger = get_logger(__name__)

MessengerFactory = Callable[[str, str], WhatsAppService]


def build_purchase_summary(
    owner: Owner,
    customer: Customer,
    category: Category,
    product: Product,
    balance_after: Decimal,
) -> list[str]:
    """Lines describing one sale, shared by the WhatsApp and e-mail notices."""
    customer_label = customer.name or customer.whatsapp_id or "Cliente do bot"
    lines = [
        f"Olá, {owner.name or 'administrador'}!",
        f"Cliente: {customer_label}.",
        f"Categoria: {category.name}.",
        f"Valor debitado: {format_currency(category.price_cents)}.",
    ]
    if product.details:
        lines.append(f"Detalhes do produto: {product.details}")
    lines.append(f"Saldo restante do cliente: {format_currency(balance_after)}")
    return lines


class OwnerNotifier:
    """
    Sends purchase notifications to the merchant.

    Args:
        messenger_factory: Builds a WhatsApp client from (phone_number_id, access_token)
    """

    def __init__(self, messenger_factory: Optional[MessengerFactory] = None) -> None:
        self.messenger_factory = messenger_factory or WhatsAppService

    @property
    def whatsapp_enabled(self) -> bool:
        return bool(settings.admin_phone_number_id and settings.admin_access_token)

    @property
    def email_enabled(self) -> bool:
        return bool(settings.smtp_host and settings.smtp_sender)

    async def notify_purchase(
        self,
        owner: Owner,
        customer: Customer,
        category: Category,
        product: Product,
        balance_after: Decimal,
    ) -> None:
        """Notify the owner on every configured channel; never raises."""
        lines = build_purchase_summary(owner, customer, category, product, balance_after)

        if owner.whatsapp_id and self.whatsapp_enabled:
            await self._notify_whatsapp(owner, lines)

        if owner.email and self.email_enabled:
            await self._notify_email(owner, category, lines)

    async def _notify_whatsapp(self, owner: Owner, lines: list[str]) -> None:
        messenger = self.messenger_factory(
            settings.admin_phone_number_id, settings.admin_access_token
        )
        text = "🛒 Nova compra no bot\n\n" + "\n".join(lines)
        try:
            delivered = await messenger.send_text(owner.whatsapp_id, text)
        except httpx.HTTPError as e:
            logger.warning(
                "Owner WhatsApp notification failed",
                extra={"owner_id": owner.id, "error_type": type(e).__name__},
            )
            return

        if not delivered:
            logger.warning("Owner WhatsApp notification not delivered", extra={"owner_id": owner.id})

    async def _notify_email(self, owner: Owner, category: Category, lines: list[str]) -> None:
        message = EmailMessage()
        message["Subject"] = f"Nova compra no bot - {category.name}"
        message["From"] = settings.smtp_sender
        message["To"] = owner.email
        message.set_content("\n".join(lines))

        try:
            await asyncio.to_thread(self._send_email, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(
                "Owner e-mail notification failed",
                extra={"owner_id": owner.id, "error_type": type(e).__name__},
            )
            return

        logger.info("Owner e-mail notification sent", extra={"owner_id": owner.id})

    @staticmethod
    def _send_email(message: EmailMessage) -> None:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as smtp:
            smtp.starttls()
            if settings.smtp_username and settings.smtp_password:
                smtp.login(settings.smtp_username, settings.smtp_password)
            smtp.send_message(message)
