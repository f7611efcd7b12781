"""
Unit tests for merchant purchase notifications.
"""

import smtplib
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.storebot.config import settings
from src.storebot.models import Category, Customer, Owner, Product
from src.storebot.services.notifications import OwnerNotifier, build_purchase_summary


@pytest.fixture
def sale():
    owner = Owner(id=1, name="Loja Teste", email="dono@loja.test", whatsapp_id="5511900000001")
    customer = Customer(id=2, owner_id=1, whatsapp_id="5511988887777", profile_name="Maria Silva")
    category = Category(id=3, owner_id=1, name="Gift Card 10", price_cents=4990)
    product = Product(id=4, owner_id=1, category_id=3, details="CODE-A", stock=0)
    return owner, customer, category, product


def test_purchase_summary(sale):
    owner, customer, category, product = sale

    lines = build_purchase_summary(owner, customer, category, product, Decimal("50.10"))

    assert lines == [
        "Olá, Loja Teste!",
        "Cliente: Maria Silva.",
        "Categoria: Gift Card 10.",
        "Valor debitado: R$ 49.90.",
        "Detalhes do produto: CODE-A",
        "Saldo restante do cliente: R$ 50.10",
    ]


class TestOwnerNotifier:
    """Tests for OwnerNotifier."""

    async def test_whatsapp_notice_sent_from_admin_number(self, sale):
        messenger = AsyncMock()
        messenger.send_text.return_value = True
        factory_calls = []

        def factory(phone_number_id, access_token):
            factory_calls.append((phone_number_id, access_token))
            return messenger

        notifier = OwnerNotifier(messenger_factory=factory)

        with patch.object(settings, "smtp_host", None):
            await notifier.notify_purchase(*sale, Decimal("50.10"))

        assert factory_calls == [("admin-phone-id", "admin-access-token")]
        to, text = messenger.send_text.call_args.args
        assert to == "5511900000001"
        assert text.startswith("🛒 Nova compra no bot")
        assert "Categoria: Gift Card 10." in text

    async def test_whatsapp_failure_is_swallowed(self, sale):
        messenger = AsyncMock()
        messenger.send_text.side_effect = httpx.ConnectError("down")
        notifier = OwnerNotifier(messenger_factory=lambda *_: messenger)

        with patch.object(settings, "smtp_host", None):
            await notifier.notify_purchase(*sale, Decimal("50.10"))

        messenger.send_text.assert_awaited_once()

    async def test_email_sent_when_smtp_configured(self, sale):
        messenger = AsyncMock()
        notifier = OwnerNotifier(messenger_factory=lambda *_: messenger)

        with (
            patch.object(settings, "smtp_host", "smtp.loja.test"),
            patch.object(settings, "smtp_sender", "bot@loja.test"),
            patch.object(OwnerNotifier, "_send_email") as send_email,
        ):
            await notifier.notify_purchase(*sale, Decimal("50.10"))

        message = send_email.call_args.args[0]
        assert message["To"] == "dono@loja.test"
        assert message["Subject"] == "Nova compra no bot - Gift Card 10"
        assert "Saldo restante do cliente: R$ 50.10" in message.get_content()

    async def test_email_failure_is_swallowed(self, sale):
        notifier = OwnerNotifier(messenger_factory=lambda *_: AsyncMock())

        with (
            patch.object(settings, "smtp_host", "smtp.loja.test"),
            patch.object(settings, "smtp_sender", "bot@loja.test"),
            patch.object(OwnerNotifier, "_send_email", side_effect=smtplib.SMTPException("refused")),
        ):
            await notifier.notify_purchase(*sale, Decimal("50.10"))

    async def test_owner_without_contacts_gets_nothing(self, sale):
        owner, customer, category, product = sale
        owner.whatsapp_id = None
        owner.email = None
        messenger = AsyncMock()
        notifier = OwnerNotifier(messenger_factory=lambda *_: messenger)

        await notifier.notify_purchase(owner, customer, category, product, Decimal("1.00"))

        messenger.send_text.assert_not_called()
