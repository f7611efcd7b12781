"""
Integration tests for balance top-ups and the human support handoff.
"""

from decimal import Decimal

from sqlalchemy import select

from src.storebot.exceptions import PaymentProviderError
from src.storebot.models import PaymentCharge, PaymentMethod, SupportMessage, SupportThread
from src.storebot.schemas import Audience
from src.storebot.services.router import RouteAction

from tests.payloads import (
    CUSTOMER_WHATSAPP,
    button_payload,
    image_payload,
    list_payload,
    sent_reply_ids,
    sent_texts,
    text_payload,
)


async def charges(session_factory) -> list[PaymentCharge]:
    async with session_factory() as session:
        return list((await session.execute(select(PaymentCharge))).scalars().all())


class TestAddBalance:
    """Payment method and tier selection."""

    async def test_methods_are_listed(self, store, flow_router, customer_context, messenger):
        action = await flow_router.handle_inbound_event(
            customer_context, button_payload(CUSTOMER_WHATSAPP, "menu_add_balance")
        )

        assert action is RouteAction.REPLY_HANDLED
        assert sent_reply_ids(messenger) == ["payment_mercadopago_pix"]

    async def test_no_methods_configured(self, store, flow_router, customer_context, messenger, session_factory):
        async with session_factory() as session:
            method = await session.get(PaymentMethod, store.pix_method_id)
            method.is_active = False
            await session.commit()

        await flow_router.handle_inbound_event(customer_context, button_payload(CUSTOMER_WHATSAPP, "menu_add_balance"))

        assert "No momento não há formas de pagamento disponíveis. Tente mais tarde." in sent_texts(messenger)

    async def test_tiers_are_listed(self, store, flow_router, customer_context, messenger):
        await flow_router.handle_inbound_event(
            customer_context, list_payload(CUSTOMER_WHATSAPP, "payment_mercadopago_pix")
        )

        assert sent_reply_ids(messenger) == [
            "addbal_mercadopago_pix_1000",
            "addbal_mercadopago_pix_2500",
            "addbal_mercadopago_pix_5000",
        ]

    async def test_configured_tier_creates_charge(
        self, store, flow_router, customer_context, messenger, gateway, session_factory, balance_of
    ):
        action = await flow_router.handle_inbound_event(
            customer_context, list_payload(CUSTOMER_WHATSAPP, "addbal_mercadopago_pix_2500")
        )

        assert action is RouteAction.REPLY_HANDLED
        gateway.create_pix_charge.assert_awaited_once()
        assert gateway.create_pix_charge.await_args.kwargs["amount"] == Decimal("25.00")

        stored = await charges(session_factory)
        assert len(stored) == 1
        assert stored[0].amount_cents == 2500
        assert stored[0].customer_id == store.customer_id
        assert stored[0].provider == "mercadopago_pix"

        texts = sent_texts(messenger)
        assert texts[0].startswith("💳 Pagamento de R$ 25.00 gerado!")
        assert "https://www.mercadopago.com.br/payments/123456789/ticket" in texts[0]
        assert texts[1] == "00020126580014br.gov.bcb.pix"
        # Balance only changes when the provider confirms
        assert await balance_of(store.customer_id) == Decimal("30.00")

    async def test_amount_outside_tiers_is_rejected(
        self, store, flow_router, customer_context, messenger, gateway, session_factory
    ):
        await flow_router.handle_inbound_event(
            customer_context, list_payload(CUSTOMER_WHATSAPP, "addbal_mercadopago_pix_999")
        )

        gateway.create_pix_charge.assert_not_called()
        assert await charges(session_factory) == []
        assert "Esse valor não está mais disponível. Escolha um dos valores atuais." in sent_texts(messenger)
        assert "addbal_mercadopago_pix_2500" in sent_reply_ids(messenger)

    async def test_unconfigured_provider_is_rejected(self, store, flow_router, customer_context, messenger, gateway):
        await flow_router.handle_inbound_event(
            customer_context, list_payload(CUSTOMER_WHATSAPP, "addbal_mercadopago_checkout_2500")
        )

        gateway.create_checkout_preference.assert_not_called()
        assert "Essa forma de pagamento não está disponível." in sent_texts(messenger)

    async def test_provider_failure_is_reported(
        self, store, flow_router, customer_context, messenger, gateway, session_factory
    ):
        gateway.create_pix_charge.side_effect = PaymentProviderError("mercadopago_pix", "HTTP 500")

        action = await flow_router.handle_inbound_event(
            customer_context, list_payload(CUSTOMER_WHATSAPP, "addbal_mercadopago_pix_1000")
        )

        assert action is RouteAction.REPLY_HANDLED
        assert await charges(session_factory) == []
        assert "Não foi possível gerar o pagamento agora. Tente novamente em instantes." in sent_texts(messenger)
        assert "menu_add_balance" in sent_reply_ids(messenger)


class TestSupportHandoff:
    """Open, relay and finish a human support conversation."""

    async def test_handoff_lifecycle(self, store, flow_router, customer_context, messenger, services, session_factory):
        opened = await flow_router.handle_inbound_event(
            customer_context, button_payload(CUSTOMER_WHATSAPP, "menu_support")
        )
        assert opened is RouteAction.REPLY_HANDLED
        assert "support_finish" in sent_reply_ids(messenger)

        state = await services.states[Audience.CUSTOMER].get(store.owner_id, CUSTOMER_WHATSAPP)
        assert state.support_handoff_open

        messenger.reset_mock()
        relayed_text = await flow_router.handle_inbound_event(
            customer_context, text_payload(CUSTOMER_WHATSAPP, "meu código não funciona")
        )
        relayed_image = await flow_router.handle_inbound_event(
            customer_context, image_payload(CUSTOMER_WHATSAPP, caption="print do erro")
        )
        # A menu button pressed during the handoff is relayed too
        relayed_button = await flow_router.handle_inbound_event(
            customer_context, button_payload(CUSTOMER_WHATSAPP, "menu_categories")
        )

        assert relayed_text is RouteAction.SUPPORT_RELAYED
        assert relayed_image is RouteAction.SUPPORT_RELAYED
        assert relayed_button is RouteAction.SUPPORT_RELAYED
        messenger.send_text.assert_not_called()
        messenger.send_buttons.assert_not_called()
        messenger.send_list.assert_not_called()

        async with session_factory() as session:
            messages = (
                await session.execute(select(SupportMessage).order_by(SupportMessage.id))
            ).scalars().all()
        assert [message.direction for message in messages] == ["inbound", "inbound", "inbound"]
        assert messages[0].content == "meu código não funciona"
        assert messages[1].message_type == "image"

        finished = await flow_router.handle_inbound_event(
            customer_context, button_payload(CUSTOMER_WHATSAPP, "support_finish")
        )
        assert finished is RouteAction.SUPPORT_FINISHED
        assert "Atendimento encerrado. Obrigado pelo contato! 👋" in sent_texts(messenger)
        assert "menu_categories" in sent_reply_ids(messenger)

        state = await services.states[Audience.CUSTOMER].get(store.owner_id, CUSTOMER_WHATSAPP)
        assert not state.support_handoff_open

        async with session_factory() as session:
            thread = (await session.execute(select(SupportThread))).scalar_one()
        assert thread.status == "closed"

    async def test_finish_without_handoff_shows_menu(self, store, flow_router, customer_context, messenger):
        action = await flow_router.handle_inbound_event(
            customer_context, button_payload(CUSTOMER_WHATSAPP, "support_finish")
        )

        assert action is RouteAction.MAIN_MENU
        assert "menu_support" in sent_reply_ids(messenger)
