"""
Tests for the Mercado Pago client and merchant payment methods.

HTTP is stubbed by patching httpx.AsyncClient; charges are persisted to
the per-test SQLite database.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import httpx
import pybreaker
import pytest
from sqlalchemy import select

from src.storebot.exceptions import PaymentProviderError
from src.storebot.models import Customer, PaymentCharge, PaymentMethod
from src.storebot.schemas import PaymentProvider
from src.storebot.services.payments import (
    MercadoPagoService,
    PaymentMethodsService,
    mercadopago_circuit_breaker,
)


def api_response(status_code: int, body: dict) -> httpx.Response:
    return httpx.Response(
        status_code,
        json=body,
        request=httpx.Request("POST", "https://api.mercadopago.com/v1/payments"),
    )


PIX_RESPONSE = {
    "id": 123456789,
    "status": "pending",
    "date_of_expiration": "2030-01-01T12:30:00.000-03:00",
    "point_of_interaction": {
        "transaction_data": {
            "qr_code": "00020126580014br.gov.bcb.pix",
            "qr_code_base64": "iVBORw0KGgo=",
            "ticket_url": "https://www.mercadopago.com.br/payments/123456789/ticket",
        }
    },
}


class TestMercadoPagoService:
    """Tests for MercadoPagoService."""

    def setup_method(self):
        """Reset circuit breaker before each test."""
        mercadopago_circuit_breaker.close()

    def teardown_method(self):
        mercadopago_circuit_breaker.close()

    async def test_create_pix_charge(self):
        service = MercadoPagoService("mp-token")

        with patch("src.storebot.services.payments.httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=api_response(201, PIX_RESPONSE))
            mock_client.return_value.__aenter__.return_value.post = post

            instructions = await service.create_pix_charge(
                amount=Decimal("25"),
                description="Adição de saldo",
                external_reference="balance:1:abc",
                payer_email="5511988887777@clientes.storebot.app",
                payer_name="Maria Silva",
            )

        assert instructions.provider == "mercadopago_pix"
        assert instructions.amount == Decimal("25.00")
        assert instructions.provider_payment_id == "123456789"
        assert instructions.qr_code == "00020126580014br.gov.bcb.pix"
        assert instructions.ticket_url.endswith("/ticket")
        assert instructions.expires_at.year == 2030

        args, kwargs = post.call_args
        assert args[0] == "https://api.mercadopago.com/v1/payments"
        assert kwargs["headers"]["Authorization"] == "Bearer mp-token"
        assert kwargs["headers"]["X-Idempotency-Key"] == "balance:1:abc"
        assert kwargs["json"]["transaction_amount"] == 25.0
        assert kwargs["json"]["payment_method_id"] == "pix"
        assert kwargs["json"]["payer"] == {
            "email": "5511988887777@clientes.storebot.app",
            "first_name": "Maria",
            "last_name": "Silva",
        }

    async def test_http_error_becomes_provider_error(self):
        service = MercadoPagoService("mp-token")

        with patch("src.storebot.services.payments.httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=api_response(400, {"message": "invalid payer"})
            )

            with pytest.raises(PaymentProviderError) as exc_info:
                await service.create_pix_charge(
                    amount=Decimal("10"),
                    description="x",
                    external_reference="balance:1:def",
                    payer_email="a@b.c",
                )

        assert exc_info.value.provider == "mercadopago_pix"
        assert exc_info.value.reason == "HTTP 400"

    async def test_network_errors_are_retried(self):
        """Network errors are retried before giving up."""
        service = MercadoPagoService("mp-token")
        call_count = 0

        async def mock_post(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise httpx.ConnectError("Network error")
            return api_response(201, PIX_RESPONSE)

        with patch("src.storebot.services.payments.httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = mock_post

            instructions = await service.create_pix_charge(
                amount=Decimal("10"),
                description="x",
                external_reference="balance:1:ghi",
                payer_email="a@b.c",
            )

        assert call_count == 3
        assert instructions.status == "pending"

    async def test_open_circuit_becomes_provider_error(self):
        service = MercadoPagoService("mp-token")

        with patch.object(service, "_post", side_effect=pybreaker.CircuitBreakerError("open")):
            with pytest.raises(PaymentProviderError) as exc_info:
                await service.create_pix_charge(
                    amount=Decimal("10"),
                    description="x",
                    external_reference="balance:1:jkl",
                    payer_email="a@b.c",
                )

        assert exc_info.value.reason == "circuit breaker open"

    async def test_repeated_server_errors_open_circuit(self):
        """Five HTTP 500 answers open the breaker and later calls skip the API."""
        service = MercadoPagoService("mp-token")
        post = AsyncMock(return_value=api_response(500, {"message": "internal error"}))

        with patch("src.storebot.services.payments.httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = post

            for attempt in range(5):
                with pytest.raises(PaymentProviderError):
                    await service.create_pix_charge(
                        amount=Decimal("10"),
                        description="x",
                        external_reference=f"balance:1:srv{attempt}",
                        payer_email="a@b.c",
                    )

            assert post.await_count == 5
            assert mercadopago_circuit_breaker.current_state == pybreaker.STATE_OPEN

            with pytest.raises(PaymentProviderError) as exc_info:
                await service.create_pix_charge(
                    amount=Decimal("10"),
                    description="x",
                    external_reference="balance:1:srv5",
                    payer_email="a@b.c",
                )

        assert exc_info.value.reason == "circuit breaker open"
        assert post.await_count == 5

    async def test_success_resets_failure_count(self):
        service = MercadoPagoService("mp-token")

        with patch("src.storebot.services.payments.httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=api_response(500, {"message": "internal error"})
            )
            with pytest.raises(PaymentProviderError):
                await service.create_pix_charge(
                    amount=Decimal("10"),
                    description="x",
                    external_reference="balance:1:mno",
                    payer_email="a@b.c",
                )
            assert mercadopago_circuit_breaker.fail_counter == 1

            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=api_response(201, PIX_RESPONSE)
            )
            await service.create_pix_charge(
                amount=Decimal("10"),
                description="x",
                external_reference="balance:1:pqr",
                payer_email="a@b.c",
            )

        assert mercadopago_circuit_breaker.fail_counter == 0
        assert mercadopago_circuit_breaker.current_state == pybreaker.STATE_CLOSED

    async def test_checkout_preference(self):
        service = MercadoPagoService("mp-token")

        with patch("src.storebot.services.payments.httpx.AsyncClient") as mock_client:
            post = AsyncMock(
                return_value=api_response(
                    201, {"id": "pref-1", "init_point": "https://mpago.la/checkout/pref-1"}
                )
            )
            mock_client.return_value.__aenter__.return_value.post = post

            instructions = await service.create_checkout_preference(
                amount=Decimal("50"),
                title="Adição de saldo",
                description="Adição de saldo (50.00)",
                external_reference="balance:1:mno",
            )

        assert instructions.checkout_url == "https://mpago.la/checkout/pref-1"
        assert instructions.provider == "mercadopago_checkout"
        item = post.call_args.kwargs["json"]["items"][0]
        assert item["unit_price"] == 50.0
        assert item["currency_id"] == "BRL"

    async def test_checkout_without_link_is_an_error(self):
        service = MercadoPagoService("mp-token")

        with patch("src.storebot.services.payments.httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=api_response(201, {"id": "pref-2"})
            )

            with pytest.raises(PaymentProviderError) as exc_info:
                await service.create_checkout_preference(
                    amount=Decimal("50"),
                    title="t",
                    description="d",
                    external_reference="balance:1:pqr",
                )

        assert exc_info.value.reason == "response without init_point"


class TestPaymentMethodsService:
    """Tests for PaymentMethodsService."""

    def test_amount_options_fall_back_to_defaults(self):
        method = PaymentMethod(provider="mercadopago_pix", display_name="Pix", amount_options_cents=None)

        assert PaymentMethodsService.amount_options_cents(method) == [2500, 5000, 10000]

    def test_amount_options_drop_invalid_and_duplicates(self):
        method = PaymentMethod(
            provider="mercadopago_pix",
            display_name="Pix",
            amount_options_cents=[5000, 1000, 1000, 0, -5, True, "x"],
        )

        assert PaymentMethodsService.amount_options_cents(method) == [1000, 5000]

    def test_label_prefers_display_name(self, session_factory):
        methods = PaymentMethodsService(session_factory)
        method = PaymentMethod(provider="mercadopago_pix", display_name="Pix instantâneo")

        assert methods.label(PaymentProvider.MERCADOPAGO_PIX, method) == "Pix instantâneo"
        assert methods.label(PaymentProvider.MERCADOPAGO_CHECKOUT) == "Cartão / Checkout"

    async def test_list_available_skips_unconfigured(self, store, session_factory):
        async with session_factory() as session:
            session.add(
                PaymentMethod(
                    owner_id=store.owner_id,
                    provider="mercadopago_checkout",
                    display_name="Cartão",
                    is_active=True,
                    access_token="  ",
                )
            )
            await session.commit()

        methods = await PaymentMethodsService(session_factory).list_available(store.owner_id)

        assert [method.provider for method in methods] == ["mercadopago_pix"]

    async def test_create_top_up_persists_charge(self, store, session_factory, gateway):
        methods = PaymentMethodsService(session_factory)
        async with session_factory() as session:
            method = await session.get(PaymentMethod, store.pix_method_id)
            customer = await session.get(Customer, store.customer_id)

        instructions = await methods.create_top_up(method, customer, 2500, gateway=gateway)

        assert instructions.amount == Decimal("25.00")
        assert instructions.external_reference.startswith(f"balance:{store.customer_id}:")

        kwargs = gateway.create_pix_charge.call_args.kwargs
        assert kwargs["payer_email"] == "5511988887777@clientes.storebot.app"
        assert kwargs["payer_name"] == "Maria Silva"
        assert kwargs["metadata"] == {
            "storebot_owner_id": store.owner_id,
            "storebot_customer_id": store.customer_id,
        }

        async with session_factory() as session:
            charges = (await session.execute(select(PaymentCharge))).scalars().all()

        assert len(charges) == 1
        assert charges[0].amount_cents == 2500
        assert charges[0].status == "pending"
        assert charges[0].external_reference == instructions.external_reference
        assert charges[0].ticket_url == "https://www.mercadopago.com.br/payments/123456789/ticket"

    async def test_provider_failure_persists_nothing(self, store, session_factory, gateway):
        gateway.create_pix_charge.side_effect = PaymentProviderError("mercadopago_pix", "HTTP 500")
        async with session_factory() as session:
            method = await session.get(PaymentMethod, store.pix_method_id)
            customer = await session.get(Customer, store.customer_id)

        with pytest.raises(PaymentProviderError):
            await PaymentMethodsService(session_factory).create_top_up(method, customer, 2500, gateway=gateway)

        async with session_factory() as session:
            charges = (await session.execute(select(PaymentCharge))).scalars().all()
        assert charges == []

