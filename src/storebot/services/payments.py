"""
Mercado Pago payment service for balance top-ups.

MercadoPagoService creates Pix payments and checkout preferences through
the Mercado Pago REST API. PaymentMethodsService reads each merchant's
configured providers and amount tiers and persists the charges created.
Balance is never credited here; the provider's payment notification does
that out of band.
"""

import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

import httpx
import pybreaker
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import settings
from ..exceptions import PaymentProviderError
from ..models import Customer, PaymentCharge, PaymentMethod
from ..schemas import PaymentInstructions, PaymentProvider
from ..utils.input_parsers import quantize_cents, to_cents
from ..utils.logging import get_logger, log_api_call

logger = get_logger(__name__)


class MercadoPagoCircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Logs Mercado Pago circuit breaker state changes."""

    def state_change(self, cb, old_state, new_state):
        logger.warning(
            f"Mercado Pago circuit breaker state changed from {old_state.name} to {new_state.name}",
            extra={
                "old_state": old_state.name,
                "new_state": new_state.name,
                "fail_counter": cb.fail_counter,
            },
        )


# Opens after 5 failures, stays open for 60 seconds before attempting recovery
mercadopago_circuit_breaker = pybreaker.CircuitBreaker(
    fail_max=5,
    reset_timeout=60,
    listeners=[MercadoPagoCircuitBreakerListener()],
)


def _split_name(full_name: Optional[str]) -> tuple[str, Optional[str]]:
    parts = [part for part in (full_name or "").split() if part]
    if not parts:
        return "Cliente", None
    return parts[0], " ".join(parts[1:]) or None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None


class MercadoPagoService:
    """
    Client for the Mercado Pago REST API using one merchant's access token.

    Args:
        access_token: The merchant's Mercado Pago access token
    """

    def __init__(self, access_token: str) -> None:
        self.access_token = access_token
        self.base_url = settings.mercadopago_base_url.rstrip("/")

    @retry(
        retry=retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )
    async def _post(self, path: str, payload: dict[str, Any], idempotency_key: str) -> dict[str, Any]:
        """
        POST to the API behind the circuit breaker, retrying network errors.

        The request runs inside mercadopago_circuit_breaker.calling() so network
        errors and error statuses count as breaker failures.

        Raises:
            httpx.HTTPStatusError: If the API answers with an error status
            pybreaker.CircuitBreakerError: If the circuit breaker is open
        """
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "X-Idempotency-Key": idempotency_key,
        }

        with mercadopago_circuit_breaker.calling():
            started = time.perf_counter()
            async with httpx.AsyncClient(timeout=httpx.Timeout(30.0)) as client:
                response = await client.post(f"{self.base_url}{path}", json=payload, headers=headers)
            log_api_call(
                service="mercadopago",
                endpoint=path,
                method="POST",
                status_code=response.status_code,
                duration_ms=(time.perf_counter() - started) * 1000,
            )
            response.raise_for_status()

        data = response.json()
        return data if isinstance(data, dict) else {}

    async def _call(
        self, provider: PaymentProvider, path: str, payload: dict[str, Any], reference: str
    ) -> dict[str, Any]:
        try:
            return await self._post(path, payload, reference)
        except pybreaker.CircuitBreakerError as e:
            logger.error("Circuit breaker is OPEN - Mercado Pago API is unavailable")
            raise PaymentProviderError(provider.value, "circuit breaker open") from e
        except httpx.HTTPStatusError as e:
            logger.error(
                "Mercado Pago API returned error",
                extra={"status_code": e.response.status_code, "response": e.response.text[:500]},
            )
            raise PaymentProviderError(provider.value, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(
                "Mercado Pago request failed",
                extra={"error_type": type(e).__name__},
            )
            raise PaymentProviderError(provider.value, type(e).__name__) from e
        except ValueError as e:
            raise PaymentProviderError(provider.value, "invalid JSON response") from e

    async def create_pix_charge(
        self,
        amount: Decimal,
        description: str,
        external_reference: str,
        payer_email: str,
        payer_name: Optional[str] = None,
        expiration_minutes: Optional[int] = None,
        notification_url: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> PaymentInstructions:
        """
        Create a Pix payment and return its QR code and ticket URL.

        Args:
            amount: Charge amount
            description: Statement description
            external_reference: Our reference, echoed back in notifications
            payer_email: Payer e-mail (required by Mercado Pago)
            payer_name: Payer full name
            expiration_minutes: QR code lifetime (defaults to settings)
            notification_url: Webhook for payment status updates
            metadata: Extra metadata stored with the payment

        Returns:
            PaymentInstructions

        Raises:
            PaymentProviderError: If the payment could not be created
        """
        minutes = expiration_minutes if expiration_minutes and expiration_minutes > 0 else settings.pix_expiration_minutes
        expires_at = datetime.now(timezone.utc) + timedelta(minutes=minutes)
        first_name, last_name = _split_name(payer_name)

        payer: dict[str, Any] = {"email": payer_email, "first_name": first_name}
        if last_name:
            payer["last_name"] = last_name

        payload: dict[str, Any] = {
            "transaction_amount": float(quantize_cents(amount)),
            "description": description.strip() or "Pagamento via Pix",
            "payment_method_id": "pix",
            "external_reference": external_reference,
            "payer": payer,
            "date_of_expiration": expires_at.isoformat(timespec="milliseconds"),
        }
        if notification_url:
            payload["notification_url"] = notification_url
        if metadata:
            payload["metadata"] = metadata

        data = await self._call(
            PaymentProvider.MERCADOPAGO_PIX, "/v1/payments", payload, external_reference
        )
        transaction = (data.get("point_of_interaction") or {}).get("transaction_data") or {}

        instructions = PaymentInstructions(
            provider=PaymentProvider.MERCADOPAGO_PIX.value,
            amount=quantize_cents(amount),
            external_reference=external_reference,
            provider_payment_id=str(data["id"]) if data.get("id") is not None else None,
            status=data.get("status") or "unknown",
            qr_code=transaction.get("qr_code"),
            qr_code_base64=transaction.get("qr_code_base64"),
            ticket_url=transaction.get("ticket_url"),
            expires_at=_parse_datetime(data.get("date_of_expiration")) or expires_at,
        )
        logger.info(
            "Pix charge created",
            extra={
                "provider_payment_id": instructions.provider_payment_id,
                "amount_cents": to_cents(amount),
                "status": instructions.status,
            },
        )
        return instructions

    async def create_checkout_preference(
        self,
        amount: Decimal,
        title: str,
        description: str,
        external_reference: str,
        payer_email: Optional[str] = None,
        payer_name: Optional[str] = None,
        notification_url: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> PaymentInstructions:
        """
        Create a Checkout Pro preference and return its payment link.

        Raises:
            PaymentProviderError: If the preference could not be created
        """
        return_base = f"{settings.app_base_url.rstrip('/')}/pagamentos/checkout-retorno"
        payload: dict[str, Any] = {
            "items": [
                {
                    "id": "storebot_balance",
                    "title": title.strip() or "Recarga de saldo",
                    "description": description,
                    "quantity": 1,
                    "unit_price": float(quantize_cents(amount)),
                    "currency_id": settings.currency,
                }
            ],
            "external_reference": external_reference,
            "auto_return": "approved",
            "back_urls": {
                status: f"{return_base}?status={status}"
                for status in ("success", "pending", "failure")
            },
        }
        if notification_url:
            payload["notification_url"] = notification_url
        if metadata:
            payload["metadata"] = metadata
        if payer_email:
            first_name, last_name = _split_name(payer_name)
            payload["payer"] = {"email": payer_email, "name": first_name, "surname": last_name}

        data = await self._call(
            PaymentProvider.MERCADOPAGO_CHECKOUT,
            "/checkout/preferences",
            payload,
            external_reference,
        )
        checkout_url = data.get("init_point") or data.get("sandbox_init_point")
        if not checkout_url:
            raise PaymentProviderError(
                PaymentProvider.MERCADOPAGO_CHECKOUT.value, "response without init_point"
            )

        logger.info(
            "Checkout preference created",
            extra={"provider_payment_id": data.get("id"), "amount_cents": to_cents(amount)},
        )
        return PaymentInstructions(
            provider=PaymentProvider.MERCADOPAGO_CHECKOUT.value,
            amount=quantize_cents(amount),
            external_reference=external_reference,
            provider_payment_id=str(data["id"]) if data.get("id") is not None else None,
            checkout_url=checkout_url,
        )


class PaymentMethodsService:
    """Merchant payment configuration and top-up charge creation."""

    PROVIDER_LABELS = {
        PaymentProvider.MERCADOPAGO_PIX: "Pix",
        PaymentProvider.MERCADOPAGO_CHECKOUT: "Cartão / Checkout",
    }

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def list_available(self, owner_id: int) -> list[PaymentMethod]:
        """Active methods that have credentials, in provider order."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(PaymentMethod)
                .where(PaymentMethod.owner_id == owner_id, PaymentMethod.is_active.is_(True))
                .order_by(PaymentMethod.id)
            )
            methods = list(result.scalars().all())

        known = {provider.value for provider in PaymentProvider}
        return [method for method in methods if method.is_configured and method.provider in known]

    @staticmethod
    def amount_options_cents(method: PaymentMethod) -> list[int]:
        """
        Amount tiers offered for a method, in cents.

        Falls back to the default tiers when the merchant configured none.
        Non-positive and duplicate values are dropped.
        """
        raw = method.amount_options_cents or settings.default_amount_options_cents
        tiers: list[int] = []
        for value in raw:
            if isinstance(value, bool) or not isinstance(value, int):
                continue
            if value > 0 and value not in tiers:
                tiers.append(value)
        return sorted(tiers)

    def label(self, provider: PaymentProvider, method: Optional[PaymentMethod] = None) -> str:
        if method is not None and method.display_name:
            return method.display_name
        return self.PROVIDER_LABELS.get(provider, provider.value)

    async def create_top_up(
        self,
        method: PaymentMethod,
        customer: Customer,
        amount_cents: int,
        gateway: Optional[MercadoPagoService] = None,
    ) -> PaymentInstructions:
        """
        Create a provider charge for a balance top-up and persist it.

        Args:
            method: Merchant payment method to charge through
            customer: Customer topping up
            amount_cents: Tier amount in cents
            gateway: Mercado Pago client (built from the method's token when omitted)

        Returns:
            PaymentInstructions to relay to the customer

        Raises:
            PaymentProviderError: If the provider rejects or fails the charge
        """
        provider = PaymentProvider(method.provider)
        gateway = gateway or MercadoPagoService(method.access_token or "")
        amount = Decimal(amount_cents) / 100
        reference = f"balance:{customer.id}:{uuid.uuid4().hex[:16]}"
        description = f"Adição de saldo ({quantize_cents(amount):.2f})"
        payer_email = f"{customer.whatsapp_id}@{settings.payer_email_domain}"
        notification_url = f"{settings.app_base_url.rstrip('/')}/payments/mercadopago/notifications"
        metadata = {"storebot_owner_id": customer.owner_id, "storebot_customer_id": customer.id}

        if provider is PaymentProvider.MERCADOPAGO_PIX:
            instructions = await gateway.create_pix_charge(
                amount=amount,
                description=description,
                external_reference=reference,
                payer_email=payer_email,
                payer_name=customer.name,
                notification_url=notification_url,
                metadata=metadata,
            )
        else:
            instructions = await gateway.create_checkout_preference(
                amount=amount,
                title="Adição de saldo",
                description=description,
                external_reference=reference,
                payer_email=payer_email,
                payer_name=customer.name,
                notification_url=notification_url,
                metadata=metadata,
            )

        async with self.session_factory() as session:
            session.add(
                PaymentCharge(
                    owner_id=customer.owner_id,
                    customer_id=customer.id,
                    provider=provider.value,
                    amount_cents=amount_cents,
                    status=instructions.status,
                    external_reference=reference,
                    provider_payment_id=instructions.provider_payment_id,
                    ticket_url=instructions.ticket_url or instructions.checkout_url,
                    qr_code=instructions.qr_code,
                    expires_at=instructions.expires_at,
                )
            )
            await session.commit()

        return instructions
