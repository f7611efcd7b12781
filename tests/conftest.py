"""
Shared fixtures for the StoreBot test suite.

Every test that touches the database gets its own SQLite file under
tmp_path, so concurrent-writer tests exercise real locking. Outbound
WhatsApp and Mercado Pago clients are replaced with AsyncMocks.
"""

import os

# Settings are read at import time, so the environment is prepared first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./storebot_test.db")
os.environ.setdefault("WEBHOOK_VERIFY_TOKEN", "test-verify-token")
os.environ.setdefault("ADMIN_WEBHOOK_VERIFY_TOKEN", "test-admin-verify-token")
os.environ.setdefault("ADMIN_PHONE_NUMBER_ID", "admin-phone-id")
os.environ.setdefault("ADMIN_ACCESS_TOKEN", "admin-access-token")
os.environ.setdefault("APP_BASE_URL", "https://storebot.test")

from datetime import datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from types import SimpleNamespace  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402

from src.storebot.db import build_engine, build_session_factory, init_db  # noqa: E402
from src.storebot.models import (  # noqa: E402
    Category,
    Customer,
    Owner,
    PaymentMethod,
    Product,
)
from src.storebot.schemas import Audience, OwnerContext, PaymentInstructions  # noqa: E402
from src.storebot.services.flow_context import FlowServices  # noqa: E402
from src.storebot.services.notifications import OwnerNotifier  # noqa: E402
from src.storebot.services.payments import MercadoPagoService  # noqa: E402
from src.storebot.services.router import FlowRouter  # noqa: E402
from src.storebot.services.whatsapp import WhatsAppService  # noqa: E402

from tests.payloads import (  # noqa: E402
    BLOCKED_CUSTOMER_WHATSAPP,
    CUSTOMER_WHATSAPP,
    OTHER_CUSTOMER_WHATSAPP,
    OWNER_WHATSAPP,
)


@pytest.fixture
async def engine(tmp_path):
    """Async engine on a fresh SQLite file with all tables created."""
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'storebot.db'}")
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def store(session_factory):
    """
    Seed one merchant with a small catalog, customers and a Pix method.

    Catalog:
        Gift Card 10  R$ 49.90  two products with one unit each
        Streaming     R$ 15.00  one product with five units
        Sold Out      R$ 5.00   one product with no stock
        Retired       R$ 9.90   inactive

    Customers:
        CUSTOMER_WHATSAPP          R$ 30.00
        OTHER_CUSTOMER_WHATSAPP    R$ 100.00
        BLOCKED_CUSTOMER_WHATSAPP  R$ 100.00, blocked
    """
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        owner = Owner(
            name="Loja Teste",
            email="dono@loja.test",
            whatsapp_id=OWNER_WHATSAPP,
            phone_number_id="customer-phone-id",
            access_token="customer-access-token",
            is_active=True,
        )
        session.add(owner)
        await session.flush()

        gift = Category(owner_id=owner.id, name="Gift Card 10", price_cents=4990, sku="GC10", is_active=True)
        streaming = Category(owner_id=owner.id, name="Streaming", price_cents=1500, is_active=True)
        sold_out = Category(owner_id=owner.id, name="Sold Out", price_cents=500, is_active=True)
        retired = Category(owner_id=owner.id, name="Retired", price_cents=990, is_active=False)
        session.add_all([gift, streaming, sold_out, retired])
        await session.flush()

        gift_a = Product(
            owner_id=owner.id, category_id=gift.id, details="CODE-A", stock=1,
            updated_at=now - timedelta(minutes=10),
        )
        gift_b = Product(owner_id=owner.id, category_id=gift.id, details="CODE-B", stock=1, updated_at=now)
        streaming_unit = Product(owner_id=owner.id, category_id=streaming.id, details="LOGIN-1", stock=5)
        sold_out_unit = Product(owner_id=owner.id, category_id=sold_out.id, details="NONE", stock=0)
        session.add_all([gift_a, gift_b, streaming_unit, sold_out_unit])

        customer = Customer(
            owner_id=owner.id, whatsapp_id=CUSTOMER_WHATSAPP, phone=CUSTOMER_WHATSAPP,
            profile_name="Maria Silva", balance_cents=3000, last_interaction_at=now,
        )
        other = Customer(
            owner_id=owner.id, whatsapp_id=OTHER_CUSTOMER_WHATSAPP, phone=OTHER_CUSTOMER_WHATSAPP,
            profile_name="João Souza", balance_cents=10000, last_interaction_at=now - timedelta(hours=1),
        )
        blocked = Customer(
            owner_id=owner.id, whatsapp_id=BLOCKED_CUSTOMER_WHATSAPP, phone=BLOCKED_CUSTOMER_WHATSAPP,
            profile_name="Bloqueado", balance_cents=10000, is_blocked=True,
            last_interaction_at=now - timedelta(hours=2),
        )
        session.add_all([customer, other, blocked])

        pix = PaymentMethod(
            owner_id=owner.id,
            provider="mercadopago_pix",
            display_name="Pix",
            is_active=True,
            access_token="mp-access-token",
            amount_options_cents=[1000, 2500, 5000],
        )
        session.add(pix)
        await session.commit()

        return SimpleNamespace(
            owner_id=owner.id,
            gift_id=gift.id,
            streaming_id=streaming.id,
            sold_out_id=sold_out.id,
            retired_id=retired.id,
            gift_product_ids=(gift_a.id, gift_b.id),
            streaming_product_id=streaming_unit.id,
            customer_id=customer.id,
            other_customer_id=other.id,
            blocked_customer_id=blocked.id,
            pix_method_id=pix.id,
        )


@pytest.fixture
def messenger():
    """WhatsApp client double; every send reports success."""
    mock = AsyncMock(spec=WhatsAppService)
    for name in ("send_text", "send_buttons", "send_list", "send_image", "send_document", "send_file"):
        getattr(mock, name).return_value = True
    return mock


@pytest.fixture
def gateway():
    """Mercado Pago client double returning a pending Pix charge."""
    mock = AsyncMock(spec=MercadoPagoService)

    async def create_pix_charge(**kwargs):
        return PaymentInstructions(
            provider="mercadopago_pix",
            amount=kwargs["amount"],
            external_reference=kwargs["external_reference"],
            provider_payment_id="123456789",
            status="pending",
            qr_code="00020126580014br.gov.bcb.pix",
            ticket_url="https://www.mercadopago.com.br/payments/123456789/ticket",
            expires_at=datetime(2030, 1, 1, 12, 30, tzinfo=timezone.utc),
        )

    mock.create_pix_charge.side_effect = create_pix_charge
    return mock


@pytest.fixture
def notifier():
    return AsyncMock(spec=OwnerNotifier)


@pytest.fixture
def services(session_factory, messenger, gateway, notifier):
    return FlowServices(
        session_factory,
        messenger_factory=lambda phone_number_id, access_token: messenger,
        gateway_factory=lambda access_token: gateway,
        notifier=notifier,
    )


@pytest.fixture
def flow_router(services):
    return FlowRouter(services)


@pytest.fixture
def balance_of(session_factory):
    """Read a customer's balance straight from the database."""

    async def read(customer_id: int) -> Decimal:
        async with session_factory() as session:
            customer = await session.get(Customer, customer_id)
            return Decimal(customer.balance_cents) / 100

    return read


@pytest.fixture
def stock_of(session_factory):
    """Read a product's stock straight from the database."""

    async def read(product_id: int) -> int:
        async with session_factory() as session:
            product = await session.get(Product, product_id)
            return product.stock

    return read


@pytest.fixture
def customer_context(store):
    """Delivery context for the seeded merchant's customer bot."""
    return OwnerContext(
        audience=Audience.CUSTOMER,
        owner_id=store.owner_id,
        phone_number_id="customer-phone-id",
        access_token="customer-access-token",
    )


@pytest.fixture
def admin_context():
    """Delivery context for the shared admin bot."""
    return OwnerContext(
        audience=Audience.ADMIN,
        phone_number_id="admin-phone-id",
        access_token="admin-access-token",
    )
