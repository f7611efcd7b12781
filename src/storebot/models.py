"""
SQLAlchemy ORM models for StoreBot.

Defines the database schema using SQLAlchemy 2.0 declarative mapping with
Mapped types and mapped_column. Money is always stored as integer cents.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class Owner(Base):
    """
    Merchant account that owns a catalog, customers and a customer bot.

    The customer bot runs on the owner's own WhatsApp number
    (phone_number_id + access_token). The admin bot identifies the owner by
    the personal WhatsApp id in whatsapp_id.
    """

    __tablename__ = "owners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    whatsapp_id: Mapped[Optional[str]] = mapped_column(
        String(32), nullable=True, unique=True
    )  # Digits only

    # Customer bot credentials
    phone_number_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Main menu text with {{nome_cliente}} style placeholders
    menu_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    categories: Mapped[List["Category"]] = relationship(
        "Category", back_populates="owner", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"Owner(id={self.id!r}, is_active={self.is_active!r})"


class Category(Base):
    """A sellable category; every unit sold from it costs price_cents."""

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(
        ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(80), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sku: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, default=utcnow, onupdate=utcnow
    )

    owner: Mapped["Owner"] = relationship("Owner", back_populates="categories")

    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="ck_category_price_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"Category(id={self.id!r}, name={self.name!r}, "
            f"price_cents={self.price_cents}, is_active={self.is_active!r})"
        )


class Product(Base):
    """
    A deliverable unit (or batch of identical units) inside a category.

    stock counts how many more times this unit can be sold. It is only ever
    changed through InventoryService's conditional updates.
    """

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(
        ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    details: Mapped[str] = mapped_column(Text, nullable=False, default="")
    file_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (CheckConstraint("stock >= 0", name="ck_product_stock_floor"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"Product(id={self.id!r}, category_id={self.category_id!r}, "
            f"stock={self.stock})"
        )


class Customer(Base):
    """End customer of one merchant, identified by WhatsApp id."""

    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(
        ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True
    )
    whatsapp_id: Mapped[str] = mapped_column(String(32), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    profile_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_interaction_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "whatsapp_id", name="uq_customer_owner_whatsapp"),
        CheckConstraint("balance_cents >= 0", name="ck_customer_balance_floor"),
    )

    @property
    def name(self) -> Optional[str]:
        """Name chosen by the merchant, falling back to the WhatsApp profile name."""
        return self.display_name or self.profile_name

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"Customer(id={self.id!r}, balance_cents={self.balance_cents}, "
            f"is_blocked={self.is_blocked!r})"
        )


class PurchaseRecord(Base):
    """
    Append-only fact describing one completed purchase.

    Category and product fields are snapshotted so later catalog edits do not
    rewrite history.
    """

    __tablename__ = "purchase_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(
        ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True
    )
    customer_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("customers.id", ondelete="SET NULL"), nullable=True
    )
    customer_whatsapp: Mapped[str] = mapped_column(String(32), nullable=False)
    customer_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    category_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    category_name: Mapped[str] = mapped_column(String(80), nullable=False)
    category_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    product_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    product_details: Mapped[str] = mapped_column(Text, nullable=False, default="")
    product_file_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    balance_after_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="BRL")
    extra_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    purchased_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"PurchaseRecord(id={self.id!r}, product_id={self.product_id!r}, "
            f"category_price_cents={self.category_price_cents})"
        )


class ConversationSession(Base):
    """
    Persisted conversation state for one (owner, WhatsApp user, audience).

    flow_state holds the serialized pending input flow, or NULL when idle.
    """

    __tablename__ = "conversation_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(
        ForeignKey("owners.id", ondelete="CASCADE"), nullable=False
    )
    customer_key: Mapped[str] = mapped_column(String(32), nullable=False)
    audience: Mapped[str] = mapped_column(String(16), nullable=False)
    support_handoff_open: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    flow_state: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    last_interaction_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "owner_id", "customer_key", "audience", name="uq_session_conversation"
        ),
        CheckConstraint(
            "audience IN ('customer', 'admin')", name="ck_session_audience"
        ),
    )


class SupportThread(Base):
    """Human support conversation between a merchant and one customer."""

    __tablename__ = "support_threads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(
        ForeignKey("owners.id", ondelete="CASCADE"), nullable=False
    )
    customer_whatsapp: Mapped[str] = mapped_column(String(32), nullable=False)
    customer_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="open")
    last_message_preview: Mapped[Optional[str]] = mapped_column(
        String(280), nullable=True
    )
    last_message_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    opened_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    closed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    messages: Mapped[List["SupportMessage"]] = relationship(
        "SupportMessage", back_populates="thread", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "customer_whatsapp", name="uq_support_thread"),
        CheckConstraint("status IN ('open', 'closed')", name="ck_support_status"),
    )


class SupportMessage(Base):
    """One transcript entry in a support thread."""

    __tablename__ = "support_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    thread_id: Mapped[int] = mapped_column(
        ForeignKey("support_threads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    message_type: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payload: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    provider_message_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    thread: Mapped["SupportThread"] = relationship(
        "SupportThread", back_populates="messages"
    )

    __table_args__ = (
        CheckConstraint(
            "direction IN ('inbound', 'outbound')", name="ck_support_direction"
        ),
    )


class PaymentMethod(Base):
    """A payment provider configured by a merchant for balance top-ups."""

    __tablename__ = "payment_methods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(
        ForeignKey("owners.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(40), nullable=False)
    display_name: Mapped[str] = mapped_column(String(60), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amount_options_cents: Mapped[Optional[list[int]]] = mapped_column(
        JSON, nullable=True
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "provider", name="uq_payment_method_provider"),
    )

    @property
    def is_configured(self) -> bool:
        """A method can only create charges once credentials are present."""
        return bool(self.access_token and self.access_token.strip())


class PaymentCharge(Base):
    """A balance top-up charge created with a payment provider."""

    __tablename__ = "payment_charges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(
        ForeignKey("owners.id", ondelete="CASCADE"), nullable=False
    )
    customer_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("customers.id", ondelete="SET NULL"), nullable=True
    )
    provider: Mapped[str] = mapped_column(String(40), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    external_reference: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True
    )
    provider_payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    ticket_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    qr_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_charge_amount_positive"),
    )
