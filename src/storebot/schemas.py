"""
Pydantic schemas for StoreBot.

Covers the canonical inbound message, the conversation state and its tagged
pending-flow variants, and the result types returned by the inventory,
ledger and payment services.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class MessageType(str, Enum):
    """Inbound message types the normalizer can emit."""

    TEXT = "text"
    INTERACTIVE = "interactive"
    IMAGE = "image"
    DOCUMENT = "document"
    AUDIO = "audio"
    VIDEO = "video"
    STICKER = "sticker"
    BUTTON = "button"
    UNKNOWN = "unknown"


class PaymentProvider(str, Enum):
    """Payment providers a merchant can enable for balance top-ups."""

    MERCADOPAGO_PIX = "mercadopago_pix"
    MERCADOPAGO_CHECKOUT = "mercadopago_checkout"


class Audience(str, Enum):
    """Which bot a webhook delivery belongs to."""

    CUSTOMER = "customer"
    ADMIN = "admin"


class MediaRef(BaseModel):
    """Provider media descriptor attached to a media message."""

    model_config = ConfigDict(frozen=True)

    media_id: Optional[str] = None
    mime_type: Optional[str] = None
    filename: Optional[str] = None
    caption: Optional[str] = None
    sha256: Optional[str] = None


class InboundMessage(BaseModel):
    """
    Canonical representation of one inbound WhatsApp message.

    Built once per webhook delivery by the normalizer and never mutated.
    """

    model_config = ConfigDict(frozen=True)

    sender_id: str
    type: MessageType
    text: Optional[str] = None
    structured_reply_id: Optional[str] = None
    media_ref: Optional[MediaRef] = None
    provider_timestamp: Optional[datetime] = None
    message_id: Optional[str] = None
    contact_name: Optional[str] = None


# Pending input flows. Only one is active per conversation and a transition
# always replaces it wholesale.


class AwaitingCategoryRename(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Literal["category_rename"] = "category_rename"
    category_id: int


class AwaitingCategoryPrice(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Literal["category_price"] = "category_price"
    category_id: int


class AwaitingCategorySku(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Literal["category_sku"] = "category_sku"
    category_id: int


class AwaitingCustomerLookup(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Literal["customer_lookup"] = "customer_lookup"
    purpose: Literal["edit"] = "edit"


class AwaitingCustomerEditChoice(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Literal["customer_edit_choice"] = "customer_edit_choice"
    customer_id: int


class AwaitingCustomerName(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Literal["customer_name"] = "customer_name"
    customer_id: int


class AwaitingCustomerBalanceDelta(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Literal["customer_balance_delta"] = "customer_balance_delta"
    customer_id: int


FlowState = Annotated[
    Union[
        AwaitingCategoryRename,
        AwaitingCategoryPrice,
        AwaitingCategorySku,
        AwaitingCustomerLookup,
        AwaitingCustomerEditChoice,
        AwaitingCustomerName,
        AwaitingCustomerBalanceDelta,
    ],
    Field(discriminator="name"),
]

flow_state_adapter: TypeAdapter[FlowState] = TypeAdapter(FlowState)

CATEGORY_FLOWS = (AwaitingCategoryRename, AwaitingCategoryPrice, AwaitingCategorySku)
CUSTOMER_EDIT_FLOWS = (
    AwaitingCustomerEditChoice,
    AwaitingCustomerName,
    AwaitingCustomerBalanceDelta,
)


class ConversationState(BaseModel):
    """Snapshot of one conversation as read from the state store."""

    model_config = ConfigDict(frozen=True)

    owner_id: int
    customer_id: str
    audience: Audience = Audience.CUSTOMER
    support_handoff_open: bool = False
    pending_flow: Optional[FlowState] = None
    is_new: bool = False

    @property
    def is_idle(self) -> bool:
        return not self.support_handoff_open and self.pending_flow is None


class OwnerContext(BaseModel):
    """
    Identifies which bot and which credentials a delivery arrived on.

    Customer deliveries are bound to one merchant. Admin deliveries share a
    single number, so owner_id stays None until the sender is resolved.
    """

    model_config = ConfigDict(frozen=True)

    audience: Audience
    owner_id: Optional[int] = None
    phone_number_id: Optional[str] = None
    access_token: Optional[str] = None


class ReservationResult(BaseModel):
    """Outcome of an atomic stock reservation."""

    model_config = ConfigDict(frozen=True)

    reserved: bool
    product_id: Optional[int] = None


class DebitFailureReason(str, Enum):
    """Why a ledger debit was refused."""

    INSUFFICIENT = "insufficient"
    BLOCKED = "blocked"
    NOT_FOUND = "not_found"


class DebitSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: Literal[True] = True
    new_balance: Decimal
    customer_ref: int


class DebitFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: Literal[False] = False
    reason: DebitFailureReason
    # Balance observed while classifying the failure, None when not found
    current_balance: Optional[Decimal] = None


DebitResult = Union[DebitSuccess, DebitFailure]


class PaymentInstructions(BaseModel):
    """What the customer needs to complete a top-up charge."""

    provider: str
    amount: Decimal
    external_reference: str
    provider_payment_id: Optional[str] = None
    status: str = "pending"
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None
    ticket_url: Optional[str] = None
    checkout_url: Optional[str] = None
    expires_at: Optional[datetime] = None


class SupportThreadSummary(BaseModel):
    """Support thread as shown to the merchant, with the 24h reply window."""

    thread_id: int
    customer_whatsapp: str
    customer_name: Optional[str] = None
    status: str
    last_message_preview: Optional[str] = None
    last_message_at: Optional[datetime] = None
    within_24h: bool = False
    minutes_left_24h: int = 0
