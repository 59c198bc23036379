"""Domain models and ports for the order lifecycle.

This module contains the dataclasses used as DTOs for orders and
products, the enumerations of the lifecycle, and the protocol
definitions (ports) for the external collaborators the lifecycle relies
on: the email sender, the media store, the contact directory, the clock
and the order code generator.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol


# ---- Enums ----
class OrderStatus(str, Enum):
    """Enumeration of the possible order statuses.

    The allowed moves between statuses live in ``state_machine``.
    """

    PENDING_REVIEW = "PendingReview"
    ACCEPTED_AWAITING_PAYMENT = "AcceptedAwaitingPayment"
    PAYMENT_SUBMITTED = "PaymentSubmitted"
    PREPARING = "Preparing"
    DISPATCHED = "Dispatched"
    DELIVERED_PENDING_BUYER_CONFIRM = "DeliveredPendingBuyerConfirm"
    COMPLETED = "Completed"
    DISPUTED = "Disputed"
    REJECTED = "Rejected"
    CANCELLED_BY_USER = "CancelledByUser"
    EXPIRED = "Expired"


class ReceivedAnswer(str, Enum):
    """Buyer answer to "did you receive the order?"."""

    YES = "yes"
    NO = "no"


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class Order:
    """Container for order data.

    The dataclass is frozen: the state machine plans a transition by
    returning a modified copy, so a rejected action can never leave a
    half-mutated order behind.

    Attributes:
        id: Internal identifier, or None if not yet saved.
        code: Public opaque code used for every external reference.
        user_id: Buyer; the only actor allowed to run buyer actions.
        product_id: Product the order was placed for.
        producer_id_snapshot: Producer owning the product at creation time.
        product_name_snapshot: Product name at creation time.
        unit_price_cents_snapshot: Unit price at creation time, in cents.
        quantity_requested: Units requested.
        subtotal_cents: ``unit_price_cents_snapshot * quantity_requested``.
        total_cents: Equal to ``subtotal_cents`` (no shipping component).
        status: Current OrderStatus.
        auto_close_at: Deadline whose meaning depends on ``status``:
            payment upload deadline while AcceptedAwaitingPayment, buyer
            confirmation deadline while DeliveredPendingBuyerConfirm.
        row_version: Concurrency token; changes on every successful write.
    """

    id: Optional[int]
    code: str
    user_id: int
    product_id: int
    producer_id_snapshot: int
    product_name_snapshot: str
    unit_price_cents_snapshot: int
    quantity_requested: int
    subtotal_cents: int
    total_cents: int
    created_at: datetime
    status: OrderStatus = OrderStatus.PENDING_REVIEW
    accepted_at: Optional[datetime] = None
    producer_decision_at: Optional[datetime] = None
    producer_decision_reason: Optional[str] = None
    producer_notes: Optional[str] = None
    payment_image_url: Optional[str] = None
    payment_uploaded_at: Optional[datetime] = None
    payment_submitted_at: Optional[datetime] = None
    user_confirm_enabled_at: Optional[datetime] = None
    user_received_answer: Optional[ReceivedAnswer] = None
    user_received_at: Optional[datetime] = None
    auto_close_at: Optional[datetime] = None
    active: bool = True
    is_deleted: bool = False
    row_version: int = 1

    @property
    def is_available(self) -> bool:
        return self.active and not self.is_deleted

    @property
    def has_payment_image(self) -> bool:
        return bool(self.payment_image_url and self.payment_image_url.strip())


@dataclass(frozen=True)
class ProductSnapshot:
    """The product fields an order copies at creation time."""

    id: int
    producer_id: int
    name: str
    price_cents: int
    stock: int


@dataclass(frozen=True)
class Contact:
    """Email contact of a buyer or producer."""

    email: str
    first_name: str = ""
    last_name: str = ""

    @property
    def display_name(self) -> str:
        return f"{(self.first_name or '').strip()} {(self.last_name or '').strip()}".strip()


@dataclass(frozen=True)
class PaymentImage:
    """Payment proof as received from the buyer."""

    content: bytes
    filename: str = "payment"
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class UploadedMedia:
    """Result of a media upload: public URL and the id needed to delete it."""

    url: str
    public_id: str


# ---- Ports (DIP) ----
class Clock(Protocol):
    """Source of the current (timezone-aware) time."""

    def now(self) -> datetime:
        raise NotImplementedError()


class CodeGenerator(Protocol):
    """Generator of public order codes."""

    def new_code(self) -> str:
        raise NotImplementedError()


class ContactDirectoryPort(Protocol):
    """Port describing contact lookups for buyers and producers.

    Both methods return None when the contact is unknown.
    """

    def contact_for_user(self, user_id: int) -> Optional[Contact]:
        raise NotImplementedError()

    def contact_for_producer(self, producer_id: int) -> Optional[Contact]:
        raise NotImplementedError()


class MediaStoragePort(Protocol):
    """Port describing the remote media store used for payment proofs."""

    def upload(self, image: PaymentImage, order_id: int) -> UploadedMedia:
        """Upload the image and return where it lives.

        Args:
            image: The payment proof to store.
            order_id: Internal order id, used to group assets.

        Returns:
            UploadedMedia with the public URL and the store's public id.
        """
        raise NotImplementedError()

    def delete(self, public_id: str) -> None:
        raise NotImplementedError()


class OrderEmailPort(Protocol):
    """Port describing the outbound emails of the order lifecycle.

    There is one method per lifecycle event. Callers treat every method as
    fire-and-forget: exceptions are caught and logged by ``notifications``.
    """

    def send_order_created(self, to: Contact, order: Order, counterpart_name: str, is_producer: bool) -> None:
        raise NotImplementedError()

    def send_order_accepted_awaiting_payment(self, to: Contact, order: Order, payment_deadline: datetime) -> None:
        raise NotImplementedError()

    def send_payment_submitted(self, to: Contact, order: Order, uploaded_at: datetime) -> None:
        raise NotImplementedError()

    def send_order_preparing(self, to: Contact, order: Order, at: datetime) -> None:
        raise NotImplementedError()

    def send_order_dispatched(self, to: Contact, order: Order, at: datetime) -> None:
        raise NotImplementedError()

    def send_order_delivered_pending_confirm(self, to: Contact, order: Order, at: datetime) -> None:
        raise NotImplementedError()

    def send_order_completed(
        self, to: Contact, order: Order, completed_at: datetime, to_producer: bool, auto_completed: bool
    ) -> None:
        raise NotImplementedError()

    def send_order_disputed(self, to: Contact, order: Order, disputed_at: datetime) -> None:
        raise NotImplementedError()

    def send_order_rejected(self, to: Contact, order: Order, reason: str, decided_at: datetime) -> None:
        raise NotImplementedError()

    def send_order_cancelled(self, to: Contact, order: Order, cancelled_at: datetime) -> None:
        raise NotImplementedError()

    def send_order_expired_by_no_payment(self, to: Contact, order: Order, expired_at: datetime) -> None:
        raise NotImplementedError()
