"""In-process adapters for the orders domain ports.

The clock and code generator here are the production implementations.
The email, media and contact stubs implement their ports without any
network calls; they are intended for unit tests and local development
where deterministic behavior is useful and external services are not
required.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from django.utils import timezone

from .domain import (
    Clock,
    CodeGenerator,
    Contact,
    ContactDirectoryPort,
    MediaStoragePort,
    Order,
    OrderEmailPort,
    PaymentImage,
    UploadedMedia,
)

logger = logging.getLogger(__name__)


class SystemClock(Clock):
    """Timezone-aware wall clock (``django.utils.timezone.now``)."""

    def now(self) -> datetime:
        return timezone.now()


class UuidCodeGenerator(CodeGenerator):
    """Public order codes: ``ORD-`` plus 10 upper-case hex chars of a UUID4."""

    def new_code(self) -> str:
        return "ORD-" + uuid.uuid4().hex[:10].upper()


class StaticContactDirectory(ContactDirectoryPort):
    """Stub implementation of ``ContactDirectoryPort``.

    Looks contacts up in dicts given at construction time. Unknown ids
    fall back to a synthetic ``<kind>-<id>@example.invalid`` address so
    local runs always have someone to "email".
    """

    def __init__(
        self,
        users: Optional[dict[int, Contact]] = None,
        producers: Optional[dict[int, Contact]] = None,
        synthesize: bool = True,
    ):
        self.users = dict(users or {})
        self.producers = dict(producers or {})
        self.synthesize = synthesize

    def contact_for_user(self, user_id: int) -> Optional[Contact]:
        if user_id in self.users:
            return self.users[user_id]
        return Contact(email=f"user-{user_id}@example.invalid") if self.synthesize else None

    def contact_for_producer(self, producer_id: int) -> Optional[Contact]:
        if producer_id in self.producers:
            return self.producers[producer_id]
        return Contact(email=f"producer-{producer_id}@example.invalid") if self.synthesize else None


class InMemoryMediaStub(MediaStoragePort):
    """Stub implementation of ``MediaStoragePort``.

    Keeps uploaded payloads in a dict keyed by public id and returns a
    fake ``https://media.local/...`` URL.
    """

    def __init__(self):
        self.assets: dict[str, bytes] = {}
        self.deleted: list[str] = []

    def upload(self, image: PaymentImage, order_id: int) -> UploadedMedia:
        public_id = f"orders/{order_id}/payment-{uuid.uuid4().hex[:8]}"
        self.assets[public_id] = image.content
        return UploadedMedia(url=f"https://media.local/{public_id}", public_id=public_id)

    def delete(self, public_id: str) -> None:
        self.assets.pop(public_id, None)
        self.deleted.append(public_id)


class LoggingEmailStub(OrderEmailPort):
    """Stub implementation of ``OrderEmailPort``.

    Records every call as ``(template, email, order_code, context)`` in
    ``sent`` and logs it instead of delivering anything.
    """

    def __init__(self):
        self.sent: list[tuple[str, str, str, dict]] = []

    def _record(self, template: str, to: Contact, order: Order, **context) -> None:
        self.sent.append((template, to.email, order.code, context))
        logger.info("email stub", extra={"template": template, "to": to.email, "order_id": order.id})

    def send_order_created(self, to, order, counterpart_name, is_producer):
        self._record("order_created", to, order, counterpart_name=counterpart_name, is_producer=is_producer)

    def send_order_accepted_awaiting_payment(self, to, order, payment_deadline):
        self._record("order_accepted_awaiting_payment", to, order, payment_deadline=payment_deadline)

    def send_payment_submitted(self, to, order, uploaded_at):
        self._record("payment_submitted", to, order, uploaded_at=uploaded_at)

    def send_order_preparing(self, to, order, at):
        self._record("order_preparing", to, order, at=at)

    def send_order_dispatched(self, to, order, at):
        self._record("order_dispatched", to, order, at=at)

    def send_order_delivered_pending_confirm(self, to, order, at):
        self._record("order_delivered_pending_confirm", to, order, at=at)

    def send_order_completed(self, to, order, completed_at, to_producer, auto_completed):
        self._record(
            "order_completed", to, order,
            completed_at=completed_at, to_producer=to_producer, auto_completed=auto_completed,
        )

    def send_order_disputed(self, to, order, disputed_at):
        self._record("order_disputed", to, order, disputed_at=disputed_at)

    def send_order_rejected(self, to, order, reason, decided_at):
        self._record("order_rejected", to, order, reason=reason, decided_at=decided_at)

    def send_order_cancelled(self, to, order, cancelled_at):
        self._record("order_cancelled", to, order, cancelled_at=cancelled_at)

    def send_order_expired_by_no_payment(self, to, order, expired_at):
        self._record("order_expired_by_no_payment", to, order, expired_at=expired_at)
