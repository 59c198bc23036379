"""Order transition engine.

The engine wraps the pure ``OrderStateMachine`` with persistence: it
loads the order, lets the state machine plan the transition, writes it
under the caller's concurrency token, and only after the write has
committed fires the notifications. One public method per external
action.

Side-effect ordering:

1. A stale ``row_version`` is refused on load; guards and input
   validation then run before anything is written. The conditional
   UPDATE re-checks the token for writers that race past the load.
2. ``accept`` writes the order and decrements stock in one
   ``transaction.atomic()`` block; either failure rolls back both.
3. ``upload_payment`` uploads the proof before the write and deletes it
   again (best-effort) if the write fails.
4. Notifications run after the atomic block; their failures are logged
   by ``OrderNotifier`` and never reach the caller.
"""

import logging
from typing import Optional

from django.db import IntegrityError, transaction

from .domain import (
    Clock,
    CodeGenerator,
    MediaStoragePort,
    Order,
    OrderStatus,
    PaymentImage,
    UploadedMedia,
)
from .errors import (
    BusinessRuleError,
    ConcurrencyConflictError,
    NotAuthorizedError,
    OrderNotFoundError,
    StockUnavailableError,
    ValidationError,
)
from .notifications import OrderNotifier
from .repository import OrderRepository, ProductRepository
from .state_machine import OrderStateMachine

logger = logging.getLogger(__name__)

CODE_ATTEMPTS = 3


class OrderTransitionEngine:
    """Application service running every interactive order action.

    Producer actions take the caller's producer id, buyer actions the
    caller's user id; ownership is checked by the state machine against
    the order's snapshots. Mutating actions take the ``row_version`` the
    caller last read and return the order with its new version.
    """

    def __init__(
        self,
        orders: OrderRepository,
        products: ProductRepository,
        notifier: OrderNotifier,
        media: MediaStoragePort,
        clock: Clock,
        codes: CodeGenerator,
        state_machine: Optional[OrderStateMachine] = None,
    ):
        self.orders = orders
        self.products = products
        self.notifier = notifier
        self.media = media
        self.clock = clock
        self.codes = codes
        self.state_machine = state_machine or OrderStateMachine()

    # ---- helpers ----
    def _load(self, code: str) -> Order:
        order = self.orders.get_by_code(code)
        if order is None:
            raise OrderNotFoundError()
        return order

    def _load_current(self, code: str, row_version: int) -> Order:
        # A token that is already stale is a conflict, whatever the guards
        # would say about state the caller has not seen.
        order = self._load(code)
        if order.row_version != row_version:
            raise ConcurrencyConflictError()
        return order

    def _persist(self, before: Order, planned: Order, row_version: int) -> Order:
        with transaction.atomic():
            saved = self.orders.update(planned, row_version)
        self._log_transition(before, saved)
        return saved

    def _log_transition(self, before: Order, after: Order) -> None:
        logger.info(
            "order transitioned",
            extra={
                "order_id": after.id,
                "order_code": after.code,
                "from_status": before.status.value,
                "to_status": after.status.value,
                "row_version": after.row_version,
            },
        )

    # ---- creation ----
    def create(self, user_id: int, product_id: int, quantity: int, producer_id: Optional[int] = None) -> Order:
        """Create a PendingReview order for ``quantity`` units of a product.

        Stock is only checked here, not reserved; the decrement happens
        when the producer accepts. ``producer_id`` is the caller's producer
        account, when they also sell.

        Raises:
            ValidationError: ``INVALID_QUANTITY``.
            BusinessRuleError: Product missing or unavailable, or
                ``SELF_PURCHASE``.
            StockUnavailableError: Stock below the requested quantity.
        """
        product = self.products.get_available(product_id)
        now = self.clock.now()
        for attempt in range(1, CODE_ATTEMPTS + 1):
            draft = self.state_machine.new_order(
                code=self.codes.new_code(),
                user_id=user_id,
                product=product,
                quantity=quantity,
                now=now,
                buyer_producer_id=producer_id,
            )
            try:
                # Savepoint: a duplicate code only rolls back this block.
                with transaction.atomic():
                    order = self.orders.add(draft)
                break
            except IntegrityError:
                if attempt == CODE_ATTEMPTS:
                    raise
                logger.warning("order code collision, regenerating", extra={"attempt": attempt})
        logger.info(
            "order created",
            extra={"order_id": order.id, "order_code": order.code, "total_cents": order.total_cents},
        )
        self.notifier.order_created(order)
        return order

    # ---- producer actions ----
    def accept(self, producer_id: int, code: str, row_version: int, notes: Optional[str] = None) -> Order:
        """Accept a pending order and take its units out of stock.

        The order write comes first so a stale token is reported as a
        concurrency conflict rather than as missing stock.

        Raises:
            ConcurrencyConflictError: ``row_version`` is stale.
            StockUnavailableError: Not enough stock, or a concurrent
                decrement won the race. Nothing is written.
        """
        order = self._load_current(code, row_version)
        now = self.clock.now()
        planned = self.state_machine.accept(order, producer_id, now, notes)

        with transaction.atomic():
            saved = self.orders.update(planned, row_version)
            if not self.products.try_decrement(order.product_id, order.quantity_requested):
                raise StockUnavailableError()
        self._log_transition(order, saved)

        self.notifier.order_accepted(saved)
        return saved

    def reject(self, producer_id: int, code: str, row_version: int, reason: str) -> Order:
        order = self._load_current(code, row_version)
        planned = self.state_machine.reject(order, producer_id, self.clock.now(), reason)
        saved = self._persist(order, planned, row_version)
        self.notifier.order_rejected(saved)
        return saved

    def mark_preparing(self, producer_id: int, code: str, row_version: int) -> Order:
        order = self._load_current(code, row_version)
        planned = self.state_machine.mark_preparing(order, producer_id)
        saved = self._persist(order, planned, row_version)
        self.notifier.order_preparing(saved, at=self.clock.now())
        return saved

    def mark_dispatched(self, producer_id: int, code: str, row_version: int) -> Order:
        order = self._load_current(code, row_version)
        planned = self.state_machine.mark_dispatched(order, producer_id)
        saved = self._persist(order, planned, row_version)
        self.notifier.order_dispatched(saved, at=self.clock.now())
        return saved

    def mark_delivered(self, producer_id: int, code: str, row_version: int) -> Order:
        order = self._load_current(code, row_version)
        now = self.clock.now()
        planned = self.state_machine.mark_delivered(order, producer_id, now)
        saved = self._persist(order, planned, row_version)
        self.notifier.order_delivered(saved, at=now)
        return saved

    # ---- buyer actions ----
    def upload_payment(self, user_id: int, code: str, row_version: int, image: Optional[PaymentImage]) -> Order:
        """Store the payment proof and move the order to PaymentSubmitted.

        Raises:
            ValidationError: ``PAYMENT_IMAGE_REQUIRED`` for a missing image.
            BusinessRuleError: Guards, ``PAYMENT_DEADLINE_EXPIRED`` or
                ``PAYMENT_UPLOAD_FAILED``.
            ConcurrencyConflictError: ``row_version`` is stale; the
                uploaded proof is deleted again.
        """
        if image is None or not image.content:
            raise ValidationError("PAYMENT_IMAGE_REQUIRED", "A payment proof must be attached.")
        order = self._load_current(code, row_version)
        now = self.clock.now()
        self.state_machine.check_payment_upload(order, user_id, now)

        uploaded = self._upload(image, order)
        try:
            planned = self.state_machine.submit_payment(order, user_id, now, uploaded.url)
            saved = self._persist(order, planned, row_version)
        except Exception:
            self._discard_upload(uploaded, order)
            raise

        self.notifier.payment_submitted(saved)
        return saved

    def _upload(self, image: PaymentImage, order: Order) -> UploadedMedia:
        try:
            uploaded = self.media.upload(image, order.id)
        except Exception as exc:
            logger.error("payment proof upload failed", exc_info=True, extra={"order_id": order.id})
            raise BusinessRuleError("PAYMENT_UPLOAD_FAILED", "The payment proof could not be uploaded. Try again.") from exc
        if uploaded is None or not uploaded.url:
            if uploaded is not None:
                self._discard_upload(uploaded, order)
            raise BusinessRuleError("PAYMENT_UPLOAD_FAILED", "The payment proof URL could not be obtained.")
        return uploaded

    def _discard_upload(self, uploaded: UploadedMedia, order: Order) -> None:
        if not uploaded.public_id:
            return
        try:
            self.media.delete(uploaded.public_id)
        except Exception:
            logger.warning(
                "payment proof cleanup failed",
                exc_info=True,
                extra={"order_id": order.id, "public_id": uploaded.public_id},
            )

    def confirm(self, user_id: int, code: str, row_version: int, answer: str) -> Order:
        """Record the buyer's answer: ``yes`` completes, ``no`` disputes."""
        order = self._load_current(code, row_version)
        planned = self.state_machine.confirm(order, user_id, self.clock.now(), answer)
        saved = self._persist(order, planned, row_version)
        if saved.status == OrderStatus.COMPLETED:
            self.notifier.order_completed(saved, auto_completed=False)
        else:
            self.notifier.order_disputed(saved)
        return saved

    def cancel_by_user(self, user_id: int, code: str, row_version: int) -> Order:
        order = self._load_current(code, row_version)
        planned = self.state_machine.cancel_by_user(order, user_id)
        saved = self._persist(order, planned, row_version)
        self.notifier.order_cancelled(saved, at=self.clock.now())
        return saved

    # ---- reads ----
    def get_for_buyer(self, user_id: int, code: str) -> Order:
        order = self._load_visible(code)
        if order.user_id != user_id:
            raise NotAuthorizedError()
        return order

    def get_for_producer(self, producer_id: int, code: str) -> Order:
        order = self._load_visible(code)
        if order.producer_id_snapshot != producer_id:
            raise NotAuthorizedError()
        return order

    def list_for_buyer(self, user_id: int, page: int = 1, page_size: int = 20) -> tuple[int, list[Order]]:
        page, page_size = max(1, page), max(1, min(100, page_size))
        return self.orders.list_for_user(user_id, offset=(page - 1) * page_size, limit=page_size)

    def list_for_producer(self, producer_id: int, page: int = 1, page_size: int = 20) -> tuple[int, list[Order]]:
        page, page_size = max(1, page), max(1, min(100, page_size))
        return self.orders.list_for_producer(producer_id, offset=(page - 1) * page_size, limit=page_size)

    def _load_visible(self, code: str) -> Order:
        order = self._load(code)
        if not order.is_available:
            raise OrderNotFoundError()
        return order
