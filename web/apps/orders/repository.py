"""Repository layer for persisting orders and decrementing stock.

This module maps the domain ``Order`` dataclass to ``OrderModel`` rows
and back, so the domain layer is never coupled to Django ORM details.
Two primitives carry the concurrency guarantees of the lifecycle:

- ``OrderRepository.update`` is a conditional ``UPDATE ... WHERE
  row_version = <presented>`` that bumps the version; a stale token
  updates zero rows and raises ``ConcurrencyConflictError``.
- ``ProductRepository.try_decrement`` is a single conditional
  ``UPDATE ... SET stock = stock - n WHERE stock >= n``; there is never a
  read-modify-write pair visible to other writers.
"""

from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

from django.db.models import F, Q

from .domain import Order, OrderStatus, ProductSnapshot, ReceivedAnswer
from .errors import BusinessRuleError, ConcurrencyConflictError
from .models import OrderModel, ProductModel

# Fields a transition may change. Snapshots, ownership and identity are
# written once by `add` and never again.
MUTABLE_FIELDS = (
    "status",
    "accepted_at",
    "producer_decision_at",
    "producer_decision_reason",
    "producer_notes",
    "payment_image_url",
    "payment_uploaded_at",
    "payment_submitted_at",
    "user_confirm_enabled_at",
    "user_received_answer",
    "user_received_at",
    "auto_close_at",
    "active",
    "is_deleted",
)

NO_PAYMENT_IMAGE = Q(payment_image_url__isnull=True) | Q(payment_image_url="")


def _to_domain(obj: OrderModel) -> Order:
    return Order(
        id=obj.id,
        code=obj.code,
        user_id=obj.user_id,
        product_id=obj.product_id,
        producer_id_snapshot=obj.producer_id_snapshot,
        product_name_snapshot=obj.product_name_snapshot,
        unit_price_cents_snapshot=obj.unit_price_cents_snapshot,
        quantity_requested=obj.quantity_requested,
        subtotal_cents=obj.subtotal_cents,
        total_cents=obj.total_cents,
        created_at=obj.created_at,
        status=OrderStatus(obj.status),
        accepted_at=obj.accepted_at,
        producer_decision_at=obj.producer_decision_at,
        producer_decision_reason=obj.producer_decision_reason,
        producer_notes=obj.producer_notes,
        payment_image_url=obj.payment_image_url,
        payment_uploaded_at=obj.payment_uploaded_at,
        payment_submitted_at=obj.payment_submitted_at,
        user_confirm_enabled_at=obj.user_confirm_enabled_at,
        user_received_answer=(ReceivedAnswer(obj.user_received_answer) if obj.user_received_answer else None),
        user_received_at=obj.user_received_at,
        auto_close_at=obj.auto_close_at,
        active=obj.active,
        is_deleted=obj.is_deleted,
        row_version=obj.row_version,
    )


def _mutable_values(order: Order) -> dict:
    values = {name: getattr(order, name) for name in MUTABLE_FIELDS}
    values["status"] = order.status.value
    values["user_received_answer"] = order.user_received_answer.value if order.user_received_answer else None
    return values


class OrderRepository:
    """Repository that persists Order domain objects using Django ORM.

    The repository returns domain ``Order`` values (never ORM instances)
    and expects callers to run multi-step writes inside
    ``transaction.atomic()``.
    """

    def get_by_code(self, code: str) -> Optional[Order]:
        obj = OrderModel.objects.filter(code=code).first()
        return _to_domain(obj) if obj else None

    def get_by_id(self, order_id: int) -> Optional[Order]:
        obj = OrderModel.objects.filter(pk=order_id).first()
        return _to_domain(obj) if obj else None

    def add(self, order: Order) -> Order:
        """Persist a new order record.

        Args:
            order: Domain ``Order`` with ``id=None``.

        Returns:
            The same order with its generated ``id`` and initial
            ``row_version``.
        """
        obj = OrderModel.objects.create(
            code=order.code,
            user_id=order.user_id,
            product_id=order.product_id,
            producer_id_snapshot=order.producer_id_snapshot,
            product_name_snapshot=order.product_name_snapshot,
            unit_price_cents_snapshot=order.unit_price_cents_snapshot,
            quantity_requested=order.quantity_requested,
            subtotal_cents=order.subtotal_cents,
            total_cents=order.total_cents,
            created_at=order.created_at,
            **_mutable_values(order),
        )
        return replace(order, id=obj.id, row_version=obj.row_version)

    def update(self, order: Order, expected_version: int) -> Order:
        """Write the mutable fields of ``order`` if nobody wrote first.

        The write is a single conditional UPDATE matching both the id and
        ``expected_version``; the database serializes concurrent writers
        so at most one of them matches a given version.

        Args:
            order: The order as planned by the state machine.
            expected_version: The concurrency token the caller read or
                presented.

        Returns:
            The order carrying its new ``row_version``.

        Raises:
            ConcurrencyConflictError: If the stored version differs (or the
                row vanished).
        """
        updated = OrderModel.objects.filter(pk=order.id, row_version=expected_version).update(
            row_version=F("row_version") + 1,
            **_mutable_values(order),
        )
        if updated != 1:
            raise ConcurrencyConflictError()
        return replace(order, row_version=expected_version + 1)

    def select_candidate_ids(
        self,
        status: OrderStatus,
        now: datetime,
        extra_filter: Optional[Q] = None,
        limit: int = 100,
    ) -> list[int]:
        """Select ids of available orders in ``status`` whose deadline is due.

        Ordered by ``auto_close_at`` ascending so the oldest deadline is
        served first.
        """
        return list(
            self._due(status, now, extra_filter)
            .order_by("auto_close_at", "id")
            .values_list("id", flat=True)[:limit]
        )

    def count_candidates(self, status: OrderStatus, now: datetime, extra_filter: Optional[Q] = None) -> int:
        return self._due(status, now, extra_filter).count()

    def _due(self, status: OrderStatus, now: datetime, extra_filter: Optional[Q]):
        qs = OrderModel.objects.filter(
            is_deleted=False,
            active=True,
            status=status.value,
            auto_close_at__isnull=False,
            auto_close_at__lte=now,
        )
        if extra_filter is not None:
            qs = qs.filter(extra_filter)
        return qs

    def list_for_user(self, user_id: int, offset: int = 0, limit: int = 20) -> tuple[int, list[Order]]:
        return self._page(OrderModel.objects.filter(user_id=user_id), offset, limit)

    def list_for_producer(self, producer_id: int, offset: int = 0, limit: int = 20) -> tuple[int, list[Order]]:
        return self._page(OrderModel.objects.filter(producer_id_snapshot=producer_id), offset, limit)

    def _page(self, qs, offset: int, limit: int) -> tuple[int, list[Order]]:
        qs = qs.filter(is_deleted=False, active=True).order_by("-created_at", "-id")
        rows: Iterable[OrderModel] = qs[offset:offset + limit]
        return qs.count(), [_to_domain(o) for o in rows]


class ProductRepository:
    """Read access to products plus the atomic stock-decrement primitive."""

    def get_available(self, product_id: int) -> ProductSnapshot:
        """Return the product if it exists and can be ordered.

        Raises:
            BusinessRuleError: ``PRODUCT_NOT_FOUND`` or ``PRODUCT_UNAVAILABLE``.
        """
        obj = ProductModel.objects.filter(pk=product_id).first()
        if obj is None:
            raise BusinessRuleError("PRODUCT_NOT_FOUND", "Product not found.")
        if not obj.active or obj.is_deleted:
            raise BusinessRuleError("PRODUCT_UNAVAILABLE", "The product is not available.")
        return ProductSnapshot(
            id=obj.id,
            producer_id=obj.producer_id,
            name=obj.name,
            price_cents=obj.price_cents,
            stock=obj.stock,
        )

    def try_decrement(self, product_id: int, quantity: int) -> bool:
        """Atomically decrement stock if enough units remain.

        Args:
            product_id: Product to decrement.
            quantity: Units to remove; must be positive.

        Returns:
            True if exactly one row was decremented; False on insufficient
            stock, an unusable product, or a lost race.
        """
        if quantity <= 0:
            return False
        updated = ProductModel.objects.filter(
            pk=product_id,
            stock__gte=quantity,
            active=True,
            is_deleted=False,
        ).update(stock=F("stock") - quantity)
        return updated == 1
