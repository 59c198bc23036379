"""Order lifecycle state machine.

Pure decision logic: given an order, the caller identity and an action,
decide whether the action is permitted and return the order as it must
look afterwards. Nothing here touches the database, the clock or the
network; the engine and the scanners supply ``now`` and persist the
result.

Every planned transition returns a new ``Order`` (the dataclass is
frozen), so a failing guard always leaves the caller's order untouched.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from .config import DeadlinePolicy
from .domain import Order, OrderStatus, ProductSnapshot, ReceivedAnswer
from .errors import BusinessRuleError, NotAuthorizedError, StockUnavailableError, ValidationError

S = OrderStatus


class Action(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    UPLOAD_PAYMENT = "upload_payment"
    MARK_PREPARING = "mark_preparing"
    MARK_DISPATCHED = "mark_dispatched"
    MARK_DELIVERED = "mark_delivered"
    CONFIRM = "confirm"
    CANCEL_BY_USER = "cancel_by_user"
    EXPIRE = "expire"
    AUTO_COMPLETE = "auto_complete"


class Actor(str, Enum):
    BUYER = "buyer"
    PRODUCER = "producer"
    SYSTEM = "system"


@dataclass(frozen=True)
class Rule:
    """Who may run an action, from which status, and where it can lead.

    Attributes:
        actor: The party allowed to initiate the action.
        source: The single legal predecessor status.
        targets: Statuses the action may produce.
        code: Error code raised when the order is not in ``source``.
        message: Human-readable text for that error.
    """

    actor: Actor
    source: OrderStatus
    targets: frozenset
    code: str
    message: str


RULES: dict[Action, Rule] = {
    Action.ACCEPT: Rule(
        Actor.PRODUCER, S.PENDING_REVIEW, frozenset({S.ACCEPTED_AWAITING_PAYMENT}),
        "ORDER_NOT_PENDING", "Only pending orders can be accepted.",
    ),
    Action.REJECT: Rule(
        Actor.PRODUCER, S.PENDING_REVIEW, frozenset({S.REJECTED}),
        "ORDER_NOT_PENDING", "Only pending orders can be rejected.",
    ),
    Action.CANCEL_BY_USER: Rule(
        Actor.BUYER, S.PENDING_REVIEW, frozenset({S.CANCELLED_BY_USER}),
        "ORDER_NOT_PENDING", "Orders can only be cancelled before the producer decides.",
    ),
    Action.UPLOAD_PAYMENT: Rule(
        Actor.BUYER, S.ACCEPTED_AWAITING_PAYMENT, frozenset({S.PAYMENT_SUBMITTED}),
        "ORDER_NOT_AWAITING_PAYMENT", "Payment proof can only be uploaded while the order awaits payment.",
    ),
    Action.EXPIRE: Rule(
        Actor.SYSTEM, S.ACCEPTED_AWAITING_PAYMENT, frozenset({S.EXPIRED}),
        "ORDER_NOT_AWAITING_PAYMENT", "Only orders awaiting payment can expire.",
    ),
    Action.MARK_PREPARING: Rule(
        Actor.PRODUCER, S.PAYMENT_SUBMITTED, frozenset({S.PREPARING}),
        "ORDER_NOT_PAYMENT_SUBMITTED", "Orders move to 'Preparing' only from 'PaymentSubmitted'.",
    ),
    Action.MARK_DISPATCHED: Rule(
        Actor.PRODUCER, S.PREPARING, frozenset({S.DISPATCHED}),
        "ORDER_NOT_PREPARING", "Orders move to 'Dispatched' only from 'Preparing'.",
    ),
    Action.MARK_DELIVERED: Rule(
        Actor.PRODUCER, S.DISPATCHED, frozenset({S.DELIVERED_PENDING_BUYER_CONFIRM}),
        "ORDER_NOT_DISPATCHED", "Orders can be marked delivered only from 'Dispatched'.",
    ),
    Action.CONFIRM: Rule(
        Actor.BUYER, S.DELIVERED_PENDING_BUYER_CONFIRM, frozenset({S.COMPLETED, S.DISPUTED}),
        "ORDER_NOT_DELIVERED", "Only orders marked as delivered can be confirmed.",
    ),
    Action.AUTO_COMPLETE: Rule(
        Actor.SYSTEM, S.DELIVERED_PENDING_BUYER_CONFIRM, frozenset({S.COMPLETED}),
        "ORDER_NOT_DELIVERED", "Only orders marked as delivered can be auto-completed.",
    ),
}

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset] = {}
for _rule in RULES.values():
    ALLOWED_TRANSITIONS[_rule.source] = ALLOWED_TRANSITIONS.get(_rule.source, frozenset()) | _rule.targets

TERMINAL_STATUSES: frozenset = frozenset(s for s in OrderStatus if s not in ALLOWED_TRANSITIONS)


def is_valid_transition(source: OrderStatus, target: OrderStatus) -> bool:
    """Return True if the graph has an edge ``source -> target``."""
    return target in ALLOWED_TRANSITIONS.get(source, frozenset())


def parse_answer(raw: Optional[str]) -> ReceivedAnswer:
    """Parse the buyer's reception answer.

    Only the literals ``yes`` and ``no`` are accepted, case-insensitive and
    ignoring surrounding whitespace.

    Raises:
        ValidationError: With code ``INVALID_ANSWER`` for anything else.
    """
    normalized = (raw or "").strip().lower()
    try:
        return ReceivedAnswer(normalized)
    except ValueError:
        raise ValidationError("INVALID_ANSWER", "Answer must be 'yes' or 'no'.") from None


def is_expiry_due(order: Order, now: datetime) -> bool:
    """Whether the expiry scanner may move ``order`` to Expired at ``now``.

    Status is checked before the deadline is read: ``auto_close_at`` only
    means "payment deadline" while the order awaits payment.
    """
    return (
        order.is_available
        and order.status == S.ACCEPTED_AWAITING_PAYMENT
        and not order.has_payment_image
        and order.auto_close_at is not None
        and order.auto_close_at <= now
    )


def is_auto_completion_due(order: Order, now: datetime) -> bool:
    """Whether the auto-completion scanner may complete ``order`` at ``now``."""
    return (
        order.is_available
        and order.status == S.DELIVERED_PENDING_BUYER_CONFIRM
        and order.auto_close_at is not None
        and order.auto_close_at <= now
    )


class OrderStateMachine:
    """Guards and field mutations for every lifecycle action.

    Guards run in a fixed order: input validation, availability, actor,
    current status, then the action's own business checks. The first
    failing guard raises; none of them ever silently no-ops.
    """

    def __init__(self, deadlines: Optional[DeadlinePolicy] = None):
        self.deadlines = deadlines or DeadlinePolicy()

    # ---- creation ----
    def new_order(
        self,
        *,
        code: str,
        user_id: int,
        product: ProductSnapshot,
        quantity: int,
        now: datetime,
        buyer_producer_id: Optional[int] = None,
    ) -> Order:
        """Build a PendingReview order with its product snapshots.

        ``buyer_producer_id`` is the producer account of the buyer, if any;
        nobody may order their own product.

        Raises:
            ValidationError: ``INVALID_QUANTITY`` if quantity is not positive.
            BusinessRuleError: ``SELF_PURCHASE`` for the product's own producer.
            StockUnavailableError: If the product stock is below ``quantity``.
        """
        if quantity is None or int(quantity) <= 0:
            raise ValidationError("INVALID_QUANTITY", "Requested quantity must be greater than zero.")
        if buyer_producer_id is not None and buyer_producer_id == product.producer_id:
            raise BusinessRuleError("SELF_PURCHASE", "You cannot order your own products.")
        if product.stock < quantity:
            raise StockUnavailableError("Insufficient stock for the requested quantity.")
        subtotal = product.price_cents * quantity
        return Order(
            id=None,
            code=code,
            user_id=user_id,
            product_id=product.id,
            producer_id_snapshot=product.producer_id,
            product_name_snapshot=product.name,
            unit_price_cents_snapshot=product.price_cents,
            quantity_requested=quantity,
            subtotal_cents=subtotal,
            total_cents=subtotal,
            created_at=now,
            status=S.PENDING_REVIEW,
        )

    # ---- guards ----
    def check(self, order: Order, action: Action, actor_id: Optional[int] = None) -> Rule:
        """Run the availability, actor and status guards for ``action``.

        Returns:
            The Rule of the action, for callers that need its targets.

        Raises:
            BusinessRuleError: ``ORDER_UNAVAILABLE`` or the rule's status code.
            NotAuthorizedError: If ``actor_id`` does not own the order side.
        """
        rule = RULES[action]
        if not order.is_available:
            raise BusinessRuleError("ORDER_UNAVAILABLE", "The order is not available.")
        if rule.actor == Actor.PRODUCER and order.producer_id_snapshot != actor_id:
            raise NotAuthorizedError("Not authorized to update this order.")
        if rule.actor == Actor.BUYER and order.user_id != actor_id:
            raise NotAuthorizedError("Not authorized to act on this order.")
        if order.status != rule.source:
            raise BusinessRuleError(rule.code, rule.message)
        return rule

    def check_payment_upload(self, order: Order, buyer_id: int, now: datetime) -> None:
        """Guards that must pass before the payment proof is even uploaded."""
        self.check(order, Action.UPLOAD_PAYMENT, buyer_id)
        if order.auto_close_at is not None and now > order.auto_close_at:
            raise BusinessRuleError("PAYMENT_DEADLINE_EXPIRED", "The deadline to upload the payment proof has passed.")

    def _move(self, order: Order, action: Action, target: OrderStatus, **changes) -> Order:
        if target not in RULES[action].targets or not is_valid_transition(order.status, target):
            raise BusinessRuleError("INVALID_TRANSITION", f"{action.value} cannot lead to {target.value}.")
        return replace(order, status=target, **changes)

    # ---- producer actions ----
    def accept(self, order: Order, producer_id: int, now: datetime, notes: Optional[str] = None) -> Order:
        self.check(order, Action.ACCEPT, producer_id)
        return self._move(
            order, Action.ACCEPT, S.ACCEPTED_AWAITING_PAYMENT,
            producer_notes=(notes.strip() if notes and notes.strip() else None),
            producer_decision_at=now,
            accepted_at=now,
            auto_close_at=now + self.deadlines.payment_upload,
        )

    def reject(self, order: Order, producer_id: int, now: datetime, reason: Optional[str]) -> Order:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("REASON_REQUIRED", "A rejection reason is required.")
        self.check(order, Action.REJECT, producer_id)
        return self._move(
            order, Action.REJECT, S.REJECTED,
            producer_decision_at=now,
            producer_decision_reason=reason,
        )

    def mark_preparing(self, order: Order, producer_id: int) -> Order:
        self.check(order, Action.MARK_PREPARING, producer_id)
        return self._move(order, Action.MARK_PREPARING, S.PREPARING)

    def mark_dispatched(self, order: Order, producer_id: int) -> Order:
        self.check(order, Action.MARK_DISPATCHED, producer_id)
        return self._move(order, Action.MARK_DISPATCHED, S.DISPATCHED)

    def mark_delivered(self, order: Order, producer_id: int, now: datetime) -> Order:
        self.check(order, Action.MARK_DELIVERED, producer_id)
        return self._move(
            order, Action.MARK_DELIVERED, S.DELIVERED_PENDING_BUYER_CONFIRM,
            user_confirm_enabled_at=now,
            auto_close_at=now + self.deadlines.delivered_confirm,
        )

    # ---- buyer actions ----
    def submit_payment(self, order: Order, buyer_id: int, now: datetime, image_url: str) -> Order:
        if not image_url or not image_url.strip():
            raise ValidationError("PAYMENT_IMAGE_REQUIRED", "The payment proof URL is missing.")
        self.check_payment_upload(order, buyer_id, now)
        return self._move(
            order, Action.UPLOAD_PAYMENT, S.PAYMENT_SUBMITTED,
            payment_image_url=image_url,
            payment_uploaded_at=now,
            payment_submitted_at=now,
            auto_close_at=None,
        )

    def confirm(self, order: Order, buyer_id: int, now: datetime, answer: Optional[str]) -> Order:
        parsed = parse_answer(answer)
        self.check(order, Action.CONFIRM, buyer_id)
        target = S.COMPLETED if parsed == ReceivedAnswer.YES else S.DISPUTED
        return self._move(
            order, Action.CONFIRM, target,
            user_received_answer=parsed,
            user_received_at=now,
        )

    def cancel_by_user(self, order: Order, buyer_id: int) -> Order:
        self.check(order, Action.CANCEL_BY_USER, buyer_id)
        return self._move(order, Action.CANCEL_BY_USER, S.CANCELLED_BY_USER, auto_close_at=None)

    # ---- system actions ----
    def expire(self, order: Order, now: datetime) -> Order:
        """Move an overdue unpaid order to Expired.

        ``auto_close_at`` is kept as the audit trail of the missed deadline.
        """
        self.check(order, Action.EXPIRE)
        if order.has_payment_image:
            raise BusinessRuleError("PAYMENT_ALREADY_UPLOADED", "A payment proof was already uploaded.")
        if not is_expiry_due(order, now):
            raise BusinessRuleError("DEADLINE_NOT_REACHED", "The payment deadline has not passed yet.")
        return self._move(order, Action.EXPIRE, S.EXPIRED)

    def auto_complete(self, order: Order, now: datetime) -> Order:
        """Complete an order whose buyer never answered, consenting on their behalf."""
        self.check(order, Action.AUTO_COMPLETE)
        if not is_auto_completion_due(order, now):
            raise BusinessRuleError("DEADLINE_NOT_REACHED", "The confirmation deadline has not passed yet.")
        return self._move(
            order, Action.AUTO_COMPLETE, S.COMPLETED,
            user_received_answer=ReceivedAnswer.YES,
            user_received_at=now,
            auto_close_at=None,
        )
