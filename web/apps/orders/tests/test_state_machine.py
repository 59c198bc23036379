"""Unit tests for the pure order state machine (no database)."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from apps.orders.config import DeadlinePolicy
from apps.orders.domain import Order, OrderStatus, ProductSnapshot, ReceivedAnswer
from apps.orders.errors import BusinessRuleError, NotAuthorizedError, StockUnavailableError, ValidationError
from apps.orders.state_machine import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    Action,
    OrderStateMachine,
    is_auto_completion_due,
    is_expiry_due,
    is_valid_transition,
    parse_answer,
)

S = OrderStatus
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
BUYER, PRODUCER = 11, 7


def _order(**changes) -> Order:
    base = Order(
        id=1,
        code="ORD-1",
        user_id=BUYER,
        product_id=3,
        producer_id_snapshot=PRODUCER,
        product_name_snapshot="Raw honey 500g",
        unit_price_cents_snapshot=500,
        quantity_requested=2,
        subtotal_cents=1000,
        total_cents=1000,
        created_at=NOW,
    )
    return replace(base, **changes)


@pytest.fixture
def sm():
    return OrderStateMachine(DeadlinePolicy(payment_upload_hours=24, delivered_confirm_hours=48))


def test_transition_graph_and_terminal_states():
    assert ALLOWED_TRANSITIONS == {
        S.PENDING_REVIEW: {S.ACCEPTED_AWAITING_PAYMENT, S.REJECTED, S.CANCELLED_BY_USER},
        S.ACCEPTED_AWAITING_PAYMENT: {S.PAYMENT_SUBMITTED, S.EXPIRED},
        S.PAYMENT_SUBMITTED: {S.PREPARING},
        S.PREPARING: {S.DISPATCHED},
        S.DISPATCHED: {S.DELIVERED_PENDING_BUYER_CONFIRM},
        S.DELIVERED_PENDING_BUYER_CONFIRM: {S.COMPLETED, S.DISPUTED},
    }
    assert TERMINAL_STATUSES == {S.COMPLETED, S.DISPUTED, S.REJECTED, S.CANCELLED_BY_USER, S.EXPIRED}
    assert not is_valid_transition(S.COMPLETED, S.DISPUTED)
    assert not is_valid_transition(S.PENDING_REVIEW, S.PREPARING)


def test_moves_off_the_graph_are_refused(sm):
    with pytest.raises(BusinessRuleError) as e:
        sm._move(_order(status=S.PAYMENT_SUBMITTED), Action.ACCEPT, S.ACCEPTED_AWAITING_PAYMENT)
    assert e.value.code == "INVALID_TRANSITION"
    with pytest.raises(BusinessRuleError):
        sm._move(_order(), Action.ACCEPT, S.PREPARING)


def test_new_order_refuses_own_product(sm):
    product = ProductSnapshot(id=3, producer_id=PRODUCER, name="Raw honey 500g", price_cents=750, stock=5)
    with pytest.raises(BusinessRuleError) as e:
        sm.new_order(code="ORD-X", user_id=BUYER, product=product, quantity=1, now=NOW, buyer_producer_id=PRODUCER)
    assert e.value.code == "SELF_PURCHASE"


def test_new_order_snapshots_product_and_computes_totals(sm):
    product = ProductSnapshot(id=3, producer_id=PRODUCER, name="Raw honey 500g", price_cents=750, stock=5)
    order = sm.new_order(code="ORD-X", user_id=BUYER, product=product, quantity=3, now=NOW)
    assert order.status == S.PENDING_REVIEW
    assert order.producer_id_snapshot == PRODUCER
    assert order.unit_price_cents_snapshot == 750
    assert order.subtotal_cents == order.total_cents == 2250
    assert order.auto_close_at is None


@pytest.mark.parametrize("quantity", [0, -1])
def test_new_order_rejects_non_positive_quantity(sm, quantity):
    product = ProductSnapshot(id=3, producer_id=PRODUCER, name="x", price_cents=1, stock=5)
    with pytest.raises(ValidationError) as e:
        sm.new_order(code="ORD-X", user_id=BUYER, product=product, quantity=quantity, now=NOW)
    assert e.value.code == "INVALID_QUANTITY"


def test_new_order_rejects_quantity_above_stock(sm):
    product = ProductSnapshot(id=3, producer_id=PRODUCER, name="x", price_cents=1, stock=2)
    with pytest.raises(StockUnavailableError) as e:
        sm.new_order(code="ORD-X", user_id=BUYER, product=product, quantity=3, now=NOW)
    assert e.value.retryable is True


def test_accept_sets_payment_deadline_without_mutating_input(sm):
    order = _order()
    accepted = sm.accept(order, PRODUCER, NOW, notes="  ships Monday ")
    assert accepted.status == S.ACCEPTED_AWAITING_PAYMENT
    assert accepted.auto_close_at == NOW + timedelta(hours=24)
    assert accepted.accepted_at == accepted.producer_decision_at == NOW
    assert accepted.producer_notes == "ships Monday"
    assert order.status == S.PENDING_REVIEW
    assert order.auto_close_at is None


def test_accept_by_other_producer_is_not_authorized(sm):
    with pytest.raises(NotAuthorizedError):
        sm.accept(_order(), PRODUCER + 1, NOW)


def test_availability_is_checked_before_actor(sm):
    with pytest.raises(BusinessRuleError) as e:
        sm.accept(_order(is_deleted=True), PRODUCER + 1, NOW)
    assert e.value.code == "ORDER_UNAVAILABLE"


@pytest.mark.parametrize(
    "call, code",
    [
        (lambda sm, o: sm.mark_preparing(o, PRODUCER), "ORDER_NOT_PAYMENT_SUBMITTED"),
        (lambda sm, o: sm.mark_dispatched(o, PRODUCER), "ORDER_NOT_PREPARING"),
        (lambda sm, o: sm.mark_delivered(o, PRODUCER, NOW), "ORDER_NOT_DISPATCHED"),
        (lambda sm, o: sm.confirm(o, BUYER, NOW, "yes"), "ORDER_NOT_DELIVERED"),
        (lambda sm, o: sm.submit_payment(o, BUYER, NOW, "https://media.local/p"), "ORDER_NOT_AWAITING_PAYMENT"),
        (lambda sm, o: sm.expire(o, NOW), "ORDER_NOT_AWAITING_PAYMENT"),
        (lambda sm, o: sm.auto_complete(o, NOW), "ORDER_NOT_DELIVERED"),
    ],
)
def test_illegal_transitions_from_pending_review(sm, call, code):
    order = _order()
    with pytest.raises(BusinessRuleError) as e:
        call(sm, order)
    assert e.value.code == code
    assert order == _order()


def test_reject_requires_reason_before_any_guard(sm):
    with pytest.raises(ValidationError) as e:
        sm.reject(_order(status=S.COMPLETED), PRODUCER, NOW, "   ")
    assert e.value.code == "REASON_REQUIRED"

    rejected = sm.reject(_order(), PRODUCER, NOW, "  out of season ")
    assert rejected.status == S.REJECTED
    assert rejected.producer_decision_reason == "out of season"


def test_cancel_only_by_buyer_while_pending(sm):
    with pytest.raises(NotAuthorizedError):
        sm.cancel_by_user(_order(), BUYER + 1)
    with pytest.raises(BusinessRuleError) as e:
        sm.cancel_by_user(_order(status=S.ACCEPTED_AWAITING_PAYMENT), BUYER)
    assert e.value.code == "ORDER_NOT_PENDING"
    assert sm.cancel_by_user(_order(), BUYER).status == S.CANCELLED_BY_USER


@pytest.mark.parametrize("raw, expected", [("yes", ReceivedAnswer.YES), ("  NO ", ReceivedAnswer.NO), ("Yes", ReceivedAnswer.YES)])
def test_parse_answer_normalizes(raw, expected):
    assert parse_answer(raw) == expected


@pytest.mark.parametrize("raw", ["maybe", "", None, "y", "nope"])
def test_parse_answer_rejects_other_literals(raw):
    with pytest.raises(ValidationError) as e:
        parse_answer(raw)
    assert e.value.code == "INVALID_ANSWER"


def test_confirm_yes_completes_and_no_disputes(sm):
    delivered = _order(status=S.DELIVERED_PENDING_BUYER_CONFIRM, auto_close_at=NOW + timedelta(hours=48))
    completed = sm.confirm(delivered, BUYER, NOW, "YES")
    disputed = sm.confirm(delivered, BUYER, NOW, " no ")
    assert completed.status == S.COMPLETED
    assert completed.user_received_answer == ReceivedAnswer.YES
    assert disputed.status == S.DISPUTED
    assert disputed.user_received_answer == ReceivedAnswer.NO
    assert disputed.user_received_at == NOW


def test_payment_upload_allowed_up_to_deadline_then_refused(sm):
    awaiting = _order(status=S.ACCEPTED_AWAITING_PAYMENT, auto_close_at=NOW)
    paid = sm.submit_payment(awaiting, BUYER, NOW, "https://media.local/p")
    assert paid.status == S.PAYMENT_SUBMITTED
    assert paid.auto_close_at is None
    assert paid.payment_uploaded_at == paid.payment_submitted_at == NOW

    with pytest.raises(BusinessRuleError) as e:
        sm.submit_payment(awaiting, BUYER, NOW + timedelta(seconds=1), "https://media.local/p")
    assert e.value.code == "PAYMENT_DEADLINE_EXPIRED"


def test_mark_delivered_opens_confirmation_window(sm):
    delivered = sm.mark_delivered(_order(status=S.DISPATCHED), PRODUCER, NOW)
    assert delivered.status == S.DELIVERED_PENDING_BUYER_CONFIRM
    assert delivered.user_confirm_enabled_at == NOW
    assert delivered.auto_close_at == NOW + timedelta(hours=48)


def test_expire_keeps_deadline_as_audit_trail(sm):
    deadline = NOW - timedelta(minutes=1)
    expired = sm.expire(_order(status=S.ACCEPTED_AWAITING_PAYMENT, auto_close_at=deadline), NOW)
    assert expired.status == S.EXPIRED
    assert expired.auto_close_at == deadline


def test_expire_refuses_paid_or_not_yet_due_orders(sm):
    with pytest.raises(BusinessRuleError) as e:
        sm.expire(
            _order(status=S.ACCEPTED_AWAITING_PAYMENT, auto_close_at=NOW, payment_image_url="https://media.local/p"),
            NOW,
        )
    assert e.value.code == "PAYMENT_ALREADY_UPLOADED"

    with pytest.raises(BusinessRuleError) as e:
        sm.expire(_order(status=S.ACCEPTED_AWAITING_PAYMENT, auto_close_at=NOW + timedelta(hours=1)), NOW)
    assert e.value.code == "DEADLINE_NOT_REACHED"


def test_auto_complete_consents_for_buyer_and_clears_deadline(sm):
    order = _order(status=S.DELIVERED_PENDING_BUYER_CONFIRM, auto_close_at=NOW - timedelta(hours=1))
    done = sm.auto_complete(order, NOW)
    assert done.status == S.COMPLETED
    assert done.user_received_answer == ReceivedAnswer.YES
    assert done.user_received_at == NOW
    assert done.auto_close_at is None


def test_scanner_predicates_check_status_before_deadline():
    past = NOW - timedelta(seconds=1)
    assert is_expiry_due(_order(status=S.ACCEPTED_AWAITING_PAYMENT, auto_close_at=past), NOW)
    assert not is_expiry_due(_order(status=S.PAYMENT_SUBMITTED, auto_close_at=past), NOW)
    assert not is_expiry_due(_order(status=S.ACCEPTED_AWAITING_PAYMENT, auto_close_at=past, active=False), NOW)
    assert not is_expiry_due(_order(status=S.ACCEPTED_AWAITING_PAYMENT, auto_close_at=None), NOW)
    assert is_auto_completion_due(_order(status=S.DELIVERED_PENDING_BUYER_CONFIRM, auto_close_at=past), NOW)
    assert not is_auto_completion_due(_order(status=S.ACCEPTED_AWAITING_PAYMENT, auto_close_at=past), NOW)


def test_total_invariant_holds_through_the_lifecycle(sm):
    order = _order()
    order = sm.accept(order, PRODUCER, NOW)
    order = sm.submit_payment(order, BUYER, NOW, "https://media.local/p")
    order = sm.mark_preparing(order, PRODUCER)
    order = sm.mark_dispatched(order, PRODUCER)
    order = sm.mark_delivered(order, PRODUCER, NOW)
    order = sm.confirm(order, BUYER, NOW, "yes")
    assert order.status == S.COMPLETED
    assert order.total_cents == order.subtotal_cents == order.unit_price_cents_snapshot * order.quantity_requested
