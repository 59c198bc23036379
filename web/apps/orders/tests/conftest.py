"""Shared fixtures for the orders tests.

The engine and scanners are wired with a frozen clock, sequential order
codes and the in-process stubs from ``apps.orders.adapters`` so every
assertion on timestamps, codes and sent emails is deterministic.
"""

from datetime import datetime, timedelta, timezone

import pytest

from apps.orders.adapters import InMemoryMediaStub, LoggingEmailStub, StaticContactDirectory
from apps.orders.config import DeadlinePolicy, ScannerOptions
from apps.orders.domain import Contact, PaymentImage
from apps.orders.engine import OrderTransitionEngine
from apps.orders.models import ProductModel
from apps.orders.notifications import OrderNotifier
from apps.orders.repository import OrderRepository, ProductRepository
from apps.orders.scanners import AutoCompletionScanner, ExpiryScanner
from apps.orders.state_machine import OrderStateMachine

BUYER_ID = 11
PRODUCER_ID = 7
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta) -> datetime:
        self.current += timedelta(**delta)
        return self.current


class SequentialCodes:
    def __init__(self, prefix: str = "ORD-T"):
        self.prefix = prefix
        self.n = 0

    def new_code(self) -> str:
        self.n += 1
        return f"{self.prefix}{self.n:04d}"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def codes():
    return SequentialCodes()


@pytest.fixture
def email():
    return LoggingEmailStub()


@pytest.fixture
def media():
    return InMemoryMediaStub()


@pytest.fixture
def contacts():
    return StaticContactDirectory(
        users={BUYER_ID: Contact("ana@example.com", "Ana", "Ruiz")},
        producers={PRODUCER_ID: Contact("farm@example.com", "Finca", "Sol")},
    )


@pytest.fixture
def state_machine():
    return OrderStateMachine(DeadlinePolicy(payment_upload_hours=24, delivered_confirm_hours=48))


@pytest.fixture
def notifier(email, contacts):
    return OrderNotifier(email=email, contacts=contacts)


@pytest.fixture
def engine(notifier, media, clock, codes, state_machine):
    return OrderTransitionEngine(
        orders=OrderRepository(),
        products=ProductRepository(),
        notifier=notifier,
        media=media,
        clock=clock,
        codes=codes,
        state_machine=state_machine,
    )


@pytest.fixture
def make_scanner(notifier, clock, state_machine):
    def _make(kind, **options):
        cls = {"expiry": ExpiryScanner, "auto_complete": AutoCompletionScanner}[kind]
        return cls(
            orders=OrderRepository(),
            notifier=notifier,
            clock=clock,
            options=ScannerOptions(**options),
            state_machine=state_machine,
        )

    return _make


@pytest.fixture
def make_product(db):
    def _make(stock=10, price_cents=1250, producer_id=PRODUCER_ID, name="Raw honey 500g", **extra):
        return ProductModel.objects.create(
            producer_id=producer_id, name=name, price_cents=price_cents, stock=stock, **extra
        )

    return _make


@pytest.fixture
def proof():
    return PaymentImage(content=b"\x89PNG fake", filename="proof.png", content_type="image/png")


@pytest.fixture
def drive(engine, proof):
    """Walk an order forward through the interactive actions.

    ``drive(order, "Dispatched")`` returns the order as persisted once it
    has reached that status.
    """

    steps = [
        ("AcceptedAwaitingPayment", lambda o: engine.accept(PRODUCER_ID, o.code, o.row_version)),
        ("PaymentSubmitted", lambda o: engine.upload_payment(BUYER_ID, o.code, o.row_version, proof)),
        ("Preparing", lambda o: engine.mark_preparing(PRODUCER_ID, o.code, o.row_version)),
        ("Dispatched", lambda o: engine.mark_dispatched(PRODUCER_ID, o.code, o.row_version)),
        ("DeliveredPendingBuyerConfirm", lambda o: engine.mark_delivered(PRODUCER_ID, o.code, o.row_version)),
    ]

    def _drive(order, target):
        for status, step in steps:
            order = step(order)
            if order.status.value == target:
                return order
        raise AssertionError(f"cannot drive an order to {target}")

    return _drive


@pytest.fixture
def api_engine(engine, monkeypatch):
    """Route the views to the deterministic engine."""
    monkeypatch.setattr("apps.orders.providers.get_order_engine", lambda: engine)
    return engine
