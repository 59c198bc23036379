"""Service provider helpers for wiring the engine and scanners with ports.

``get_order_engine`` and ``get_scanners`` return instances wired with the
HTTP adapter clients when ``settings.USE_HTTP_ADAPTERS`` is truthy, and
with the in-process stubs otherwise (tests and local development).
Views and the ``run_order_jobs`` command only ever go through these
factories, so tests can monkeypatch a single symbol to inject fakes.
"""

from django.conf import settings

from .adapters import (
    InMemoryMediaStub,
    LoggingEmailStub,
    StaticContactDirectory,
    SystemClock,
    UuidCodeGenerator,
)
from .config import DeadlinePolicy, ScannerOptions
from .domain import ContactDirectoryPort, MediaStoragePort, OrderEmailPort
from .engine import OrderTransitionEngine
from .http_adapters import HttpContactDirectoryClient, HttpMediaClient, HttpOrderEmailClient
from .notifications import OrderNotifier
from .repository import OrderRepository, ProductRepository
from .scanners import AutoCompletionScanner, ExpiryScanner
from .state_machine import OrderStateMachine


def _use_http() -> bool:
    return bool(getattr(settings, "USE_HTTP_ADAPTERS", True))


def get_email_port() -> OrderEmailPort:
    return HttpOrderEmailClient() if _use_http() else LoggingEmailStub()


def get_media_port() -> MediaStoragePort:
    return HttpMediaClient() if _use_http() else InMemoryMediaStub()


def get_contact_directory() -> ContactDirectoryPort:
    return HttpContactDirectoryClient() if _use_http() else StaticContactDirectory()


def get_notifier() -> OrderNotifier:
    return OrderNotifier(email=get_email_port(), contacts=get_contact_directory())


def get_order_engine() -> OrderTransitionEngine:
    """Return a configured OrderTransitionEngine.

    Returns:
        OrderTransitionEngine: Engine with repositories, notifier, media
        port, system clock and UUID code generator.
    """
    return OrderTransitionEngine(
        orders=OrderRepository(),
        products=ProductRepository(),
        notifier=get_notifier(),
        media=get_media_port(),
        clock=SystemClock(),
        codes=UuidCodeGenerator(),
        state_machine=OrderStateMachine(DeadlinePolicy.from_settings()),
    )


def get_expiry_scanner() -> ExpiryScanner:
    return ExpiryScanner(
        orders=OrderRepository(),
        notifier=get_notifier(),
        clock=SystemClock(),
        options=ScannerOptions.from_settings("ORDERS_EXPIRY_JOB"),
        state_machine=OrderStateMachine(DeadlinePolicy.from_settings()),
    )


def get_auto_completion_scanner() -> AutoCompletionScanner:
    return AutoCompletionScanner(
        orders=OrderRepository(),
        notifier=get_notifier(),
        clock=SystemClock(),
        options=ScannerOptions.from_settings("ORDERS_AUTO_COMPLETE_JOB"),
        state_machine=OrderStateMachine(DeadlinePolicy.from_settings()),
    )


def get_scanners() -> list:
    return [get_expiry_scanner(), get_auto_completion_scanner()]
