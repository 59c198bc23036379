"""Unit tests for the HTTP adapters to the email, media and contacts services.

These tests verify that the HTTP clients build the expected requests and
map responses (success, business 404, errors) correctly by monkeypatching
``httpx.Client.request`` and asserting the adapter behavior.
"""
from datetime import datetime, timezone

import httpx
import pytest

from apps.orders import http_adapters
from apps.orders.domain import Contact, Order, OrderStatus, PaymentImage
from apps.orders.http_adapters import HttpContactDirectoryClient, HttpMediaClient, HttpOrderEmailClient
from gateway.middleware import REQUEST_ID_CTX

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
ORDER = Order(
    id=42,
    code="ORD-ABC",
    user_id=11,
    product_id=3,
    producer_id_snapshot=7,
    product_name_snapshot="Raw honey 500g",
    unit_price_cents_snapshot=500,
    quantity_requested=2,
    subtotal_cents=1000,
    total_cents=1000,
    created_at=NOW,
    status=OrderStatus.ACCEPTED_AWAITING_PAYMENT,
    auto_close_at=NOW,
    row_version=2,
)


@pytest.fixture(autouse=True)
def closed_breakers():
    for cb in (http_adapters._email_cb, http_adapters._media_cb, http_adapters._contacts_cb):
        cb.on_success()


class _Calls(list):
    replies: list


@pytest.fixture
def calls(monkeypatch):
    """Record outgoing requests and answer them from a queue of responses."""
    recorded = _Calls()
    replies = []

    def fake_request(self, method, url, headers=None, **kw):
        recorded.append({"method": method, "url": url, "headers": dict(headers or {}), **kw})
        status, body = replies.pop(0) if replies else (200, {})
        return httpx.Response(status, json=body, request=httpx.Request(method, url))

    monkeypatch.setattr(httpx.Client, "request", fake_request, raising=True)
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)
    recorded.replies = replies
    return recorded


def test_email_posts_template_payload_with_idempotency_key(calls):
    to = Contact("ana@example.com", "Ana", "Ruiz")
    token = REQUEST_ID_CTX.set("req-123")
    try:
        HttpOrderEmailClient(base_url="http://email/").send_order_accepted_awaiting_payment(
            to, ORDER, payment_deadline=NOW
        )
    finally:
        REQUEST_ID_CTX.reset(token)

    [call] = calls
    assert (call["method"], call["url"]) == ("POST", "http://email/emails")
    payload = call["json"]
    assert payload["template"] == "order_accepted_awaiting_payment"
    assert payload["to"] == {"email": "ana@example.com", "name": "Ana Ruiz"}
    assert payload["order"]["code"] == "ORD-ABC"
    assert payload["context"] == {"payment_deadline": NOW.isoformat()}
    assert call["headers"]["X-Request-ID"] == "req-123"
    assert len(call["headers"]["Idempotency-Key"]) == 64


def test_email_completed_template_depends_on_recipient(calls):
    client = HttpOrderEmailClient(base_url="http://email")
    to = Contact("farm@example.com")
    client.send_order_completed(to, ORDER, completed_at=NOW, to_producer=True, auto_completed=True)
    client.send_order_completed(to, ORDER, completed_at=NOW, to_producer=False, auto_completed=True)
    assert [c["json"]["template"] for c in calls] == ["order_completed_producer", "order_completed_customer"]
    assert calls[0]["json"]["context"]["auto_completed"] is True


def test_email_client_error_is_raised(calls):
    calls.replies.append((422, {"detail": "bad template"}))
    with pytest.raises(httpx.HTTPStatusError):
        HttpOrderEmailClient(base_url="http://email").send_order_cancelled(Contact("a@b.c"), ORDER, cancelled_at=NOW)
    assert len(calls) == 1


def test_media_upload_returns_url_and_public_id(calls):
    calls.replies.append((201, {"secure_url": "https://cdn/x.png", "public_id": "orders/42/payments/x"}))
    image = PaymentImage(content=b"png", filename="x.png", content_type="image/png")
    uploaded = HttpMediaClient(base_url="http://media").upload(image, order_id=42)

    assert uploaded.url == "https://cdn/x.png"
    assert uploaded.public_id == "orders/42/payments/x"
    [call] = calls
    assert call["data"] == {"folder": "orders/42/payments"}
    assert call["files"]["file"] == ("x.png", b"png", "image/png")
    assert call["headers"]["Idempotency-Key"].startswith("order-42-")


def test_media_delete_tolerates_missing_asset(calls):
    calls.replies.append((404, {"detail": "gone"}))
    HttpMediaClient(base_url="http://media").delete("orders/42/payments/x")
    assert calls[0]["method"] == "DELETE"
    assert calls[0]["url"] == "http://media/assets/orders%2F42%2Fpayments%2Fx"


def test_contacts_lookup_maps_404_to_none(calls):
    calls.replies.extend([(200, {"email": "ana@example.com", "first_name": "Ana"}), (404, {})])
    client = HttpContactDirectoryClient(base_url="http://accounts")
    assert client.contact_for_user(11) == Contact("ana@example.com", "Ana", "")
    assert client.contact_for_producer(7) is None
    assert [c["url"] for c in calls] == ["http://accounts/users/11/contact", "http://accounts/producers/7/contact"]


def test_network_error_propagates(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 0

    def fake_request(self, method, url, **kw):
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(httpx.Client, "request", fake_request, raising=True)
    with pytest.raises(httpx.ConnectError):
        HttpContactDirectoryClient(base_url="http://accounts").contact_for_user(1)
