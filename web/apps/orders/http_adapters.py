"""HTTP adapter clients with retries, circuit breakers, and context headers.

This module implements concrete HTTP clients for the domain ports using
``httpx``: the mailer (``OrderEmailPort``), the media store
(``MediaStoragePort``) and the contact directory
(``ContactDirectoryPort``). It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set
    by the gateway middleware (or by a scanner cycle).
- Circuit breaker per downstream service to avoid hammering unhealthy
    dependencies, with HALF_OPEN probing after a timeout.
- Simple retry policy with exponential backoff for transport errors and 5xx.
- Idempotency: emails and uploads carry an ``Idempotency-Key`` header so a
    retried request is not delivered or stored twice downstream.
"""

import hashlib
import threading
import time
from datetime import datetime
from typing import Optional
from urllib.parse import quote

import httpx
from django.conf import settings
from django.utils.module_loading import import_string

from .domain import (
    Contact,
    ContactDirectoryPort,
    MediaStoragePort,
    Order,
    OrderEmailPort,
    PaymentImage,
    UploadedMedia,
)

REQUEST_ID_CTX = import_string("gateway.middleware.REQUEST_ID_CTX")


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful probe; stays HALF_OPEN while a
      single probe is in flight; transitions back to OPEN on failure.

    This implementation is thread-safe via an internal lock, which matters
    here because both scanners and the request workers share the module
    level breakers.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._half_open_probe_in_flight = False

    @property
    def state(self) -> str:
        """Current breaker state with time-based transition handling."""
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check and update state before a protected call.

        Returns:
            str: The state at call time.

        Raises:
            RuntimeError: If the circuit is OPEN or a HALF_OPEN probe is busy.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise RuntimeError("CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                if self._half_open_probe_in_flight:
                    raise RuntimeError("CIRCUIT_HALF_OPEN_BUSY")
                self._half_open_probe_in_flight = True
            return st

    def on_success(self):
        """Record a successful call and close/reset the breaker."""
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_probe_in_flight = False

    def on_failure(self):
        """Record a failed call and open the breaker if threshold exceeded."""
        with self._lock:
            self._failures += 1
            if self._failures >= self.fail_threshold and self._state != "OPEN":
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_probe_in_flight = False

    def on_finish(self):
        """Release any HALF_OPEN probe flag after a call finishes."""
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_probe_in_flight = False


def _breaker(name: str) -> CircuitBreaker:
    return CircuitBreaker(
        name,
        getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
        getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
    )


# Per-service instances
_email_cb = _breaker("email")
_media_cb = _breaker("media")
_contacts_cb = _breaker("contacts")


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras.

    Args:
        extra: Optional dict of additional headers to include.

    Returns:
        dict: Final headers dictionary for the outgoing request.
    """
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_retries, backoff_base_seconds).

    ``max_retries`` counts the attempts made after the first one.
    """
    return (
        getattr(settings, "HTTP_RETRY_MAX", 3),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport exceptions or HTTP 5xx."""
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class _HttpClient:
    """Shared request loop: circuit-breaker precheck, retries, backoff.

    Subclasses set ``breaker`` and a ``base_url``.
    """

    breaker: CircuitBreaker

    def __init__(self, base_url: str, timeout: float | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or getattr(settings, "HTTP_TIMEOUT_SECS", 5.0)

    def _request(
        self,
        method: str,
        path: str,
        business_statuses: tuple[int, ...] = (),
        extra_headers: Optional[dict] = None,
        **kwargs,
    ) -> httpx.Response:
        """Send a request and return the final response.

        2xx responses and ``business_statuses`` (expected outcomes such as
        404 "unknown contact") count as circuit successes and are returned.

        Raises:
            RuntimeError: When the circuit is open.
            httpx.RequestError: For network/transport errors after retries.
            httpx.HTTPStatusError: For non-retriable or exhausted non-2xx responses.
        """
        max_retries, backoff = _retry_policy()
        tries = 0

        state = self.breaker.before_call()
        headers = _request_headers({"X-Circuit-State": state, "X-Retry-Count": "0", **(extra_headers or {})})

        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
                        if resp.status_code < 400 or resp.status_code in business_statuses:
                            self.breaker.on_success()
                            return resp
                        if not _should_retry(resp, None):
                            resp.raise_for_status()
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)

                    if tries > max_retries:
                        self.breaker.on_failure()
                        if exc:
                            raise exc
                        resp.raise_for_status()

                    sleep_s = backoff * (2 ** (tries - 1))  # exponential backoff
                    cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
                    time.sleep(min(sleep_s, cap))
        finally:
            self.breaker.on_finish()


# ---------------- Email Adapter ---------------- #

class HttpOrderEmailClient(_HttpClient, OrderEmailPort):
    """HTTP client for the mailer service.

    Every lifecycle email becomes ``POST /emails`` with a template name,
    the recipient, an order summary and the event context. The
    ``Idempotency-Key`` is derived from template, order, recipient and row
    version so retries of the same event collapse downstream.
    """

    breaker = _email_cb

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        super().__init__(base_url or settings.EMAIL_SERVICE_BASE_URL, timeout)

    def _send(self, template: str, to: Contact, order: Order, **context) -> None:
        key_src = f"{template}:{order.code}:{to.email}:{order.row_version}"
        payload = {
            "template": template,
            "to": {"email": to.email, "name": to.display_name},
            "order": {
                "id": order.id,
                "code": order.code,
                "product_name": order.product_name_snapshot,
                "quantity_requested": order.quantity_requested,
                "subtotal_cents": order.subtotal_cents,
                "total_cents": order.total_cents,
                "status": order.status.value,
            },
            "context": {k: (_iso(v) if isinstance(v, datetime) else v) for k, v in context.items()},
        }
        self._request(
            "POST",
            "/emails",
            json=payload,
            extra_headers={"Idempotency-Key": hashlib.sha256(key_src.encode("utf-8")).hexdigest()},
        )

    def send_order_created(self, to, order, counterpart_name, is_producer):
        self._send("order_created", to, order, counterpart_name=counterpart_name, is_producer=is_producer)

    def send_order_accepted_awaiting_payment(self, to, order, payment_deadline):
        self._send("order_accepted_awaiting_payment", to, order, payment_deadline=payment_deadline)

    def send_payment_submitted(self, to, order, uploaded_at):
        self._send("payment_submitted", to, order, uploaded_at=uploaded_at)

    def send_order_preparing(self, to, order, at):
        self._send("order_preparing", to, order, at=at)

    def send_order_dispatched(self, to, order, at):
        self._send("order_dispatched", to, order, at=at)

    def send_order_delivered_pending_confirm(self, to, order, at):
        self._send("order_delivered_pending_confirm", to, order, at=at)

    def send_order_completed(self, to, order, completed_at, to_producer, auto_completed):
        self._send(
            "order_completed_producer" if to_producer else "order_completed_customer",
            to, order, completed_at=completed_at, auto_completed=auto_completed,
        )

    def send_order_disputed(self, to, order, disputed_at):
        self._send("order_disputed", to, order, disputed_at=disputed_at)

    def send_order_rejected(self, to, order, reason, decided_at):
        self._send("order_rejected", to, order, reason=reason, decided_at=decided_at)

    def send_order_cancelled(self, to, order, cancelled_at):
        self._send("order_cancelled_by_user", to, order, cancelled_at=cancelled_at)

    def send_order_expired_by_no_payment(self, to, order, expired_at):
        self._send("order_expired_by_no_payment", to, order, expired_at=expired_at)


# ---------------- Media Adapter ---------------- #

class HttpMediaClient(_HttpClient, MediaStoragePort):
    """HTTP client for the media store (Cloudinary-like API).

    - ``POST /assets`` (multipart ``file`` + ``folder``) → ``{secure_url, public_id}``
    - ``DELETE /assets/<public_id>`` → 2xx, or 404 when already gone
    """

    breaker = _media_cb

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        super().__init__(base_url or settings.MEDIA_SERVICE_BASE_URL, timeout)

    def upload(self, image: PaymentImage, order_id: int) -> UploadedMedia:
        digest = hashlib.sha256(image.content).hexdigest()
        resp = self._request(
            "POST",
            "/assets",
            files={"file": (image.filename, image.content, image.content_type)},
            data={"folder": f"orders/{order_id}/payments"},
            extra_headers={"Idempotency-Key": f"order-{order_id}-{digest}"},
        )
        data = resp.json()
        url = data.get("secure_url") or data.get("url")
        return UploadedMedia(url=url or "", public_id=data.get("public_id") or "")

    def delete(self, public_id: str) -> None:
        self._request("DELETE", f"/assets/{quote(public_id, safe='')}", business_statuses=(404,))


# ---------------- Contacts Adapter ---------------- #

class HttpContactDirectoryClient(_HttpClient, ContactDirectoryPort):
    """HTTP client for the identity service's contact lookups.

    ``GET /users/<id>/contact`` and ``GET /producers/<id>/contact`` return
    ``{email, first_name, last_name}``; 404 maps to None.
    """

    breaker = _contacts_cb

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        super().__init__(base_url or settings.CONTACTS_SERVICE_BASE_URL, timeout)

    def _contact(self, path: str) -> Optional[Contact]:
        resp = self._request("GET", path, business_statuses=(404,))
        if resp.status_code == 404:
            return None
        data = resp.json()
        if not data.get("email"):
            return None
        return Contact(
            email=data["email"],
            first_name=data.get("first_name") or "",
            last_name=data.get("last_name") or "",
        )

    def contact_for_user(self, user_id: int) -> Optional[Contact]:
        return self._contact(f"/users/{user_id}/contact")

    def contact_for_producer(self, producer_id: int) -> Optional[Contact]:
        return self._contact(f"/producers/{producer_id}/contact")
