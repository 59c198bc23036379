"""Best-effort notifications fired after a committed transition.

``OrderNotifier`` resolves the counterpart's contact and calls the email
port. Each email is isolated: a missing contact or a failing send is
wrapped in ``NotificationError``, logged, and swallowed, so one failure
never blocks the next email nor reaches the caller of the transition.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from .domain import Contact, ContactDirectoryPort, Order, OrderEmailPort
from .errors import NotificationError

logger = logging.getLogger(__name__)


class OrderNotifier:
    """Send lifecycle emails to buyers and producers.

    Every public method returns the number of emails actually handed to
    the email port, which the scanners report and tests assert on.
    """

    def __init__(self, email: OrderEmailPort, contacts: ContactDirectoryPort):
        self.email = email
        self.contacts = contacts

    # ---- plumbing ----
    def _buyer(self, order: Order) -> Optional[Contact]:
        return self.contacts.contact_for_user(order.user_id)

    def _producer(self, order: Order) -> Optional[Contact]:
        return self.contacts.contact_for_producer(order.producer_id_snapshot)

    def _deliver(
        self,
        event: str,
        order: Order,
        resolve: Callable[[Order], Optional[Contact]],
        send: Callable[[Contact], None],
    ) -> int:
        try:
            contact = resolve(order)
            if contact is None:
                raise NotificationError(event, order.id, "contact not found")
            send(contact)
        except Exception as exc:
            err = exc if isinstance(exc, NotificationError) else NotificationError(event, order.id, exc)
            logger.error(
                "order notification failed: %s",
                err.message,
                exc_info=exc,
                extra={"event": event, "order_id": order.id, "order_code": order.code},
            )
            return 0
        logger.info("order notification sent", extra={"event": event, "order_id": order.id})
        return 1

    # ---- lifecycle events ----
    def order_created(self, order: Order) -> int:
        # Both names are resolved up front so each email can mention the other party.
        producer = self._safe_lookup(self._producer, order)
        buyer = self._safe_lookup(self._buyer, order)
        producer_name = (producer.display_name if producer else "") or "Producer"
        buyer_name = (buyer.display_name if buyer else "") or "Customer"
        sent = self._deliver(
            "order_created.producer", order, lambda o: producer,
            lambda c: self.email.send_order_created(c, order, counterpart_name=buyer_name, is_producer=True),
        )
        sent += self._deliver(
            "order_created.buyer", order, lambda o: buyer,
            lambda c: self.email.send_order_created(c, order, counterpart_name=producer_name, is_producer=False),
        )
        return sent

    def order_accepted(self, order: Order) -> int:
        return self._deliver(
            "order_accepted", order, self._buyer,
            lambda c: self.email.send_order_accepted_awaiting_payment(c, order, payment_deadline=order.auto_close_at),
        )

    def order_rejected(self, order: Order) -> int:
        return self._deliver(
            "order_rejected", order, self._buyer,
            lambda c: self.email.send_order_rejected(
                c, order, reason=order.producer_decision_reason or "", decided_at=order.producer_decision_at
            ),
        )

    def payment_submitted(self, order: Order) -> int:
        return self._deliver(
            "payment_submitted", order, self._producer,
            lambda c: self.email.send_payment_submitted(c, order, uploaded_at=order.payment_uploaded_at),
        )

    def order_preparing(self, order: Order, at: datetime) -> int:
        return self._deliver(
            "order_preparing", order, self._buyer, lambda c: self.email.send_order_preparing(c, order, at=at)
        )

    def order_dispatched(self, order: Order, at: datetime) -> int:
        return self._deliver(
            "order_dispatched", order, self._buyer, lambda c: self.email.send_order_dispatched(c, order, at=at)
        )

    def order_delivered(self, order: Order, at: datetime) -> int:
        return self._deliver(
            "order_delivered", order, self._buyer,
            lambda c: self.email.send_order_delivered_pending_confirm(c, order, at=at),
        )

    def order_completed(self, order: Order, auto_completed: bool = False) -> int:
        at = order.user_received_at
        sent = self._deliver(
            "order_completed.producer", order, self._producer,
            lambda c: self.email.send_order_completed(
                c, order, completed_at=at, to_producer=True, auto_completed=auto_completed
            ),
        )
        sent += self._deliver(
            "order_completed.buyer", order, self._buyer,
            lambda c: self.email.send_order_completed(
                c, order, completed_at=at, to_producer=False, auto_completed=auto_completed
            ),
        )
        return sent

    def order_disputed(self, order: Order) -> int:
        return self._deliver(
            "order_disputed", order, self._producer,
            lambda c: self.email.send_order_disputed(c, order, disputed_at=order.user_received_at),
        )

    def order_cancelled(self, order: Order, at: datetime) -> int:
        return self._deliver(
            "order_cancelled", order, self._producer,
            lambda c: self.email.send_order_cancelled(c, order, cancelled_at=at),
        )

    def order_expired(self, order: Order, at: datetime) -> int:
        return self._deliver(
            "order_expired", order, self._buyer,
            lambda c: self.email.send_order_expired_by_no_payment(c, order, expired_at=at),
        )

    def _safe_lookup(self, lookup: Callable[[Order], Optional[Contact]], order: Order) -> Optional[Contact]:
        try:
            return lookup(order)
        except Exception:
            logger.warning("contact lookup failed", exc_info=True, extra={"order_id": order.id})
            return None
