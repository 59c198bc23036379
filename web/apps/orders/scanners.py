"""Background scanners that act when a human party misses a deadline.

- ``ExpiryScanner``: AcceptedAwaitingPayment orders whose buyer never
  uploaded a payment proof are moved to Expired.
- ``AutoCompletionScanner``: DeliveredPendingBuyerConfirm orders whose
  buyer never answered are moved to Completed (auto-consent).

Both follow the same cycle: select a bounded batch of candidate ids
(oldest deadline first), then process each id in its own
``transaction.atomic()`` block, re-reading the order and re-checking the
same predicates the state machine uses before writing under the row
version just read. An order that moved on in the meantime is skipped; a
lost race on the row version is swallowed; any other failure is logged
with the order id and the batch continues.

Several instances may run at once (threads or processes): re-validation
plus the row version make double processing a no-op.
"""

import logging
import threading
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from django.db import close_old_connections, transaction
from django.db.models import Q

from gateway.middleware import REQUEST_ID_CTX

from .config import ScannerOptions
from .domain import Clock, Order, OrderStatus
from .errors import ConcurrencyConflictError
from .notifications import OrderNotifier
from .repository import NO_PAYMENT_IMAGE, OrderRepository
from .state_machine import OrderStateMachine, is_auto_completion_due, is_expiry_due

logger = logging.getLogger(__name__)

ADVANCED = "advanced"
SKIPPED = "skipped"
CONFLICT = "conflict"
FAILED = "failed"


@dataclass
class ScanReport:
    """Outcome counters of one scan cycle."""

    selected: int = 0
    advanced: int = 0
    skipped: int = 0
    conflicts: int = 0
    failed: int = 0
    notified: int = 0
    interrupted: bool = False

    def record(self, outcome: str) -> None:
        if outcome == ADVANCED:
            self.advanced += 1
        elif outcome == SKIPPED:
            self.skipped += 1
        elif outcome == CONFLICT:
            self.conflicts += 1
        else:
            self.failed += 1


class DeadlineScanner:
    """Select-then-process loop shared by both scanners.

    Subclasses define which status they watch and how an overdue order is
    advanced and announced.
    """

    name = "deadline-scanner"
    status: OrderStatus

    def __init__(
        self,
        orders: OrderRepository,
        notifier: OrderNotifier,
        clock: Clock,
        options: Optional[ScannerOptions] = None,
        state_machine: Optional[OrderStateMachine] = None,
    ):
        self.orders = orders
        self.notifier = notifier
        self.clock = clock
        self.options = options or ScannerOptions()
        self.state_machine = state_machine or OrderStateMachine()
        self._stop = threading.Event()

    # ---- hooks ----
    def candidate_filter(self) -> Optional[Q]:
        return None

    def is_due(self, order: Order, now: datetime) -> bool:
        raise NotImplementedError()

    def advance(self, order: Order, now: datetime) -> Order:
        raise NotImplementedError()

    def notify(self, order: Order, now: datetime) -> int:
        raise NotImplementedError()

    # ---- cycle ----
    def select_candidates(self, now: datetime) -> list[int]:
        return self.orders.select_candidate_ids(
            self.status, now, extra_filter=self.candidate_filter(), limit=self.options.batch_size
        )

    def backlog(self, now: datetime) -> int:
        """Number of orders currently overdue for this scanner."""
        return self.orders.count_candidates(self.status, now, extra_filter=self.candidate_filter())

    def process(self, order_id: int, report: Optional[ScanReport] = None) -> str:
        """Re-validate and advance one candidate order.

        Returns:
            One of ``advanced``, ``skipped``, ``conflict`` or ``failed``.
        """
        try:
            with transaction.atomic():
                order = self.orders.get_by_id(order_id)
                now = self.clock.now()
                if order is None or not self.is_due(order, now):
                    logger.debug("candidate no longer due", extra={"scanner": self.name, "order_id": order_id})
                    return SKIPPED
                saved = self.orders.update(self.advance(order, now), order.row_version)
        except ConcurrencyConflictError:
            # Another writer committed first; its state wins.
            logger.debug("candidate changed concurrently", extra={"scanner": self.name, "order_id": order_id})
            return CONFLICT
        except Exception:
            logger.exception("failed to advance order", extra={"scanner": self.name, "order_id": order_id})
            return FAILED

        logger.info(
            "order advanced by scanner",
            extra={
                "scanner": self.name,
                "order_id": saved.id,
                "order_code": saved.code,
                "from_status": order.status.value,
                "to_status": saved.status.value,
            },
        )
        if self.options.send_emails:
            sent = self.notify(saved, now)
            if report is not None:
                report.notified += sent
        return ADVANCED

    def run_once(self) -> ScanReport:
        """Run a single cycle: select a batch, then process it item by item.

        A failing selection propagates (the cycle is aborted); per-item
        failures never do. A stop request is honoured between items.
        """
        token = REQUEST_ID_CTX.set(f"{self.name}-{uuid.uuid4().hex[:12]}")
        try:
            ids = self.select_candidates(self.clock.now())
            report = ScanReport(selected=len(ids))
            for order_id in ids:
                if self._stop.is_set():
                    report.interrupted = True
                    break
                report.record(self.process(order_id, report))
            if ids:
                logger.info("scan cycle finished", extra={"scanner": self.name, **asdict(report)})
            return report
        finally:
            REQUEST_ID_CTX.reset(token)

    # ---- lifecycle ----
    def run_forever(self) -> None:
        """Tick every ``scan_interval_seconds`` until ``stop()`` is called."""
        interval = self.options.scan_interval_seconds
        logger.info(
            "scanner started",
            extra={"scanner": self.name, "interval_s": interval, "batch_size": self.options.batch_size},
        )
        try:
            while not self._stop.wait(interval):
                close_old_connections()
                try:
                    self.run_once()
                except Exception:
                    logger.exception("scan cycle failed", extra={"scanner": self.name})
                finally:
                    close_old_connections()
        finally:
            logger.info("scanner stopped", extra={"scanner": self.name})

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()


class ExpiryScanner(DeadlineScanner):
    """Expire orders whose payment proof never arrived.

    ``auto_close_at`` is left in place as the audit trail of the missed
    deadline.
    """

    name = "expire-awaiting-payment"
    status = OrderStatus.ACCEPTED_AWAITING_PAYMENT

    def candidate_filter(self) -> Optional[Q]:
        return NO_PAYMENT_IMAGE

    def is_due(self, order: Order, now: datetime) -> bool:
        return is_expiry_due(order, now)

    def advance(self, order: Order, now: datetime) -> Order:
        return self.state_machine.expire(order, now)

    def notify(self, order: Order, now: datetime) -> int:
        return self.notifier.order_expired(order, at=now)


class AutoCompletionScanner(DeadlineScanner):
    """Complete delivered orders the buyer never confirmed."""

    name = "auto-complete-delivered"
    status = OrderStatus.DELIVERED_PENDING_BUYER_CONFIRM

    def is_due(self, order: Order, now: datetime) -> bool:
        return is_auto_completion_due(order, now)

    def advance(self, order: Order, now: datetime) -> Order:
        return self.state_machine.auto_complete(order, now)

    def notify(self, order: Order, now: datetime) -> int:
        return self.notifier.order_completed(order, auto_completed=True)
