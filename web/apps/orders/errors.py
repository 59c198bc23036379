"""Error taxonomy for the order lifecycle.

Every error carries a short machine-readable ``code`` (the same
UPPER_SNAKE style the API returns in ``detail``) and a human-readable
``message``. Views map the classes to HTTP status codes; scanners use them
to decide whether a failing order is skipped quietly or logged.
"""


class OrderError(Exception):
    """Base class for every error raised by the orders domain.

    Attributes:
        code: Stable identifier of the violated rule (e.g. ``ORDER_NOT_PENDING``).
        message: Human-readable explanation for the caller.
        retryable: True when the same request may succeed after the caller
            refreshes its view of the order.
    """

    retryable = False

    def __init__(self, code: str, message: str | None = None):
        self.code = code
        self.message = message or code
        super().__init__(code)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code!r}, {self.message!r})"


class ValidationError(OrderError):
    """Malformed or missing input. Never retried automatically."""


class BusinessRuleError(OrderError):
    """A guard rejected the action (wrong state, wrong actor, ...)."""


class OrderNotFoundError(BusinessRuleError):
    def __init__(self, message: str = "Order not found."):
        super().__init__("ORDER_NOT_FOUND", message)


class NotAuthorizedError(BusinessRuleError):
    def __init__(self, message: str = "Not authorized to act on this order."):
        super().__init__("NOT_AUTHORIZED", message)


class StockUnavailableError(BusinessRuleError):
    """Insufficient stock or a lost race on the stock decrement."""

    retryable = True

    def __init__(self, message: str = "Insufficient stock or concurrent update detected. Refresh and try again."):
        super().__init__("INSUFFICIENT_STOCK", message)


class ConcurrencyConflictError(OrderError):
    """The presented row version is stale: another writer committed first."""

    retryable = True

    def __init__(self, message: str = "The order was modified by someone else. Refresh and try again."):
        super().__init__("STALE_ORDER", message)


class NotificationError(OrderError):
    """A best-effort side effect (email, media cleanup) failed.

    Only ever logged; it is never propagated to the caller of a transition.
    """

    def __init__(self, event: str, order_id: int | None, cause: BaseException | str):
        self.event = event
        self.order_id = order_id
        self.cause = cause
        super().__init__("NOTIFICATION_FAILED", f"{event} for order {order_id}: {cause}")
