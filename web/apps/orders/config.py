"""Lifecycle configuration read from Django settings.

Values are clamped here so the rest of the code can trust them:
deadlines stay within sane hour ranges and scanners never tick faster
than every 30 seconds.
"""

from dataclasses import dataclass
from datetime import timedelta

from django.conf import settings

PAYMENT_DEADLINE_BOUNDS = (1, 168)
CONFIRM_DEADLINE_BOUNDS = (1, 336)
MIN_SCAN_INTERVAL_SECONDS = 30


def _clamp(value: int, bounds: tuple[int, int]) -> int:
    low, high = bounds
    return max(low, min(high, int(value)))


@dataclass(frozen=True)
class DeadlinePolicy:
    """How long each human party has before a scanner acts for them.

    Attributes:
        payment_upload_hours: Hours the buyer has to upload the payment
            proof once the producer accepts (1..168).
        delivered_confirm_hours: Hours the buyer has to confirm reception
            once the producer marks the order delivered (1..336).
    """

    payment_upload_hours: int = 24
    delivered_confirm_hours: int = 48

    def __post_init__(self):
        object.__setattr__(self, "payment_upload_hours", _clamp(self.payment_upload_hours, PAYMENT_DEADLINE_BOUNDS))
        object.__setattr__(
            self, "delivered_confirm_hours", _clamp(self.delivered_confirm_hours, CONFIRM_DEADLINE_BOUNDS)
        )

    @property
    def payment_upload(self) -> timedelta:
        return timedelta(hours=self.payment_upload_hours)

    @property
    def delivered_confirm(self) -> timedelta:
        return timedelta(hours=self.delivered_confirm_hours)

    @classmethod
    def from_settings(cls) -> "DeadlinePolicy":
        return cls(
            payment_upload_hours=getattr(settings, "ORDERS_PAYMENT_UPLOAD_DEADLINE_HOURS", 24),
            delivered_confirm_hours=getattr(settings, "ORDERS_DELIVERED_CONFIRM_DEADLINE_HOURS", 48),
        )


@dataclass(frozen=True)
class ScannerOptions:
    """Options of one background scanner.

    Attributes:
        scan_interval_seconds: Seconds between cycles, never below 30.
        batch_size: Maximum number of candidate orders per cycle.
        send_emails: Whether to notify parties after each transition.
    """

    scan_interval_seconds: int = 60
    batch_size: int = 100
    send_emails: bool = True

    def __post_init__(self):
        object.__setattr__(
            self, "scan_interval_seconds", max(MIN_SCAN_INTERVAL_SECONDS, int(self.scan_interval_seconds))
        )
        object.__setattr__(self, "batch_size", max(1, int(self.batch_size)))

    @classmethod
    def from_settings(cls, name: str) -> "ScannerOptions":
        """Build options from a settings dict such as ``ORDERS_EXPIRY_JOB``.

        Missing keys fall back to the dataclass defaults.
        """
        raw = getattr(settings, name, None) or {}
        return cls(
            scan_interval_seconds=raw.get("SCAN_INTERVAL_SECONDS", cls.scan_interval_seconds),
            batch_size=raw.get("BATCH_SIZE", cls.batch_size),
            send_emails=bool(raw.get("SEND_EMAILS", cls.send_emails)),
        )
