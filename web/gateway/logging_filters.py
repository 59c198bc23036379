"""Logging filters for enriching log records with request context.

``RequestIdFilter`` injects the current request id (or scanner cycle id)
into log records using the ContextVar set by the gateway middleware and
the scanners, so every JSON log line of one request or one scan cycle can
be correlated.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach a ``request_id`` attribute to log records.

    If no value is present, a hyphen ("-") is used as a placeholder so
    formatters can reliably reference ``%(request_id)s``.
    """

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
