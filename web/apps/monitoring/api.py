"""Health endpoint: database probe plus the scanners' overdue backlog.

The backlog is the number of orders whose deadline has passed but that
the scanner has not processed yet. A steadily growing backlog means the
``run_order_jobs`` process is down or its batch size is too small; it does
not make the service unhealthy by itself.
"""

import logging

from django.db import connection
from django.http import JsonResponse
from django.utils import timezone

from apps.orders import providers

logger = logging.getLogger(__name__)


def _db_ok() -> bool:
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        return True
    except Exception:
        logger.warning("health db probe failed", exc_info=True)
        return False


def health_view(_request):
    db_ok = _db_ok()
    jobs = {}
    if db_ok:
        now = timezone.now()
        for scanner in providers.get_scanners():
            jobs[scanner.name] = {
                "backlog": scanner.backlog(now),
                "interval_s": scanner.options.scan_interval_seconds,
                "batch_size": scanner.options.batch_size,
            }

    code = 200 if db_ok else 503
    return JsonResponse(
        {"ok": db_ok, "components": {"db": {"ok": db_ok}}, "jobs": jobs},
        status=code,
    )
