"""Run the order lifecycle scanners.

    python manage.py run_order_jobs            # both scanners, until SIGINT/SIGTERM
    python manage.py run_order_jobs --once     # one cycle of each, then exit
    python manage.py run_order_jobs --only expire-awaiting-payment

Each scanner runs on its own thread and ticks on its own interval. On
SIGINT/SIGTERM every scanner is asked to stop; a cycle in progress
finishes the order it is working on before the thread exits.
"""

import logging
import signal
import threading

from django.core.management.base import BaseCommand, CommandError

from apps.orders import providers

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Expire unpaid orders and auto-complete unconfirmed deliveries on a timer."

    def add_arguments(self, parser):
        parser.add_argument("--once", action="store_true", help="Run a single cycle of each scanner and exit.")
        parser.add_argument("--only", action="append", default=[], help="Scanner name to run (repeatable).")

    def handle(self, *args, **options):
        scanners = providers.get_scanners()
        if options["only"]:
            wanted = set(options["only"])
            unknown = wanted - {s.name for s in scanners}
            if unknown:
                raise CommandError(f"Unknown scanner(s): {', '.join(sorted(unknown))}")
            scanners = [s for s in scanners if s.name in wanted]

        if options["once"]:
            for scanner in scanners:
                report = scanner.run_once()
                self.stdout.write(
                    f"{scanner.name}: selected={report.selected} advanced={report.advanced} "
                    f"skipped={report.skipped} conflicts={report.conflicts} failed={report.failed}"
                )
            return

        def shutdown(signum, _frame):
            logger.info("shutdown requested", extra={"signal": signum})
            for scanner in scanners:
                scanner.stop()

        signal.signal(signal.SIGINT, shutdown)
        signal.signal(signal.SIGTERM, shutdown)

        threads = [
            threading.Thread(target=scanner.run_forever, name=scanner.name, daemon=False)
            for scanner in scanners
        ]
        for t in threads:
            t.start()
        # join with a timeout so the main thread keeps receiving signals
        while any(t.is_alive() for t in threads):
            for t in threads:
                t.join(timeout=1.0)
