"""
Worker Reconciliation.

Назначение:
- периодически запускать reconciliation_job
- возвращать presence-флаги БД к фактическому состоянию blob storage
"""

from __future__ import annotations

import signal
import threading

from pawmatch_media.common.config import get_settings
from pawmatch_media.common.logging import get_project_logger, setup_logging
from pawmatch_media.jobs.reconciliation_job import run as run_reconciliation

log = get_project_logger()


def main() -> None:
    setup_logging()
    settings = get_settings()
    interval_sec = max(5, int(settings.reconciliation_interval_sec))
    stop = threading.Event()

    def _request_stop(signum, _frame) -> None:
        log.info("worker_reconciliation_stop_requested", extra={"payload": {"signal": signum}})
        stop.set()

    signal.signal(signal.SIGTERM, _request_stop)
    signal.signal(signal.SIGINT, _request_stop)

    log.info(
        "worker_reconciliation_started",
        extra={
            "payload": {
                "enabled": bool(settings.reconciliation_enabled),
                "interval_sec": interval_sec,
                "limit": int(settings.reconciliation_limit),
                "auto_fix": bool(settings.reconciliation_auto_fix),
            }
        },
    )

    while not stop.is_set():
        try:
            run_reconciliation(limit=int(settings.reconciliation_limit), cancel_event=stop)
        except Exception as e:
            log.error(
                "worker_reconciliation_error",
                extra={"payload": {"err": str(e)[:300]}},
            )
        stop.wait(interval_sec)

    log.info("worker_reconciliation_stopped")


if __name__ == "__main__":
    main()
