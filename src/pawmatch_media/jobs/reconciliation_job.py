"""
Reconciliation job.

Назначение:
- регулярная сверка presence-флагов БД с blob storage
- авто-исправление флагов по факту наличия объектов
- отчёт по orphan-объектам (без удаления)
"""

from __future__ import annotations

import threading

from pawmatch_media.common.config import get_settings
from pawmatch_media.common.logging import get_project_logger
from pawmatch_media.services.integrity_service import (
    EntityFilter,
    IntegrityReconciler,
    IntegrityReport,
)

log = get_project_logger()


def _maybe_scan_orphans(reconciler: IntegrityReconciler) -> None:
    orphans = reconciler.find_orphans(limit=100)
    if orphans:
        log.warning(
            "reconciliation_orphans_reported",
            extra={"payload": {"count": len(orphans), "sample": orphans[:10]}},
        )


def run(
    *,
    limit: int | None = None,
    auto_fix: bool | None = None,
    cancel_event: threading.Event | None = None,
    reconciler: IntegrityReconciler | None = None,
) -> IntegrityReport | None:
    settings = get_settings()
    if not settings.reconciliation_enabled:
        log.info("reconciliation_job_skipped", extra={"payload": {"reason": "disabled"}})
        return None

    reconcile_limit = int(limit if limit is not None else settings.reconciliation_limit)
    fix = settings.reconciliation_auto_fix if auto_fix is None else auto_fix
    deadline_sec = int(settings.reconciliation_deadline_sec) or None
    log.info(
        "reconciliation_job_started",
        extra={"payload": {"limit": reconcile_limit, "auto_fix": fix, "deadline_sec": deadline_sec}},
    )

    reconciler = reconciler or IntegrityReconciler()
    report = reconciler.reconcile(
        fix,
        EntityFilter(limit=reconcile_limit if reconcile_limit > 0 else None),
        cancel_event=cancel_event,
        deadline_sec=deadline_sec,
        source="job",
    )

    try:
        _maybe_scan_orphans(reconciler)
    except Exception as e:
        log.warning(
            "reconciliation_orphan_scan_failed",
            extra={"payload": {"err": str(e)[:300]}},
        )

    log.info(
        "reconciliation_job_finished",
        extra={
            "payload": {
                "checked": report.checked,
                "discrepancies": len(report.discrepancies),
                "fixed": report.fixed,
                "cancelled": report.cancelled,
                "deadline_exceeded": report.deadline_exceeded,
            }
        },
    )
    return report
