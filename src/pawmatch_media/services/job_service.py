"""
Сервисный слой: внешний API задач.

Назначение:
- create_job / get_job_status / get_progress
- ручной запуск сверки
- сводка по задачам и просмотр DLQ
"""

from __future__ import annotations

from typing import Any

from pawmatch_media.queue.client import ConversionQueue
from pawmatch_media.storage.db import SessionFactory, db_session

from .integrity_service import EntityFilter, IntegrityReconciler, IntegrityReport
from .job_registry import Job, JobConfig, JobRegistry
from .progress_monitor import JobStatistics, JobSummary, ProgressMonitor, ProgressRecord


class JobService:
    def __init__(
        self,
        *,
        session_factory: SessionFactory = db_session,
        queue: ConversionQueue | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.registry = JobRegistry(session_factory=session_factory)
        self.monitor = ProgressMonitor(registry=self.registry, session_factory=session_factory)
        self._queue = queue

    @property
    def queue(self) -> ConversionQueue:
        if self._queue is None:
            self._queue = ConversionQueue()
        return self._queue

    def create_job(self, config: JobConfig) -> str:
        return self.registry.create_job(config).id

    def get_job_status(self, job_id: str) -> Job:
        return self.registry.require_job(job_id)

    def get_progress(self, job_id: str) -> ProgressRecord:
        return self.monitor.get_progress(job_id)

    def job_statistics(self, job_id: str) -> JobStatistics:
        return self.monitor.job_statistics(job_id)

    def summarize(self) -> JobSummary:
        return self.monitor.summarize()

    def reconcile(self, auto_fix: bool, scope: EntityFilter | None = None) -> IntegrityReport:
        return IntegrityReconciler(session_factory=self.session_factory).reconcile(
            auto_fix, scope, source="api"
        )

    def list_dead_letters(self, limit: int = 50) -> list[dict[str, Any]]:
        return self.queue.list_dead_letters(limit)
