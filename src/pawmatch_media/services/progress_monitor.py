"""
Мониторинг прогресса batch-задач.

Назначение:
- накопительные счётчики success/failed → processed и процент
- оценка оставшегося времени (ETA)
- сводка по всем задачам и статистика одной задачи

Инварианты:
- processed_items = success_count + failed_count
- progress_percent в [0, 100] и не уменьшается в пределах задачи
- завершённые задачи прогресс не принимают
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pawmatch_media.common.errors import InvalidTransitionError, NotFoundError, ValidationError
from pawmatch_media.common.time import as_utc, utc_now
from pawmatch_media.domain.enums import JobStatus
from pawmatch_media.storage.db import SessionFactory, db_session
from pawmatch_media.storage.repositories import SyncJobRepository

from .job_registry import Job, JobRegistry


@dataclass(frozen=True)
class ProgressDelta:
    """
    Приращение прогресса. total_items: новое значение знаменателя (если известно).
    """

    success: int = 0
    failed: int = 0
    total_items: int | None = None


@dataclass
class ProgressRecord:
    total_items: int
    processed_items: int
    success_count: int
    failed_count: int
    progress_percent: int
    estimated_remaining_ms: int | None = None

    @classmethod
    def from_job(cls, job: Job) -> ProgressRecord:
        return cls(
            total_items=job.total_items,
            processed_items=job.processed_items,
            success_count=job.success_count,
            failed_count=job.failed_count,
            progress_percent=job.progress_percent,
        )


@dataclass
class JobSummary:
    active_jobs: int
    completed_jobs: int
    failed_jobs: int
    total_processed: int
    last_sync_time: datetime | None


@dataclass
class JobStatistics:
    duration_ms: int
    avg_processing_time_ms: float
    success_rate: float
    error_rate: float


def compute_percent(processed: int, total: int) -> int:
    """
    round(processed / total * 100) с половиной вверх, 0 при total = 0.
    """
    if total <= 0:
        return 0
    percent = (processed * 200 + total) // (total * 2)
    return max(0, min(100, int(percent)))


def estimate_remaining(job: Job, progress: ProgressRecord, *, now: datetime | None = None) -> int:
    """
    elapsed / processed * (total - processed), мс. 0, пока ничего не обработано.
    """
    if progress.processed_items <= 0:
        return 0
    now = now or utc_now()
    elapsed_ms = max(0.0, (as_utc(now) - as_utc(job.started_at)).total_seconds() * 1000)
    remaining_items = max(0, progress.total_items - progress.processed_items)
    return int(round(elapsed_ms / progress.processed_items * remaining_items))


class ProgressMonitor:
    def __init__(
        self,
        *,
        registry: JobRegistry | None = None,
        session_factory: SessionFactory = db_session,
    ) -> None:
        self.session_factory = session_factory
        self.registry = registry or JobRegistry(session_factory=session_factory)

    def update_progress(self, job_id: str, delta: ProgressDelta) -> ProgressRecord:
        if delta.success < 0 or delta.failed < 0:
            raise ValidationError("Приращение прогресса не может быть отрицательным")
        if delta.total_items is not None and delta.total_items < 0:
            raise ValidationError("total_items не может быть отрицательным")

        def _values(current: Job) -> dict[str, Any]:
            if current.is_terminal:
                raise InvalidTransitionError(
                    "Задача завершена, прогресс не принимается",
                    details={"job_id": job_id, "status": current.status.value},
                )
            total = current.total_items if delta.total_items is None else delta.total_items
            success = current.success_count + delta.success
            failed = current.failed_count + delta.failed
            processed = success + failed
            percent = max(current.progress_percent, compute_percent(processed, total))
            return {
                "total_items": total,
                "success_count": success,
                "failed_count": failed,
                "processed_items": processed,
                "progress_percent": percent,
            }

        job = self.registry.update(job_id, _values)
        return ProgressRecord.from_job(job)

    def get_progress(self, job_id: str) -> ProgressRecord:
        job = self.registry.get_job(job_id)
        if job is None:
            raise NotFoundError("Задача не найдена", details={"job_id": job_id})
        progress = ProgressRecord.from_job(job)
        if job.status == JobStatus.running:
            progress.estimated_remaining_ms = estimate_remaining(job, progress)
        return progress

    def summarize(self) -> JobSummary:
        with self.session_factory() as session:
            repo = SyncJobRepository(session)
            counts = repo.count_by_status()
            last = repo.last_completed_at()
            total = repo.total_succeeded()
        return JobSummary(
            active_jobs=counts.get(JobStatus.running, 0),
            completed_jobs=counts.get(JobStatus.completed, 0),
            failed_jobs=counts.get(JobStatus.failed, 0),
            total_processed=total,
            last_sync_time=as_utc(last) if last else None,
        )

    def job_statistics(self, job_id: str, *, now: datetime | None = None) -> JobStatistics:
        job = self.registry.require_job(job_id)
        end = job.completed_at or now or utc_now()
        duration_ms = max(0, int((as_utc(end) - job.started_at).total_seconds() * 1000))
        processed = job.processed_items
        if processed <= 0:
            return JobStatistics(
                duration_ms=duration_ms,
                avg_processing_time_ms=0.0,
                success_rate=0.0,
                error_rate=0.0,
            )
        return JobStatistics(
            duration_ms=duration_ms,
            avg_processing_time_ms=duration_ms / processed,
            success_rate=job.success_count / processed * 100,
            error_rate=job.failed_count / processed * 100,
        )
