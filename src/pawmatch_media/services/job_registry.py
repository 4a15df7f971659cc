"""
Реестр batch-задач (sync_jobs).

Назначение:
- создание задачи в статусе pending
- переходы статусов строго по машине состояний
- чтение задачи / активных задач / последней задачи

Конкурентность:
- каждое обновление: compare-and-set по version
- при конфликте перечитываем запись и повторяем (до JOB_UPDATE_MAX_ATTEMPTS)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pawmatch_media.common.config import get_settings
from pawmatch_media.common.errors import ConflictError, InvalidTransitionError, NotFoundError
from pawmatch_media.common.ids import new_job_id
from pawmatch_media.common.logging import get_project_logger
from pawmatch_media.common.time import as_utc, utc_now
from pawmatch_media.domain import state_machine
from pawmatch_media.domain.enums import JobKind, JobStatus, PetType
from pawmatch_media.storage.db import SessionFactory, db_session
from pawmatch_media.storage.models import SyncJob
from pawmatch_media.storage.repositories import SyncJobRepository

log = get_project_logger()


@dataclass
class JobConfig:
    kind: JobKind
    pet_type: PetType | None = None
    pet_ids: list[str] | None = None
    limit: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_metadata(self) -> dict[str, Any]:
        out = dict(self.metadata)
        if self.pet_type is not None:
            out["pet_type"] = PetType(self.pet_type).value
        if self.pet_ids:
            out["pet_ids"] = list(self.pet_ids)
        if self.limit:
            out["limit"] = int(self.limit)
        return out


@dataclass
class Job:
    """
    Снимок задачи, не привязанный к сессии БД.
    """

    id: str
    kind: JobKind
    status: JobStatus
    progress_percent: int
    started_at: datetime
    completed_at: datetime | None
    error: str | None
    metadata: dict[str, Any]
    total_items: int = 0
    processed_items: int = 0
    success_count: int = 0
    failed_count: int = 0
    version: int = 1

    @classmethod
    def from_model(cls, row: SyncJob) -> Job:
        return cls(
            id=row.id,
            kind=JobKind(row.kind),
            status=JobStatus(row.status),
            progress_percent=int(row.progress_percent or 0),
            started_at=as_utc(row.started_at),
            completed_at=as_utc(row.completed_at) if row.completed_at else None,
            error=row.error,
            metadata=dict(row.job_metadata or {}),
            total_items=int(row.total_items or 0),
            processed_items=int(row.processed_items or 0),
            success_count=int(row.success_count or 0),
            failed_count=int(row.failed_count or 0),
            version=int(row.version or 1),
        )

    @property
    def is_terminal(self) -> bool:
        return state_machine.is_terminal(self.status)


class JobRegistry:
    def __init__(
        self,
        *,
        session_factory: SessionFactory = db_session,
        max_attempts: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.max_attempts = max(
            1, int(max_attempts if max_attempts is not None else get_settings().job_update_max_attempts)
        )

    # -------------------------------------------------------------------------
    # create / read
    # -------------------------------------------------------------------------
    def create_job(self, config: JobConfig) -> Job:
        row = SyncJob(
            id=new_job_id(),
            kind=JobKind(config.kind),
            status=JobStatus.pending,
            progress_percent=0,
            started_at=utc_now(),
            job_metadata=config.to_metadata(),
            total_items=0,
            processed_items=0,
            success_count=0,
            failed_count=0,
            version=1,
        )
        with self.session_factory() as session:
            SyncJobRepository(session).add(row)
            session.flush()
            job = Job.from_model(row)
        log.info("job_created", extra={"payload": {"job_id": job.id, "kind": job.kind.value}})
        return job

    def get_job(self, job_id: str) -> Job | None:
        with self.session_factory() as session:
            row = SyncJobRepository(session).get(job_id)
            return Job.from_model(row) if row else None

    def require_job(self, job_id: str) -> Job:
        job = self.get_job(job_id)
        if job is None:
            raise NotFoundError("Задача не найдена", details={"job_id": job_id})
        return job

    def list_active(self, *, limit: int = 100) -> list[Job]:
        return self.list_by_status(JobStatus.running, limit=limit)

    def list_by_status(self, status: JobStatus, *, limit: int = 1000) -> list[Job]:
        with self.session_factory() as session:
            rows = SyncJobRepository(session).list_by_status(status, limit=limit)
            return [Job.from_model(r) for r in rows]

    def last_job_id(self) -> str | None:
        with self.session_factory() as session:
            row = SyncJobRepository(session).latest()
            return row.id if row else None

    def count_by_status(self) -> dict[JobStatus, int]:
        with self.session_factory() as session:
            return SyncJobRepository(session).count_by_status()

    # -------------------------------------------------------------------------
    # updates
    # -------------------------------------------------------------------------
    def update(self, job_id: str, build_values: Callable[[Job], dict[str, Any]]) -> Job:
        """
        Read → build_values(текущий снимок) → compare-and-set.
        build_values может бросить исключение, чтобы отказаться от обновления.
        """
        for attempt in range(1, self.max_attempts + 1):
            with self.session_factory() as session:
                repo = SyncJobRepository(session)
                row = repo.get(job_id)
                if row is None:
                    raise NotFoundError("Задача не найдена", details={"job_id": job_id})
                current = Job.from_model(row)
                values = build_values(current)
                if repo.compare_and_set(job_id, expected_version=current.version, values=values):
                    session.refresh(row)
                    return Job.from_model(row)

            log.info(
                "job_update_conflict",
                extra={"payload": {"job_id": job_id, "attempt": attempt, "version": current.version}},
            )

        raise ConflictError(
            "Не удалось обновить задачу: конкурентные изменения",
            details={"job_id": job_id, "attempts": self.max_attempts},
        )

    def transition(
        self,
        job_id: str,
        status: JobStatus,
        progress_percent: int | None = None,
        error: str | None = None,
    ) -> Job:
        target = JobStatus(status)

        def _values(current: Job) -> dict[str, Any]:
            res = state_machine.transition(current.status, target)
            if not res.ok:
                raise InvalidTransitionError(
                    f"Переход {current.status.value} → {target.value} запрещён",
                    details={"job_id": job_id, "reason": res.reason},
                )
            values: dict[str, Any] = {"status": target}
            if progress_percent is not None:
                clamped = max(0, min(100, int(progress_percent)))
                values["progress_percent"] = max(current.progress_percent, clamped)
            if target == JobStatus.running:
                values["started_at"] = utc_now()
            if state_machine.is_terminal(target):
                values["completed_at"] = utc_now()
            if error is not None:
                values["error"] = error
            return values

        job = self.update(job_id, _values)
        log.info(
            "job_transition",
            extra={
                "payload": {
                    "job_id": job_id,
                    "status": job.status.value,
                    "progress_percent": job.progress_percent,
                    "error": job.error,
                }
            },
        )
        return job
