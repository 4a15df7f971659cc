"""
Batch-задача постановки конвертаций.

Виды:
- image:       животные без JPEG или WebP → convert_to_webp
- full:        все животные в scope → WebP + оптимизированный JPEG + превью
- incremental: изменённые после последней завершённой задачи → как full

Прогресс отражает постановку сообщений в очередь, а не саму конвертацию.
Ошибка задачи переводит её в failed и не роняет процесс.
"""

from __future__ import annotations

from datetime import datetime

from pawmatch_media.common.config import get_settings
from pawmatch_media.common.errors import AppError
from pawmatch_media.common.logging import get_project_logger
from pawmatch_media.common.utils import short_err
from pawmatch_media.domain.enums import JobKind, JobStatus, MessageType
from pawmatch_media.queue.client import ConversionQueue
from pawmatch_media.queue.producer import enqueue_conversion
from pawmatch_media.services.job_registry import Job, JobRegistry
from pawmatch_media.services.progress_monitor import ProgressDelta, ProgressMonitor
from pawmatch_media.storage.db import SessionFactory, db_session
from pawmatch_media.storage.repositories import PetRepository, SyncJobRepository

log = get_project_logger()

_FULL_SET = (MessageType.to_webp, MessageType.optimize_jpeg, MessageType.generate_thumbnails)

MESSAGES_BY_KIND: dict[JobKind, tuple[MessageType, ...]] = {
    JobKind.image: (MessageType.to_webp,),
    JobKind.full: _FULL_SET,
    JobKind.incremental: _FULL_SET,
}


def _select_pets(session_factory: SessionFactory, job: Job) -> list[tuple[str, str]]:
    meta = job.metadata
    pet_type = meta.get("pet_type")
    with session_factory() as session:
        pets = PetRepository(session)
        if job.kind == JobKind.image:
            rows = pets.list_missing_images(pet_type=pet_type)
        elif job.kind == JobKind.incremental:
            since: datetime | None = SyncJobRepository(session).last_completed_at()
            rows = pets.list_updated_since(since, pet_type=pet_type)
        else:
            rows = pets.list_all(pet_type=pet_type)
        selected = [(r.id, r.type) for r in rows]

    pet_ids = meta.get("pet_ids")
    if pet_ids:
        wanted = set(pet_ids)
        selected = [p for p in selected if p[0] in wanted]
    limit = int(meta.get("limit") or 0)
    if limit > 0:
        selected = selected[:limit]
    return selected


def execute_job(
    job_id: str,
    *,
    session_factory: SessionFactory = db_session,
    queue: ConversionQueue | None = None,
    batch_size: int | None = None,
) -> Job:
    registry = JobRegistry(session_factory=session_factory)
    monitor = ProgressMonitor(registry=registry, session_factory=session_factory)
    size = max(1, int(batch_size or get_settings().job_default_batch_size))

    job = registry.transition(job_id, JobStatus.running, progress_percent=0)
    log.info("conversion_job_started", extra={"payload": {"job_id": job_id, "kind": job.kind.value}})

    try:
        q = queue or ConversionQueue()
        pets = _select_pets(session_factory, job)
        monitor.update_progress(job_id, ProgressDelta(total_items=len(pets)))
        message_types = MESSAGES_BY_KIND[job.kind]

        for start in range(0, len(pets), size):
            success = failed = 0
            for pet_id, pet_type in pets[start : start + size]:
                try:
                    for message_type in message_types:
                        enqueue_conversion(
                            message_type=message_type, pet_id=pet_id, pet_type=pet_type, queue=q
                        )
                    success += 1
                except AppError as e:
                    failed += 1
                    log.warning(
                        "conversion_job_item_failed",
                        extra={"payload": {"job_id": job_id, "pet_id": pet_id, "err": e.message}},
                    )
            monitor.update_progress(job_id, ProgressDelta(success=success, failed=failed))
    except Exception as e:
        log.error(
            "conversion_job_failed",
            extra={"payload": {"job_id": job_id, "err": short_err(e)}},
        )
        return registry.transition(job_id, JobStatus.failed, error=short_err(e))

    job = registry.transition(job_id, JobStatus.completed, progress_percent=100)
    log.info(
        "conversion_job_completed",
        extra={
            "payload": {
                "job_id": job_id,
                "total": job.total_items,
                "success": job.success_count,
                "failed": job.failed_count,
            }
        },
    )
    return job
