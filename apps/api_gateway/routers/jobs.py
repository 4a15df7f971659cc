"""
HTTP роуты batch-задач и сверки.

- POST /v1/jobs
- GET  /v1/jobs/summary
- GET  /v1/jobs/{job_id}
- GET  /v1/jobs/{job_id}/progress
- GET  /v1/jobs/{job_id}/statistics
- POST /v1/reconcile
- GET  /v1/dead-letters

Авторизация не выполняется: сервис доступен только во внутренней сети.
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status

from pawmatch_media.common.errors import ErrCode, NotFoundError
from pawmatch_media.common.logging import get_project_logger
from pawmatch_media.contracts.http_api import (
    DeadLettersResponse,
    DiscrepancyModel,
    IntegrityReportResponse,
    JobCreateRequest,
    JobCreateResponse,
    JobResponse,
    JobStatisticsResponse,
    JobSummaryResponse,
    PresenceFlagsModel,
    ProgressResponse,
    ReconcileRequest,
)
from pawmatch_media.jobs.conversion_job import execute_job
from pawmatch_media.services.integrity_service import EntityFilter
from pawmatch_media.services.job_registry import JobConfig
from pawmatch_media.services.job_service import JobService

log = get_project_logger()

router = APIRouter()


def job_service_dep() -> JobService:
    return JobService()


def _not_found(e: NotFoundError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"code": ErrCode.NOT_FOUND, "message": e.message, "details": e.details or {}},
    )


@router.post("/jobs", response_model=JobCreateResponse, status_code=status.HTTP_202_ACCEPTED)
def create_job(
    req: JobCreateRequest,
    background: BackgroundTasks,
    svc: JobService = Depends(job_service_dep),
) -> JobCreateResponse:
    job_id = svc.create_job(
        JobConfig(
            kind=req.kind,
            pet_type=req.pet_type,
            pet_ids=req.pet_ids,
            limit=req.limit,
            metadata=req.metadata,
        )
    )
    if req.run:
        background.add_task(execute_job, job_id, session_factory=svc.session_factory)
    log.info("job_accepted", extra={"payload": {"job_id": job_id, "run": req.run}})
    return JobCreateResponse(job_id=job_id, status=svc.get_job_status(job_id).status)


@router.get("/jobs/summary", response_model=JobSummaryResponse)
def jobs_summary(svc: JobService = Depends(job_service_dep)) -> JobSummaryResponse:
    return JobSummaryResponse(**asdict(svc.summarize()))


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job(job_id: str, svc: JobService = Depends(job_service_dep)) -> JobResponse:
    try:
        job = svc.get_job_status(job_id)
    except NotFoundError as e:
        raise _not_found(e) from e
    return JobResponse(
        id=job.id,
        kind=job.kind,
        status=job.status,
        progress_percent=job.progress_percent,
        started_at=job.started_at,
        completed_at=job.completed_at,
        error=job.error,
        metadata=job.metadata,
    )


@router.get("/jobs/{job_id}/progress", response_model=ProgressResponse)
def get_progress(job_id: str, svc: JobService = Depends(job_service_dep)) -> ProgressResponse:
    try:
        progress = svc.get_progress(job_id)
    except NotFoundError as e:
        raise _not_found(e) from e
    return ProgressResponse(job_id=job_id, **asdict(progress))


@router.get("/jobs/{job_id}/statistics", response_model=JobStatisticsResponse)
def get_statistics(job_id: str, svc: JobService = Depends(job_service_dep)) -> JobStatisticsResponse:
    try:
        stats = svc.job_statistics(job_id)
    except NotFoundError as e:
        raise _not_found(e) from e
    return JobStatisticsResponse(job_id=job_id, **asdict(stats))


@router.post("/reconcile", response_model=IntegrityReportResponse)
def reconcile(req: ReconcileRequest, svc: JobService = Depends(job_service_dep)) -> IntegrityReportResponse:
    report = svc.reconcile(
        req.auto_fix,
        EntityFilter(pet_type=req.pet_type, pet_ids=req.pet_ids, limit=req.limit),
    )
    return IntegrityReportResponse(
        checked=report.checked,
        fixed=report.fixed,
        consistent=report.consistent,
        discrepancies=[
            DiscrepancyModel(
                pet_id=d.pet_id,
                declared=PresenceFlagsModel(**asdict(d.declared)),
                actual=PresenceFlagsModel(**asdict(d.actual)),
            )
            for d in report.discrepancies
        ],
        errors=report.errors,
        cancelled=report.cancelled,
        deadline_exceeded=report.deadline_exceeded,
    )


@router.get("/dead-letters", response_model=DeadLettersResponse)
def list_dead_letters(
    limit: int = Query(default=50, ge=1, le=500),
    svc: JobService = Depends(job_service_dep),
) -> DeadLettersResponse:
    return DeadLettersResponse(items=svc.list_dead_letters(limit))
