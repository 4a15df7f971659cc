"""
HTTP API контракты (Pydantic-модели).

Назначение:
- валидация входа/выхода на уровне FastAPI
- стабильные структуры для внешних вызывающих (админка, планировщик)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from pawmatch_media.domain.enums import JobKind, JobStatus, PetType

HTTP_API_VERSION = "v1"


# =============================================================================
# ЗАПРОСЫ
# =============================================================================
class JobCreateRequest(BaseModel):
    kind: JobKind
    pet_type: PetType | None = None
    pet_ids: list[str] | None = Field(default=None, max_length=10_000)
    limit: int | None = Field(default=None, ge=1)
    metadata: dict[str, Any] = Field(default_factory=dict)
    # False: только зарегистрировать задачу (запуск внешним исполнителем)
    run: bool = True


class ReconcileRequest(BaseModel):
    auto_fix: bool = False
    pet_type: PetType | None = None
    pet_ids: list[str] | None = None
    limit: int | None = Field(default=None, ge=1)


# =============================================================================
# ОТВЕТЫ
# =============================================================================
class JobCreateResponse(BaseModel):
    api_version: str = Field(default=HTTP_API_VERSION)
    job_id: str
    status: JobStatus


class JobResponse(BaseModel):
    api_version: str = Field(default=HTTP_API_VERSION)
    id: str
    kind: JobKind
    status: JobStatus
    progress_percent: int
    started_at: datetime
    completed_at: datetime | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ProgressResponse(BaseModel):
    api_version: str = Field(default=HTTP_API_VERSION)
    job_id: str
    total_items: int
    processed_items: int
    success_count: int
    failed_count: int
    progress_percent: int
    estimated_remaining_ms: int | None = None


class JobStatisticsResponse(BaseModel):
    job_id: str
    duration_ms: int
    avg_processing_time_ms: float
    success_rate: float
    error_rate: float


class JobSummaryResponse(BaseModel):
    active_jobs: int
    completed_jobs: int
    failed_jobs: int
    total_processed: int
    last_sync_time: datetime | None = None


class PresenceFlagsModel(BaseModel):
    has_jpeg: bool
    has_webp: bool


class DiscrepancyModel(BaseModel):
    pet_id: str
    declared: PresenceFlagsModel
    actual: PresenceFlagsModel


class IntegrityReportResponse(BaseModel):
    checked: int
    fixed: int
    consistent: bool
    discrepancies: list[DiscrepancyModel] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    cancelled: bool = False
    deadline_exceeded: bool = False


class DeadLettersResponse(BaseModel):
    items: list[dict[str, Any]]
