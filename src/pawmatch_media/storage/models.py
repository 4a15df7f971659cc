"""
ORM-модели базы данных.

Назначение:
- pets: presence-флаги (has_jpeg / has_webp) как проекция blob storage
- conversion_log: append-only журнал попыток обработки
- sync_jobs: batch-задачи с версией для compare-and-set
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from pawmatch_media.domain.enums import JobKind, JobStatus


def _utcnow() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# BASE
# =============================================================================
class Base(DeclarativeBase):
    pass


# =============================================================================
# PET (presence record)
# =============================================================================
class Pet(Base):
    """
    Карточка животного. Сюда пишут только конвертер и сверка.
    """

    __tablename__ = "pets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(8), nullable=False, index=True)  # dog|cat
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    has_jpeg: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_webp: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    image_checked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )


# =============================================================================
# CONVERSION LOG (audit)
# =============================================================================
class ConversionLog(Base):
    """
    Журнал попыток обработки. Только INSERT.
    """

    __tablename__ = "conversion_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_type: Mapped[str] = mapped_column(String(64), nullable=False)
    pet_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # success|failed
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    noop: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )


# =============================================================================
# SYNC JOBS
# =============================================================================
class SyncJob(Base):
    """
    Batch-задача. version увеличивается при каждом обновлении (optimistic locking).
    """

    __tablename__ = "sync_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[JobKind] = mapped_column(Enum(JobKind), nullable=False)
    status: Mapped[JobStatus] = mapped_column(Enum(JobStatus), nullable=False, index=True)
    progress_percent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_metadata: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)

    total_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
