"""
Репозитории (DAO слой).

Правила:
- Никакой бизнес-логики
- Только CRUD и запросы
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import desc, func, select, update
from sqlalchemy.orm import Session

from pawmatch_media.domain.enums import AuditStatus, JobStatus

from .models import ConversionLog, Pet, SyncJob


# =============================================================================
# PET REPOSITORY
# =============================================================================
class PetRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, pet_id: str) -> Pet | None:
        return self.session.get(Pet, pet_id)

    def save(self, pet: Pet) -> None:
        self.session.add(pet)

    def existing_ids(self, pet_ids: list[str]) -> set[str]:
        if not pet_ids:
            return set()
        rows = self.session.execute(select(Pet.id).where(Pet.id.in_(pet_ids))).scalars()
        return set(rows)

    def update_presence(
        self,
        pet_id: str,
        *,
        checked_at: datetime,
        has_jpeg: bool | None = None,
        has_webp: bool | None = None,
    ) -> bool:
        """
        Обновляет только переданные флаги. False: записи нет.
        """
        values: dict[str, Any] = {"image_checked_at": checked_at, "updated_at": checked_at}
        if has_jpeg is not None:
            values["has_jpeg"] = bool(has_jpeg)
        if has_webp is not None:
            values["has_webp"] = bool(has_webp)
        result = self.session.execute(
            update(Pet)
            .where(Pet.id == pet_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def list_batch(
        self,
        *,
        after_id: str | None,
        limit: int,
        pet_type: str | None = None,
        pet_ids: list[str] | None = None,
    ) -> list[Pet]:
        """
        Keyset-пагинация по id (стабильна при параллельных вставках).
        """
        query = select(Pet)
        if after_id is not None:
            query = query.where(Pet.id > after_id)
        if pet_type:
            query = query.where(Pet.type == pet_type)
        if pet_ids is not None:
            query = query.where(Pet.id.in_(pet_ids))
        query = query.order_by(Pet.id).limit(max(1, limit))
        return list(self.session.execute(query).scalars())

    def list_missing_images(self, *, pet_type: str | None = None) -> list[Pet]:
        query = select(Pet).where((Pet.has_jpeg.is_(False)) | (Pet.has_webp.is_(False)))
        if pet_type:
            query = query.where(Pet.type == pet_type)
        return list(self.session.execute(query.order_by(desc(Pet.created_at))).scalars())

    def list_all(self, *, pet_type: str | None = None) -> list[Pet]:
        query = select(Pet)
        if pet_type:
            query = query.where(Pet.type == pet_type)
        return list(self.session.execute(query.order_by(desc(Pet.created_at))).scalars())

    def list_updated_since(
        self, since: datetime | None, *, pet_type: str | None = None
    ) -> list[Pet]:
        query = select(Pet)
        if since is not None:
            query = query.where(Pet.updated_at > since)
        if pet_type:
            query = query.where(Pet.type == pet_type)
        return list(self.session.execute(query.order_by(desc(Pet.updated_at))).scalars())


# =============================================================================
# CONVERSION LOG REPOSITORY
# =============================================================================
class ConversionLogRepository:
    """
    Append-only: методов update/delete нет и не будет.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def append(
        self,
        *,
        message_type: str,
        pet_id: str,
        status: AuditStatus,
        retry_count: int,
        error_message: str | None = None,
        noop: bool = False,
        completed_at: datetime | None = None,
    ) -> ConversionLog:
        entry = ConversionLog(
            message_type=message_type,
            pet_id=pet_id,
            status=status.value,
            error_message=error_message,
            retry_count=retry_count,
            noop=noop,
        )
        if completed_at is not None:
            entry.completed_at = completed_at
        self.session.add(entry)
        return entry

    def list_by_pet(self, pet_id: str) -> list[ConversionLog]:
        return list(
            self.session.execute(
                select(ConversionLog)
                .where(ConversionLog.pet_id == pet_id)
                .order_by(ConversionLog.id)
            ).scalars()
        )


# =============================================================================
# SYNC JOB REPOSITORY
# =============================================================================
class SyncJobRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, job_id: str) -> SyncJob | None:
        return self.session.get(SyncJob, job_id)

    def add(self, job: SyncJob) -> None:
        self.session.add(job)

    def compare_and_set(self, job_id: str, *, expected_version: int, values: dict[str, Any]) -> bool:
        """
        UPDATE ... WHERE id = :id AND version = :expected. True: запись наша.
        """
        result = self.session.execute(
            update(SyncJob)
            .where(SyncJob.id == job_id, SyncJob.version == expected_version)
            .values(**values, version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def list_by_status(self, status: JobStatus, *, limit: int = 100) -> list[SyncJob]:
        return list(
            self.session.execute(
                select(SyncJob)
                .where(SyncJob.status == status)
                .order_by(desc(SyncJob.started_at))
                .limit(max(1, min(limit, 1000)))
            ).scalars()
        )

    def count_by_status(self) -> dict[JobStatus, int]:
        rows = self.session.execute(
            select(SyncJob.status, func.count(SyncJob.id)).group_by(SyncJob.status)
        ).all()
        return {JobStatus(status): int(count) for status, count in rows}

    def latest(self) -> SyncJob | None:
        return self.session.execute(
            select(SyncJob).order_by(desc(SyncJob.started_at), desc(SyncJob.id)).limit(1)
        ).scalar_one_or_none()

    def last_completed_at(self) -> datetime | None:
        return self.session.execute(
            select(func.max(SyncJob.completed_at)).where(SyncJob.status == JobStatus.completed)
        ).scalar_one_or_none()

    def total_succeeded(self) -> int:
        value = self.session.execute(select(func.sum(SyncJob.success_count))).scalar_one_or_none()
        return int(value or 0)
