"""
Сверка presence-флагов БД с blob storage.

Назначение:
- найти записи, где has_jpeg / has_webp не совпадают с фактическим наличием объектов
- при auto_fix переписать флаги по факту (источник правды: blob storage) и записать аудит
- найти orphan-объекты (в хранилище есть, в БД нет): только отчёт, без удаления

Ограничения:
- blob-объекты не создаются и не удаляются
- обход батчами по id (keyset), HEAD-проверки внутри батча параллельно,
  не больше RECONCILIATION_CONCURRENCY одновременно
- сверку можно прервать событием отмены или дедлайном; результат частичный
- запись, которую конвертер меняет во время сверки, может попасть в отчёт;
  следующий проход это исправит
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime

from pawmatch_media.common.config import get_settings
from pawmatch_media.common.errors import AppError, ErrCode, NotFoundError, ProcessingError
from pawmatch_media.common.logging import get_project_logger
from pawmatch_media.common.metrics import record_reconcile_result
from pawmatch_media.common.time import utc_now
from pawmatch_media.domain.enums import AuditStatus, PetType
from pawmatch_media.storage import blob, paths
from pawmatch_media.storage.db import SessionFactory, db_session
from pawmatch_media.storage.repositories import ConversionLogRepository, PetRepository

log = get_project_logger()

AUDIT_MESSAGE_TYPE = "integrity_fix"
_ORPHAN_LOOKUP_CHUNK = 500


@dataclass(frozen=True)
class PresenceFlags:
    has_jpeg: bool
    has_webp: bool


@dataclass(frozen=True)
class EntityFilter:
    pet_type: PetType | None = None
    pet_ids: list[str] | None = None
    limit: int | None = None


@dataclass(frozen=True)
class IntegrityDiscrepancy:
    pet_id: str
    pet_type: str
    declared: PresenceFlags
    actual: PresenceFlags


@dataclass
class IntegrityReport:
    checked: int = 0
    discrepancies: list[IntegrityDiscrepancy] = field(default_factory=list)
    fixed: int = 0
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False
    deadline_exceeded: bool = False
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None

    @property
    def consistent(self) -> bool:
        return not self.discrepancies


@dataclass
class PetIntegrity:
    pet_id: str
    declared: PresenceFlags
    actual: PresenceFlags

    @property
    def consistent(self) -> bool:
        return self.declared == self.actual


@dataclass(frozen=True)
class _PetSnapshot:
    id: str
    type: str
    declared: PresenceFlags


def probe(pet_type: str, pet_id: str) -> PresenceFlags:
    """
    Фактическое наличие объектов (HEAD, без чтения содержимого).
    """
    if pet_type not in {t.value for t in PetType}:
        raise ProcessingError(
            ErrCode.VALIDATION, "Неизвестный вид животного", details={"pet_type": pet_type}
        )
    return PresenceFlags(
        has_jpeg=blob.exists(paths.original_key(pet_type, pet_id)),
        has_webp=blob.exists(paths.webp_key(pet_type, pet_id)),
    )


class IntegrityReconciler:
    def __init__(
        self,
        *,
        session_factory: SessionFactory = db_session,
        batch_size: int | None = None,
        concurrency: int | None = None,
    ) -> None:
        s = get_settings()
        self.session_factory = session_factory
        self.batch_size = max(1, int(batch_size or s.reconciliation_batch_size))
        self.concurrency = max(1, int(concurrency or s.reconciliation_concurrency))

    # -------------------------------------------------------------------------
    # reconcile
    # -------------------------------------------------------------------------
    def reconcile(
        self,
        auto_fix: bool,
        scope: EntityFilter | None = None,
        *,
        cancel_event: threading.Event | None = None,
        deadline_sec: float | None = None,
        source: str = "manual",
    ) -> IntegrityReport:
        scope = scope or EntityFilter()
        report = IntegrityReport()
        deadline = time.monotonic() + deadline_sec if deadline_sec else None
        remaining = int(scope.limit) if scope.limit else None
        after_id: str | None = None

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="reconcile") as pool:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    report.cancelled = True
                    break
                if deadline is not None and time.monotonic() >= deadline:
                    report.deadline_exceeded = True
                    break

                size = self.batch_size if remaining is None else min(self.batch_size, remaining)
                if size <= 0:
                    break
                batch = self._load_batch(after_id, size, scope)
                if not batch:
                    break

                batch_discrepancies = self._check_batch(pool, batch, report)
                report.checked += len(batch)
                report.discrepancies.extend(batch_discrepancies)
                if auto_fix and batch_discrepancies:
                    report.fixed += self._fix(batch_discrepancies)

                after_id = batch[-1].id
                if remaining is not None:
                    remaining -= len(batch)

        report.finished_at = utc_now()
        record_reconcile_result(
            source=source,
            checked=report.checked,
            discrepancies=len(report.discrepancies),
            fixed=report.fixed,
            cancelled=report.cancelled or report.deadline_exceeded,
        )
        log.info(
            "integrity_reconcile_finished",
            extra={
                "payload": {
                    "source": source,
                    "auto_fix": auto_fix,
                    "checked": report.checked,
                    "discrepancies": len(report.discrepancies),
                    "fixed": report.fixed,
                    "errors": len(report.errors),
                    "cancelled": report.cancelled,
                    "deadline_exceeded": report.deadline_exceeded,
                }
            },
        )
        return report

    def _load_batch(self, after_id: str | None, size: int, scope: EntityFilter) -> list[_PetSnapshot]:
        with self.session_factory() as session:
            rows = PetRepository(session).list_batch(
                after_id=after_id,
                limit=size,
                pet_type=PetType(scope.pet_type).value if scope.pet_type else None,
                pet_ids=scope.pet_ids,
            )
            return [
                _PetSnapshot(
                    id=r.id,
                    type=r.type,
                    declared=PresenceFlags(has_jpeg=bool(r.has_jpeg), has_webp=bool(r.has_webp)),
                )
                for r in rows
            ]

    def _check_batch(
        self, pool: ThreadPoolExecutor, batch: list[_PetSnapshot], report: IntegrityReport
    ) -> list[IntegrityDiscrepancy]:
        futures = [(pet, pool.submit(probe, pet.type, pet.id)) for pet in batch]
        out: list[IntegrityDiscrepancy] = []
        for pet, fut in futures:
            try:
                actual = fut.result()
            except AppError as e:
                # без факта флаги не трогаем, запись проверится в следующий проход
                report.errors.append(pet.id)
                log.warning(
                    "integrity_probe_failed",
                    extra={"payload": {"pet_id": pet.id, "code": e.code, "error": e.message}},
                )
                continue
            if actual != pet.declared:
                out.append(
                    IntegrityDiscrepancy(
                        pet_id=pet.id, pet_type=pet.type, declared=pet.declared, actual=actual
                    )
                )
        return out

    def _fix(self, discrepancies: list[IntegrityDiscrepancy]) -> int:
        fixed = 0
        now = utc_now()
        with self.session_factory() as session:
            pets = PetRepository(session)
            audit = ConversionLogRepository(session)
            for d in discrepancies:
                updated = pets.update_presence(
                    d.pet_id,
                    checked_at=now,
                    has_jpeg=d.actual.has_jpeg,
                    has_webp=d.actual.has_webp,
                )
                if not updated:
                    continue
                audit.append(
                    message_type=AUDIT_MESSAGE_TYPE,
                    pet_id=d.pet_id,
                    status=AuditStatus.success,
                    retry_count=0,
                    error_message=(
                        f"declared jpeg={d.declared.has_jpeg} webp={d.declared.has_webp}; "
                        f"actual jpeg={d.actual.has_jpeg} webp={d.actual.has_webp}"
                    ),
                    completed_at=now,
                )
                fixed += 1
        log.info("integrity_fixed", extra={"payload": {"fixed": fixed}})
        return fixed

    # -------------------------------------------------------------------------
    # single pet / orphans
    # -------------------------------------------------------------------------
    def check_pet(self, pet_id: str) -> PetIntegrity:
        with self.session_factory() as session:
            pet = PetRepository(session).get(pet_id)
            if pet is None:
                raise NotFoundError("Животное не найдено", details={"pet_id": pet_id})
            declared = PresenceFlags(has_jpeg=bool(pet.has_jpeg), has_webp=bool(pet.has_webp))
            pet_type = pet.type
        return PetIntegrity(pet_id=pet_id, declared=declared, actual=probe(pet_type, pet_id))

    def find_orphans(self, *, pet_type: PetType | None = None, limit: int | None = None) -> list[str]:
        """
        Ключи объектов, чей pet_id отсутствует в БД. Ничего не удаляет.
        """
        prefix = paths.type_prefix(pet_type) if pet_type else paths.ROOT_PREFIX
        by_pet: dict[str, list[str]] = {}
        for key in blob.list_keys(prefix):
            parsed = paths.parse_pet_key(key)
            if parsed is None:
                continue
            by_pet.setdefault(parsed.pet_id, []).append(key)

        pet_ids = sorted(by_pet)
        known: set[str] = set()
        with self.session_factory() as session:
            repo = PetRepository(session)
            for i in range(0, len(pet_ids), _ORPHAN_LOOKUP_CHUNK):
                known |= repo.existing_ids(pet_ids[i : i + _ORPHAN_LOOKUP_CHUNK])

        orphans = [key for pid in pet_ids if pid not in known for key in by_pet[pid]]
        if limit:
            orphans = orphans[: max(1, int(limit))]
        if orphans:
            log.warning("integrity_orphans_found", extra={"payload": {"count": len(orphans)}})
        return orphans
