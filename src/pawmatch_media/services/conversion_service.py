"""
Диспетчер конвертации изображений.

Назначение:
- маршрутизация сообщения по типу (WebP / оптимизированный JPEG / превью)
- проверка идемпотентности до вызова transform backend
- запись результата в blob storage, обновление presence-флагов, аудит

Важно:
- запись в blob и обновление БД не транзакционны;
  окно расхождения закрывает сверка (integrity_service)
- ошибки не глушатся: их классифицирует и маршрутизирует FailureRouter
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pawmatch_media.common.config import get_settings
from pawmatch_media.common.errors import ErrCode, ProcessingError
from pawmatch_media.common.logging import get_project_logger
from pawmatch_media.common.metrics import record_conversion
from pawmatch_media.common.time import utc_now, utc_now_iso
from pawmatch_media.connectors.base import TransformBackend, TransformRequest
from pawmatch_media.connectors.transform.http_adapter import resolve_transform_backend
from pawmatch_media.contracts.queue_events import ConversionMessage
from pawmatch_media.domain.enums import AuditStatus, MessageType, SourceFormat
from pawmatch_media.storage import blob, paths
from pawmatch_media.storage.db import SessionFactory, db_session
from pawmatch_media.storage.repositories import ConversionLogRepository, PetRepository

from .idempotency_guard import already_done

log = get_project_logger()


@dataclass
class DispatchResult:
    message_type: MessageType
    pet_id: str
    noop: bool = False
    written_keys: list[str] = field(default_factory=list)
    passthrough: bool = False


@dataclass
class _Output:
    key: str
    options: dict[str, Any]
    metadata: dict[str, Any] = field(default_factory=dict)


class ConversionDispatcher:
    def __init__(
        self,
        *,
        backend: TransformBackend | None = None,
        session_factory: SessionFactory = db_session,
    ) -> None:
        self.backend = backend or resolve_transform_backend()
        self.session_factory = session_factory

    # -------------------------------------------------------------------------
    # outputs per message type
    # -------------------------------------------------------------------------
    def _outputs(self, message: ConversionMessage) -> list[_Output]:
        s = get_settings()
        pet_type, pet_id = message.pet_type, message.pet_id

        if message.type == MessageType.to_webp:
            return [
                _Output(
                    key=paths.webp_key(pet_type, pet_id),
                    options={
                        "format": "webp",
                        "quality": s.webp_quality,
                        "fit": "scale-down",
                        "width": s.transform_max_width,
                    },
                )
            ]

        if message.type == MessageType.optimize_jpeg:
            return [
                _Output(
                    key=paths.optimized_jpeg_key(pet_type, pet_id),
                    options={
                        "format": "jpeg",
                        "quality": s.jpeg_quality,
                        "fit": "scale-down",
                        "width": s.transform_max_width,
                    },
                )
            ]

        if message.type == MessageType.generate_thumbnails:
            return [
                _Output(
                    key=paths.thumbnail_key(pet_type, pet_id, name),
                    options={
                        "format": "jpeg",
                        "quality": s.thumbnail_quality,
                        "fit": "cover",
                        "width": width,
                        "height": height,
                    },
                    metadata={"width": width, "height": height},
                )
                for name, width, height in paths.THUMBNAIL_SIZES
            ]

        raise ProcessingError(
            ErrCode.VALIDATION,
            "Неизвестный тип сообщения",
            details={"type": str(message.type)},
        )

    # -------------------------------------------------------------------------
    # dispatch
    # -------------------------------------------------------------------------
    def dispatch(self, message: ConversionMessage) -> DispatchResult:
        outputs = self._outputs(message)

        with self.session_factory() as session:
            pet = PetRepository(session).get(message.pet_id)
            if pet is None:
                raise ProcessingError(
                    ErrCode.ENTITY_NOT_FOUND,
                    "Животное не найдено",
                    details={"pet_id": message.pet_id},
                )
            if pet.type != message.pet_type.value:
                raise ProcessingError(
                    ErrCode.VALIDATION,
                    "petType не совпадает с записью",
                    details={"pet_id": message.pet_id, "pet_type": pet.type},
                )

        target_keys = [o.key for o in outputs]
        if already_done(message.pet_id, target_keys):
            self._record_success(message, noop=True)
            record_conversion(message_type=message.type.value, result="noop")
            return DispatchResult(message_type=message.type, pet_id=message.pet_id, noop=True)

        source_format = message.source_format or SourceFormat.jpeg
        source_key = paths.original_key(message.pet_type, message.pet_id, source_format)
        source = blob.get_bytes(source_key)
        if source is None:
            raise ProcessingError(
                ErrCode.SOURCE_MISSING,
                "Исходное изображение не найдено",
                details={"key": source_key},
            )

        written: list[str] = []
        passthrough = False
        for out in outputs:
            result = self.backend.transform(
                TransformRequest(operation=message.type.value, source=source, options=out.options)
            )
            passthrough = passthrough or result.passthrough
            blob.put_bytes(
                out.key,
                result.data,
                metadata={
                    "sourceKey": source_key,
                    "petId": message.pet_id,
                    "convertedAt": utc_now_iso(),
                    "originalSize": len(source),
                    "convertedSize": len(result.data),
                    "passthrough": result.passthrough,
                    **out.metadata,
                },
            )
            written.append(out.key)

        self._record_success(message, noop=False, source_is_jpeg=source_format == SourceFormat.jpeg)
        record_conversion(message_type=message.type.value, result="success")
        log.info(
            "conversion_done",
            extra={
                "payload": {
                    "message_type": message.type.value,
                    "pet_id": message.pet_id,
                    "keys": written,
                    "passthrough": passthrough,
                    "retry_count": message.retry_count,
                }
            },
        )
        return DispatchResult(
            message_type=message.type,
            pet_id=message.pet_id,
            written_keys=written,
            passthrough=passthrough,
        )

    def _record_success(
        self, message: ConversionMessage, *, noop: bool, source_is_jpeg: bool = False
    ) -> None:
        now = utc_now()
        has_webp = True if message.type == MessageType.to_webp else None
        has_jpeg = True if source_is_jpeg else None
        with self.session_factory() as session:
            PetRepository(session).update_presence(
                message.pet_id, checked_at=now, has_jpeg=has_jpeg, has_webp=has_webp
            )
            ConversionLogRepository(session).append(
                message_type=message.type.value,
                pet_id=message.pet_id,
                status=AuditStatus.success,
                retry_count=message.retry_count,
                noop=noop,
                completed_at=now,
            )
