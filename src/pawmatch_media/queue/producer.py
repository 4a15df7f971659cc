"""
Постановка сообщений конвертации в очередь.

Назначение:
- Единая упаковка сообщений (валидация контракта до отправки)
- Используется batch-задачами и тестами
"""

from __future__ import annotations

from pawmatch_media.common.ids import new_event_id
from pawmatch_media.common.logging import get_project_logger
from pawmatch_media.contracts.queue_events import ConversionMessage
from pawmatch_media.domain.enums import MessageType, PetType, SourceFormat

from .client import ConversionQueue

log = get_project_logger()


def build_message(
    *,
    message_type: MessageType | str,
    pet_id: str,
    pet_type: PetType | str,
    source_format: SourceFormat | str | None = None,
) -> ConversionMessage:
    return ConversionMessage(
        type=MessageType(message_type),
        pet_id=pet_id,
        pet_type=PetType(pet_type),
        source_format=SourceFormat(source_format) if source_format else None,
    )


def enqueue_conversion(
    *,
    message_type: MessageType | str,
    pet_id: str,
    pet_type: PetType | str,
    source_format: SourceFormat | str | None = None,
    queue: ConversionQueue | None = None,
) -> str:
    """
    Поставить задачу конвертации. Возвращает event_id (только для логов).
    """
    message = build_message(
        message_type=message_type,
        pet_id=pet_id,
        pet_type=pet_type,
        source_format=source_format,
    )
    q = queue or ConversionQueue()
    q.send(message)

    event_id = new_event_id("conv")
    log.info(
        "enqueue_conversion",
        extra={
            "payload": {
                "event_id": event_id,
                "queue": q.queue_name,
                "message_type": message.type.value,
                "pet_id": pet_id,
            }
        },
    )
    return event_id
