"""
Контракты событий очереди конвертации.

Важно:
- payload всегда JSON, ключи в camelCase (совместимость с продюсерами)
- сообщение неизменяемо: ретрай = новое сообщение с retryCount + 1
- валидация выполняется на границе очереди, до диспетчеризации
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from pawmatch_media.common.errors import ErrCode, ProcessingError
from pawmatch_media.common.time import utc_now
from pawmatch_media.common.utils import sha256_hex
from pawmatch_media.domain.enums import MessageType, PetType, SourceFormat


class ConversionMessage(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    type: MessageType
    pet_id: str = Field(alias="petId", min_length=1, max_length=64)
    pet_type: PetType = Field(alias="petType")
    source_format: SourceFormat | None = Field(default=None, alias="sourceFormat")
    retry_count: int = Field(default=0, alias="retryCount", ge=0)
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("retry_count", mode="before")
    @classmethod
    def _none_retry_is_zero(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("pet_id")
    @classmethod
    def _safe_pet_id(cls, v: str) -> str:
        # pet_id попадает в ключ объекта
        if "/" in v or "\\" in v or ".." in v:
            raise ValueError("invalid petId")
        return v

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), ensure_ascii=False)

    def next_attempt(self) -> ConversionMessage:
        """
        Новое сообщение для повторной доставки. Текущее не меняется.
        """
        return self.model_copy(update={"retry_count": self.retry_count + 1, "timestamp": utc_now()})

    def fingerprint(self) -> str:
        """
        Отпечаток одной попытки доставки (для дедупликации записи в DLQ).
        """
        raw = "|".join(
            [
                self.type.value,
                self.pet_id,
                self.pet_type.value,
                str(self.retry_count),
                self.timestamp.isoformat(),
            ]
        )
        return sha256_hex(raw.encode("utf-8"))


class DeadLetterMessage(ConversionMessage):
    """
    Терминальное сообщение: автоматически обратно в очередь не ставится.
    """

    error: str
    failed_at: datetime = Field(alias="failedAt")

    @classmethod
    def from_message(
        cls, message: ConversionMessage, *, error: str, failed_at: datetime | None = None
    ) -> DeadLetterMessage:
        return cls(
            **message.model_dump(),
            error=error,
            failed_at=failed_at or utc_now(),
        )


class RawDeadLetter(BaseModel):
    """
    Сообщение, которое не удалось разобрать (malformed_input).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    raw: str
    error: str
    failed_at: datetime = Field(default_factory=utc_now, alias="failedAt")

    def to_json(self) -> str:
        return json.dumps(self.model_dump(mode="json", by_alias=True), ensure_ascii=False)


def parse_message(raw: str | bytes | dict[str, Any]) -> ConversionMessage:
    """
    Разбор и валидация сообщения на границе очереди.
    Любая ошибка формата → ProcessingError(malformed_input), ретраи не помогут.
    """
    try:
        data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    except (TypeError, ValueError) as e:
        raise ProcessingError(
            ErrCode.MALFORMED_INPUT, "Сообщение не является JSON", details={"err": str(e)[:200]}
        ) from e

    if not isinstance(data, dict):
        raise ProcessingError(ErrCode.MALFORMED_INPUT, "Сообщение должно быть JSON-объектом")

    # timestamp обязателен: входит в fingerprint()
    if data.get("timestamp") is None:
        raise ProcessingError(ErrCode.MALFORMED_INPUT, "В сообщении нет timestamp")

    try:
        return ConversionMessage.model_validate(data)
    except PydanticValidationError as e:
        raise ProcessingError(
            ErrCode.MALFORMED_INPUT,
            "Сообщение не соответствует контракту",
            details={"errors": [err.get("loc") for err in e.errors()][:10]},
        ) from e
