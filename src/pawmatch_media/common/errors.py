"""
Единые ошибки и коды ошибок.

Назначение:
- предсказуемые коды для очередей/DLQ/HTTP
- классификация ошибок обработки на retryable / non-retryable / fatal
- единый стиль исключений по проекту
"""

from __future__ import annotations

from dataclasses import dataclass


class ErrCode:
    # Общие
    UNKNOWN = "unknown"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_TRANSITION = "invalid_transition"

    # Обработка сообщений: retryable
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    STORAGE_TRANSIENT = "storage_transient"
    STORE_LOCKED = "store_locked"

    # Обработка сообщений: non-retryable
    ENTITY_NOT_FOUND = "entity_not_found"
    SOURCE_MISSING = "source_missing"
    MALFORMED_INPUT = "malformed_input"

    # Fatal
    CONFIGURATION = "configuration"


RETRYABLE_CODES = frozenset(
    {
        ErrCode.NETWORK,
        ErrCode.TIMEOUT,
        ErrCode.RATE_LIMITED,
        ErrCode.UPSTREAM_UNAVAILABLE,
        ErrCode.STORAGE_TRANSIENT,
        ErrCode.STORE_LOCKED,
    }
)

NON_RETRYABLE_CODES = frozenset(
    {
        ErrCode.ENTITY_NOT_FOUND,
        ErrCode.SOURCE_MISSING,
        ErrCode.VALIDATION,
        ErrCode.MALFORMED_INPUT,
    }
)


@dataclass
class AppError(Exception):
    """
    Базовая ошибка приложения.
    - code: стабильный код ошибки
    - message: безопасное сообщение
    - details: доп. данные (без секретов)
    """

    code: str
    message: str
    details: dict | None = None

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.code}: {self.message}"


class ValidationError(AppError):
    def __init__(self, message: str = "Ошибка валидации", details: dict | None = None) -> None:
        super().__init__(ErrCode.VALIDATION, message, details)


class NotFoundError(AppError):
    def __init__(self, message: str = "Не найдено", details: dict | None = None) -> None:
        super().__init__(ErrCode.NOT_FOUND, message, details)


class ConflictError(AppError):
    def __init__(self, message: str = "Конфликт", details: dict | None = None) -> None:
        super().__init__(ErrCode.CONFLICT, message, details)


class InvalidTransitionError(AppError):
    def __init__(self, message: str = "Недопустимый переход", details: dict | None = None) -> None:
        super().__init__(ErrCode.INVALID_TRANSITION, message, details)


class ProcessingError(AppError):
    """
    Ошибка обработки одного сообщения очереди.
    code: категория (см. RETRYABLE_CODES / NON_RETRYABLE_CODES).
    """

    def __init__(self, code: str, message: str, details: dict | None = None) -> None:
        super().__init__(code, message, details)

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES


class ConfigurationError(AppError):
    """
    Фатальная ошибка конфигурации: останавливает consumer, в очередь не попадает.
    """

    def __init__(self, message: str = "Ошибка конфигурации", details: dict | None = None) -> None:
        super().__init__(ErrCode.CONFIGURATION, message, details)
