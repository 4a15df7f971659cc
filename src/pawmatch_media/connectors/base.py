"""
Базовые интерфейсы коннекторов (интеграции с внешними системами).

Назначение:
- стандартизировать адаптеры к внешнему сервису преобразования изображений
- отделить "как конвертируем" от "что делаем с результатом" в диспетчере
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class TransformRequest:
    """
    Запрос на преобразование.
    options сериализуются в заголовок: format=webp,quality=85,...
    """

    operation: str
    source: bytes
    options: dict[str, Any] = field(default_factory=dict)

    def options_header(self) -> str:
        return ",".join(f"{k}={v}" for k, v in self.options.items() if v is not None)


@dataclass
class TransformResult:
    data: bytes
    passthrough: bool = False
    fallback_reason: str | None = None


class TransformBackend(Protocol):
    """
    Контракт transform backend.
    """

    def transform(self, request: TransformRequest) -> TransformResult:
        """Вернуть преобразованные байты (или исходные при деградации)."""
        ...
