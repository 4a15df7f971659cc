"""
Доменные перечисления (enum).

Используются во всей системе:
- типы сообщений конвертации
- вид животного и формат исходника
- статусы и виды batch-задач
"""

from __future__ import annotations

import enum


class MessageType(str, enum.Enum):
    """
    Закрытый набор типов сообщений очереди конвертации.
    """

    to_webp = "convert_to_webp"
    optimize_jpeg = "optimize_jpeg"
    generate_thumbnails = "generate_thumbnails"


class PetType(str, enum.Enum):
    dog = "dog"
    cat = "cat"


class SourceFormat(str, enum.Enum):
    jpeg = "jpeg"
    png = "png"


class AuditStatus(str, enum.Enum):
    success = "success"
    failed = "failed"


class JobKind(str, enum.Enum):
    """
    Вид batch-задачи.
    """

    full = "full"
    incremental = "incremental"
    image = "image"


class JobStatus(str, enum.Enum):
    """
    Статус batch-задачи (только вперёд).
    """

    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"


TERMINAL_JOB_STATUSES = frozenset({JobStatus.completed, JobStatus.failed})
