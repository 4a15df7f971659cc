"""
Утилиты времени.

Назначение:
- единый формат времени (ISO UTC)
- нормализация naive datetime из SQLite
"""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Текущее время в UTC (datetime).
    """
    return datetime.now(UTC)


def utc_now_iso() -> str:
    """
    Текущее время в UTC в ISO формате.
    """
    return utc_now().isoformat()


def as_utc(value: datetime) -> datetime:
    """
    SQLite возвращает naive datetime: считаем такие значения UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
