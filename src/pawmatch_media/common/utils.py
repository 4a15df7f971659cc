"""
Общие утилиты проекта.

Правила:
- сюда кладём только реально общие функции
- без бизнес-логики
"""

from __future__ import annotations

import hashlib


def sha256_hex(data: bytes) -> str:
    """
    SHA256 (отпечатки сообщений, контроль целостности).
    """
    return hashlib.sha256(data).hexdigest()


def short_err(e: BaseException, max_len: int = 300) -> str:
    """
    Безопасное "обрезание" текста ошибки для логов и DLQ.
    """
    text = str(e) or e.__class__.__name__
    if len(text) > max_len:
        return text[:max_len] + "...(truncated)"
    return text
