"""
Проверка "уже сделано" перед конвертацией.

Источник правды: blob storage: если целевой объект уже есть,
повторная доставка сообщения ничего не пересчитывает.
"""

from __future__ import annotations

from collections.abc import Iterable

from pawmatch_media.common.logging import get_project_logger
from pawmatch_media.storage import blob

log = get_project_logger()


def already_done(entity_id: str, target_keys: str | Iterable[str]) -> bool:
    """
    True, если ВСЕ целевые ключи существуют (HEAD, без чтения содержимого).
    """
    keys = [target_keys] if isinstance(target_keys, str) else list(target_keys)
    if not keys:
        return False
    missing = [k for k in keys if not blob.exists(k)]
    if missing:
        return False
    log.info(
        "conversion_already_done",
        extra={"payload": {"pet_id": entity_id, "keys": keys}},
    )
    return True
