"""
Идемпотентность (дедупликация) побочных эффектов очереди.

Зачем нужно:
- брокер доставляет сообщения at-least-once
- запись в DLQ для одной попытки доставки должна произойти не более одного раза

Реализация:
- хранение ключей в Redis с TTL (SET NX)
- ключ формируется как "idem:<scope>:<entity_id>:<idempotency_key>"
"""

from __future__ import annotations

from pawmatch_media.common.config import get_settings

from .redis import redis_client

# TTL по умолчанию (сек) для идемпотентных ключей
DEFAULT_TTL_SEC = 60 * 60 * 24  # 24 часа


def _key(scope: str, entity_id: str, idem_key: str) -> str:
    return f"idem:{scope}:{entity_id}:{idem_key}"


def check_and_set(
    scope: str,
    entity_id: str,
    idem_key: str,
    ttl_sec: int | None = None,
    *,
    client=None,
) -> bool:
    """
    Возвращает True, если ключ НОВЫЙ (т.е. можно выполнять действие),
    и False, если ключ уже был (дедуп).
    """
    r = client or redis_client()
    ttl = int(ttl_sec if ttl_sec is not None else get_settings().dlq_dedup_ttl_sec or DEFAULT_TTL_SEC)
    ok = r.set(name=_key(scope, entity_id, idem_key), value="1", nx=True, ex=max(1, ttl))
    return bool(ok)


def release(scope: str, entity_id: str, idem_key: str, *, client=None) -> None:
    """
    Снять ключ, если защищённое действие не удалось (чтобы повтор смог его выполнить).
    """
    r = client or redis_client()
    r.delete(_key(scope, entity_id, idem_key))
