"""
Клиент очереди конвертации (Redis).

Структуры:
- <queue>                       LIST: готовые к обработке сообщения (LPUSH / забор справа)
- <queue>:delayed               ZSET: отложенные сообщения, score = unix-время доставки
- <queue>:processing:<consumer> LIST: выданные, но ещё не подтверждённые (ack) сообщения
- <queue>:dlq                   LIST: dead letter, только ручной разбор

Гарантии:
- at-least-once: неподтверждённые сообщения возвращаются в очередь при старте воркера
- ретрай реализуется отложенной доставкой, а не sleep внутри обработчика
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any

from pawmatch_media.common.config import get_settings
from pawmatch_media.common.errors import ConfigurationError
from pawmatch_media.common.logging import get_project_logger
from pawmatch_media.contracts.queue_events import ConversionMessage, DeadLetterMessage, RawDeadLetter

from .redis import redis_client

log = get_project_logger()

_PROMOTE_BATCH = 100


@dataclass(frozen=True)
class Delivery:
    """
    Одна выдача сообщения consumer'у. raw: ровно то, что лежит в processing-списке.
    """

    raw: str
    processing_list: str


def dlq_name(queue_name: str) -> str:
    return f"{queue_name}:dlq"


def delayed_name(queue_name: str) -> str:
    return f"{queue_name}:delayed"


def processing_name(queue_name: str, consumer: str) -> str:
    return f"{queue_name}:processing:{consumer}"


class ConversionQueue:
    def __init__(
        self,
        *,
        client=None,
        queue_name: str | None = None,
        consumer: str | None = None,
    ) -> None:
        s = get_settings()
        self.queue_name = (queue_name or s.convert_queue or "").strip()
        self.consumer = (consumer or s.worker_consumer or "").strip()
        if not self.queue_name or not self.consumer:
            raise ConfigurationError(
                "Не задано имя очереди или consumer",
                details={"queue": self.queue_name, "consumer": self.consumer},
            )
        self._client = client

    @property
    def r(self):
        return self._client or redis_client()

    @property
    def dlq_name(self) -> str:
        return dlq_name(self.queue_name)

    @property
    def delayed_name(self) -> str:
        return delayed_name(self.queue_name)

    @property
    def processing_name(self) -> str:
        return processing_name(self.queue_name, self.consumer)

    # -------------------------------------------------------------------------
    # send
    # -------------------------------------------------------------------------
    def send(self, message: ConversionMessage, *, delay_sec: int = 0) -> None:
        raw = message.to_json()
        if delay_sec > 0:
            self.r.zadd(self.delayed_name, {raw: time.time() + delay_sec})
        else:
            self.r.lpush(self.queue_name, raw)

    def send_dead_letter(self, dead_letter: DeadLetterMessage | RawDeadLetter) -> None:
        self.r.lpush(self.dlq_name, dead_letter.to_json())

    # -------------------------------------------------------------------------
    # receive / ack
    # -------------------------------------------------------------------------
    def promote_due(self, now: float | None = None) -> int:
        """
        Переносит созревшие отложенные сообщения в основную очередь.
        ZREM выполняется до LPUSH: при нескольких воркерах сообщение переносит ровно один.
        """
        now = time.time() if now is None else now
        due = self.r.zrangebyscore(self.delayed_name, "-inf", now, start=0, num=_PROMOTE_BATCH)
        promoted = 0
        for raw in due or []:
            if self.r.zrem(self.delayed_name, raw):
                self.r.lpush(self.queue_name, raw)
                promoted += 1
        if promoted:
            log.info(
                "queue_delayed_promoted",
                extra={"payload": {"queue": self.queue_name, "promoted": promoted}},
            )
        return promoted

    def receive(self, max_messages: int = 10, timeout_sec: int = 5) -> list[Delivery]:
        first = self.r.blmove(self.queue_name, self.processing_name, timeout_sec, "RIGHT", "LEFT")
        if first is None:
            return []
        out = [Delivery(raw=first, processing_list=self.processing_name)]
        while len(out) < max(1, max_messages):
            raw = self.r.lmove(self.queue_name, self.processing_name, "RIGHT", "LEFT")
            if raw is None:
                break
            out.append(Delivery(raw=raw, processing_list=self.processing_name))
        return out

    def ack(self, delivery: Delivery) -> None:
        self.r.lrem(delivery.processing_list, 1, delivery.raw)

    def recover_inflight(self) -> int:
        """
        Вернуть неподтверждённые сообщения этого consumer'а в голову очереди.
        """
        recovered = 0
        while True:
            raw = self.r.lmove(self.processing_name, self.queue_name, "RIGHT", "RIGHT")
            if raw is None:
                break
            recovered += 1
        if recovered:
            log.warning(
                "queue_inflight_recovered",
                extra={"payload": {"queue": self.queue_name, "recovered": recovered}},
            )
        return recovered

    # -------------------------------------------------------------------------
    # inspection
    # -------------------------------------------------------------------------
    def depth(self) -> int:
        return int(self.r.llen(self.queue_name))

    def delayed_depth(self) -> int:
        return int(self.r.zcard(self.delayed_name))

    def dlq_depth(self) -> int:
        return int(self.r.llen(self.dlq_name))

    def list_dead_letters(self, limit: int = 50) -> list[dict[str, Any]]:
        items = self.r.lrange(self.dlq_name, 0, max(1, min(limit, 500)) - 1)
        out: list[dict[str, Any]] = []
        for raw in items or []:
            try:
                data = json.loads(raw)
            except ValueError:
                data = {"raw": raw}
            out.append(data if isinstance(data, dict) else {"raw": raw})
        return out
