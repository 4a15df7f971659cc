"""
Retry/DLQ для очереди конвертации.

Назначение:
- классифицировать ошибку обработки (retryable / non-retryable / fatal)
- повторно ставить сообщение с экспоненциальной задержкой и ограниченным числом попыток
- отправлять исчерпавшие попытки и неретраябельные сообщения в DLQ <queue>:dlq

Важно:
- задержка реализуется отложенной доставкой (ZSET), воркер не спит
- запись в DLQ для одной попытки выполняется не более одного раза (SET NX)
- ConfigurationError не маршрутизируется: пробрасывается и останавливает consumer
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import redis as redis_lib
import requests
from sqlalchemy.exc import OperationalError

from pawmatch_media.common.config import get_settings
from pawmatch_media.common.errors import (
    RETRYABLE_CODES,
    AppError,
    ConfigurationError,
    ErrCode,
)
from pawmatch_media.common.logging import get_project_logger
from pawmatch_media.common.metrics import record_retry_decision
from pawmatch_media.common.utils import short_err
from pawmatch_media.contracts.queue_events import (
    ConversionMessage,
    DeadLetterMessage,
    RawDeadLetter,
)
from pawmatch_media.domain.enums import AuditStatus
from pawmatch_media.storage.db import SessionFactory, db_session
from pawmatch_media.storage.repositories import ConversionLogRepository

from .client import ConversionQueue
from .idempotency import check_and_set, release

log = get_project_logger()

DLQ_SCOPE = "dlq"


class RetryAction(str, Enum):
    requeue = "requeue"
    dead_letter = "dead_letter"


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_sec: int = 30
    max_delay_sec: int = 1800

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        s = get_settings()
        return cls(
            max_retries=max(0, int(s.retry_max_retries)),
            base_delay_sec=max(1, int(s.retry_base_delay_sec)),
            max_delay_sec=max(1, int(s.retry_max_delay_sec)),
        )


@dataclass(frozen=True)
class RetryDecision:
    action: RetryAction
    category: str
    retryable: bool
    delay_sec: int = 0
    next_message: ConversionMessage | None = None
    reason: str = ""


# =============================================================================
# КЛАССИФИКАЦИЯ
# =============================================================================
def classify_error(exc: BaseException) -> str:
    """
    Категория ошибки (значение ErrCode). Неизвестные ошибки не ретраятся.
    """
    if isinstance(exc, AppError):
        return exc.code

    # requests.Timeout наследует RequestException, проверяем до ConnectionError
    if isinstance(exc, requests.Timeout):
        return ErrCode.TIMEOUT
    if isinstance(exc, requests.ConnectionError):
        return ErrCode.NETWORK

    if isinstance(exc, redis_lib.exceptions.TimeoutError):
        return ErrCode.TIMEOUT
    if isinstance(exc, redis_lib.exceptions.ConnectionError):
        return ErrCode.NETWORK

    if isinstance(exc, OperationalError):
        return ErrCode.STORE_LOCKED if "locked" in str(exc).lower() else ErrCode.NETWORK

    if isinstance(exc, TimeoutError):
        return ErrCode.TIMEOUT
    if isinstance(exc, ConnectionError):
        return ErrCode.NETWORK

    return ErrCode.UNKNOWN


def is_retryable(category: str) -> bool:
    return category in RETRYABLE_CODES


def compute_backoff(retry_count: int, base_delay_sec: int, max_delay_sec: int) -> int:
    """
    base * 2^retry_count, но не больше max_delay_sec.
    """
    exp = max(0, int(retry_count))
    # без переполнения на больших retry_count
    if exp >= 32:
        return max_delay_sec
    return min(base_delay_sec * (2**exp), max_delay_sec)


def decide(message: ConversionMessage, exc: BaseException, policy: RetryPolicy) -> RetryDecision:
    category = classify_error(exc)
    retryable = is_retryable(category)

    if not retryable:
        return RetryDecision(
            action=RetryAction.dead_letter,
            category=category,
            retryable=False,
            reason="non_retryable",
        )

    if message.retry_count >= policy.max_retries:
        return RetryDecision(
            action=RetryAction.dead_letter,
            category=category,
            retryable=True,
            reason="max_retries_exceeded",
        )

    return RetryDecision(
        action=RetryAction.requeue,
        category=category,
        retryable=True,
        delay_sec=compute_backoff(
            message.retry_count, policy.base_delay_sec, policy.max_delay_sec
        ),
        next_message=message.next_attempt(),
        reason="retry_scheduled",
    )


# =============================================================================
# FAILURE ROUTER
# =============================================================================
class FailureRouter:
    """
    Маршрутизация упавших сообщений: повтор или DLQ.
    """

    def __init__(
        self,
        queue: ConversionQueue,
        *,
        policy: RetryPolicy | None = None,
        session_factory: SessionFactory = db_session,
        redis=None,
    ) -> None:
        self.queue = queue
        self.policy = policy or RetryPolicy.from_settings()
        self.session_factory = session_factory
        self.redis = redis

    def handle_failure(self, message: ConversionMessage, exc: BaseException) -> RetryDecision:
        if isinstance(exc, ConfigurationError):
            raise exc

        decision = decide(message, exc, self.policy)
        error_text = short_err(exc)
        self._audit_failure(message, error_text)

        if decision.action == RetryAction.requeue and decision.next_message is not None:
            self.queue.send(decision.next_message, delay_sec=decision.delay_sec)
            log.warning(
                "conversion_requeued",
                extra={
                    "payload": {
                        "queue": self.queue.queue_name,
                        "message_type": message.type.value,
                        "pet_id": message.pet_id,
                        "category": decision.category,
                        "retry_count": decision.next_message.retry_count,
                        "max_retries": self.policy.max_retries,
                        "delay_sec": decision.delay_sec,
                    }
                },
            )
        else:
            self._dead_letter(message, error_text, decision)

        record_retry_decision(action=decision.action.value, category=decision.category)
        return decision

    def handle_malformed(self, raw: str, exc: BaseException) -> RetryDecision:
        """
        Неразбираемое сообщение: сразу в DLQ как есть, без аудита (pet_id неизвестен).
        """
        error_text = short_err(exc)
        self.queue.send_dead_letter(RawDeadLetter(raw=raw, error=error_text))
        log.error(
            "conversion_malformed_dead_lettered",
            extra={
                "payload": {
                    "queue": self.queue.queue_name,
                    "dlq": self.queue.dlq_name,
                    "error": error_text,
                }
            },
        )
        record_retry_decision(action=RetryAction.dead_letter.value, category=ErrCode.MALFORMED_INPUT)
        return RetryDecision(
            action=RetryAction.dead_letter,
            category=ErrCode.MALFORMED_INPUT,
            retryable=False,
            reason="malformed_input",
        )

    def _redis(self):
        return self.redis if self.redis is not None else self.queue.r

    def _dead_letter(self, message: ConversionMessage, error_text: str, decision: RetryDecision) -> None:
        fingerprint = message.fingerprint()
        if not check_and_set(DLQ_SCOPE, message.pet_id, fingerprint, client=self._redis()):
            log.info(
                "dead_letter_duplicate_skipped",
                extra={"payload": {"pet_id": message.pet_id, "fingerprint": fingerprint}},
            )
            return
        try:
            self.queue.send_dead_letter(DeadLetterMessage.from_message(message, error=error_text))
        except Exception:
            release(DLQ_SCOPE, message.pet_id, fingerprint, client=self._redis())
            raise
        log.error(
            "conversion_dead_lettered",
            extra={
                "payload": {
                    "queue": self.queue.queue_name,
                    "dlq": self.queue.dlq_name,
                    "message_type": message.type.value,
                    "pet_id": message.pet_id,
                    "category": decision.category,
                    "reason": decision.reason,
                    "retry_count": message.retry_count,
                }
            },
        )

    def _audit_failure(self, message: ConversionMessage, error_text: str) -> None:
        # аудит не должен мешать маршрутизации сообщения
        try:
            with self.session_factory() as session:
                ConversionLogRepository(session).append(
                    message_type=message.type.value,
                    pet_id=message.pet_id,
                    status=AuditStatus.failed,
                    retry_count=message.retry_count,
                    error_message=error_text,
                )
        except Exception as e:
            log.warning(
                "conversion_audit_failed",
                extra={"payload": {"pet_id": message.pet_id, "error": str(e)[:200]}},
            )
