"""
Worker Converter.

Алгоритм:
- при старте возвращаем в очередь неподтверждённые сообщения этого consumer'а
- в цикле: созревшие отложенные → основная очередь, забираем батч
- каждое сообщение: разбор → диспетчер → ack
- ошибка обработки → FailureRouter (повтор с задержкой или DLQ) → ack
- не удалось маршрутизировать → после батча сообщение возвращается в очередь

Важно:
- ack только после того, как сообщение обработано или маршрутизировано
- ConfigurationError останавливает процесс, сообщение остаётся в processing-списке
"""

from __future__ import annotations

import time

from pawmatch_media.common.config import get_settings
from pawmatch_media.common.errors import ConfigurationError, ProcessingError
from pawmatch_media.common.logging import get_worker_logger, setup_logging
from pawmatch_media.contracts.queue_events import parse_message
from pawmatch_media.queue.client import ConversionQueue, Delivery
from pawmatch_media.queue.retry import FailureRouter
from pawmatch_media.services.conversion_service import ConversionDispatcher

log = get_worker_logger()


def handle_delivery(
    delivery: Delivery,
    *,
    queue: ConversionQueue,
    dispatcher: ConversionDispatcher,
    router: FailureRouter,
) -> str:
    """
    Обработать одно сообщение. Возвращает исход: done|noop|requeue|dead_letter|unacked.
    """
    try:
        message = parse_message(delivery.raw)
    except ProcessingError as e:
        try:
            router.handle_malformed(delivery.raw, e)
        except Exception as route_err:
            log.error(
                "worker_converter_route_failed",
                extra={"payload": {"err": str(route_err)[:250], "raw": delivery.raw[:300]}},
            )
            return "unacked"
        queue.ack(delivery)
        return "dead_letter"

    try:
        result = dispatcher.dispatch(message)
    except ConfigurationError:
        raise
    except Exception as e:
        log.warning(
            "worker_converter_dispatch_failed",
            extra={
                "payload": {
                    "pet_id": message.pet_id,
                    "message_type": message.type.value,
                    "retry_count": message.retry_count,
                    "err": str(e)[:250],
                }
            },
        )
        try:
            decision = router.handle_failure(message, e)
        except ConfigurationError:
            raise
        except Exception as route_err:
            # без маршрутизации не подтверждаем: сообщение вернётся при recover_inflight
            log.error(
                "worker_converter_route_failed",
                extra={"payload": {"pet_id": message.pet_id, "err": str(route_err)[:250]}},
            )
            return "unacked"
        queue.ack(delivery)
        return decision.action.value

    queue.ack(delivery)
    return "noop" if result.noop else "done"


def run_loop(
    *,
    queue: ConversionQueue | None = None,
    dispatcher: ConversionDispatcher | None = None,
    router: FailureRouter | None = None,
    max_iterations: int | None = None,
) -> None:
    s = get_settings()
    queue = queue or ConversionQueue()
    dispatcher = dispatcher or ConversionDispatcher()
    router = router or FailureRouter(queue)

    recovered = queue.recover_inflight()
    log.info(
        "worker_converter_started",
        extra={
            "payload": {
                "queue": queue.queue_name,
                "consumer": queue.consumer,
                "recovered": recovered,
                "batch_size": s.worker_batch_size,
            }
        },
    )

    iteration = 0
    while max_iterations is None or iteration < max_iterations:
        iteration += 1
        queue.promote_due()
        deliveries = queue.receive(
            max_messages=max(1, int(s.worker_batch_size)),
            timeout_sec=max(1, int(s.worker_poll_timeout_sec)),
        )
        outcomes = [
            handle_delivery(delivery, queue=queue, dispatcher=dispatcher, router=router)
            for delivery in deliveries
        ]
        # processing-список сейчас содержит только неподтверждённые сообщения этого батча
        if "unacked" in outcomes:
            queue.recover_inflight()


def main() -> None:
    setup_logging()
    while True:
        try:
            run_loop()
        except ConfigurationError as e:
            log.critical(
                "worker_converter_configuration_error",
                extra={"payload": {"err": e.message, "details": e.details or {}}},
            )
            raise SystemExit(1) from e
        except Exception as e:
            log.error("worker_converter_fatal", extra={"payload": {"err": str(e)[:250]}})
            time.sleep(2)


if __name__ == "__main__":
    main()
