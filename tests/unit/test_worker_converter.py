from __future__ import annotations

import json
import time

import pytest

from apps.worker_converter.main import handle_delivery, run_loop
from pawmatch_media.common.errors import ConfigurationError
from pawmatch_media.connectors.transform.http_adapter import HttpTransformBackend
from pawmatch_media.contracts.queue_events import ConversionMessage
from pawmatch_media.domain.enums import MessageType, PetType
from pawmatch_media.queue.client import ConversionQueue
from pawmatch_media.queue.retry import FailureRouter, RetryPolicy
from pawmatch_media.services.conversion_service import ConversionDispatcher
from pawmatch_media.storage.repositories import ConversionLogRepository


class _Unavailable:
    status_code = 503
    content = b""


class _DownSession:
    def __init__(self) -> None:
        self.calls = 0

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls += 1
        return _Unavailable()


class _Ok:
    status_code = 200
    content = b"webp-bytes"


class _OkSession:
    def post(self, url, data=None, headers=None, timeout=None):
        return _Ok()


def _message() -> ConversionMessage:
    return ConversionMessage(type=MessageType.to_webp, pet_id="pet-42", pet_type=PetType.dog)


def _wiring(fake_redis, session_factory, http_session):
    queue = ConversionQueue(client=fake_redis)
    backend = HttpTransformBackend(
        url="http://transform.local", fallback_passthrough=False, session=http_session
    )
    dispatcher = ConversionDispatcher(backend=backend, session_factory=session_factory)
    router = FailureRouter(
        queue,
        policy=RetryPolicy(max_retries=3, base_delay_sec=30, max_delay_sec=1800),
        session_factory=session_factory,
    )
    return queue, dispatcher, router


def test_successful_delivery_is_acked(blob_dir, session_factory, add_pet, fake_redis) -> None:
    add_pet("pet-42", "dog", has_jpeg=True, with_original=True)
    queue, dispatcher, router = _wiring(fake_redis, session_factory, _OkSession())
    queue.send(_message())

    [delivery] = queue.receive(max_messages=1, timeout_sec=1)
    outcome = handle_delivery(delivery, queue=queue, dispatcher=dispatcher, router=router)

    assert outcome == "done"
    assert fake_redis.llen(queue.processing_name) == 0

    queue.send(_message())
    [again] = queue.receive(max_messages=1, timeout_sec=1)
    assert handle_delivery(again, queue=queue, dispatcher=dispatcher, router=router) == "noop"


def test_persistent_upstream_failure_ends_in_dead_letter(
    blob_dir, session_factory, add_pet, fake_redis
) -> None:
    add_pet("pet-42", "dog", has_jpeg=True, with_original=True)
    http = _DownSession()
    queue, dispatcher, router = _wiring(fake_redis, session_factory, http)
    queue.send(_message())

    outcomes = []
    for _ in range(4):
        queue.promote_due(now=time.time() + 3600)
        [delivery] = queue.receive(max_messages=1, timeout_sec=1)
        outcomes.append(handle_delivery(delivery, queue=queue, dispatcher=dispatcher, router=router))

    assert outcomes == ["requeue", "requeue", "requeue", "dead_letter"]
    assert http.calls == 4
    assert queue.depth() == 0
    assert queue.delayed_depth() == 0
    assert fake_redis.llen(queue.processing_name) == 0

    [dead] = queue.list_dead_letters()
    assert dead["retryCount"] == 3
    assert dead["petId"] == "pet-42"

    with session_factory() as s:
        entries = ConversionLogRepository(s).list_by_pet("pet-42")
        assert [(e.status, e.retry_count) for e in entries] == [
            ("failed", 0),
            ("failed", 1),
            ("failed", 2),
            ("failed", 3),
        ]


def test_malformed_message_goes_to_dlq_and_is_acked(session_factory, fake_redis) -> None:
    queue, dispatcher, router = _wiring(fake_redis, session_factory, _OkSession())
    fake_redis.lpush(queue.queue_name, json.dumps({"type": "resize_gif", "petId": "x"}))

    [delivery] = queue.receive(max_messages=1, timeout_sec=1)
    outcome = handle_delivery(delivery, queue=queue, dispatcher=dispatcher, router=router)

    assert outcome == "dead_letter"
    assert queue.dlq_depth() == 1
    assert fake_redis.llen(queue.processing_name) == 0


class _MisconfiguredDispatcher:
    def dispatch(self, message):
        raise ConfigurationError("TRANSFORM_URL указывает в никуда")


def test_configuration_error_stops_without_ack(session_factory, fake_redis) -> None:
    queue, _, router = _wiring(fake_redis, session_factory, _OkSession())
    queue.send(_message())
    [delivery] = queue.receive(max_messages=1, timeout_sec=1)

    with pytest.raises(ConfigurationError):
        handle_delivery(delivery, queue=queue, dispatcher=_MisconfiguredDispatcher(), router=router)

    assert fake_redis.llen(queue.processing_name) == 1
    assert queue.dlq_depth() == 0


class _BrokenRouter:
    def handle_failure(self, message, exc):
        raise RuntimeError("redis is gone")

    def handle_malformed(self, raw, exc):
        raise RuntimeError("redis is gone")


class _FailingDispatcher:
    def dispatch(self, message):
        raise RuntimeError("boom")


def test_unrouted_failure_stays_inflight_and_is_recovered(session_factory, fake_redis) -> None:
    queue = ConversionQueue(client=fake_redis)
    queue.send(_message())
    [delivery] = queue.receive(max_messages=1, timeout_sec=1)

    outcome = handle_delivery(
        delivery, queue=queue, dispatcher=_FailingDispatcher(), router=_BrokenRouter()
    )

    assert outcome == "unacked"
    assert fake_redis.llen(queue.processing_name) == 1
    assert queue.recover_inflight() == 1
    assert queue.depth() == 1


def test_run_loop_recovers_and_processes(blob_dir, session_factory, add_pet, fake_redis) -> None:
    add_pet("pet-42", "dog", has_jpeg=True, with_original=True)
    queue, dispatcher, router = _wiring(fake_redis, session_factory, _OkSession())
    queue.send(_message())
    queue.receive(max_messages=1, timeout_sec=1)  # left in processing, as after a crash

    run_loop(queue=queue, dispatcher=dispatcher, router=router, max_iterations=1)

    assert queue.depth() == 0
    assert fake_redis.llen(queue.processing_name) == 0
    with session_factory() as s:
        assert [e.status for e in ConversionLogRepository(s).list_by_pet("pet-42")] == ["success"]


class _FlakyRouter:
    def __init__(self, router: FailureRouter) -> None:
        self.router = router
        self.calls = 0

    def handle_failure(self, message, exc):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("redis is gone")
        return self.router.handle_failure(message, exc)

    def handle_malformed(self, raw, exc):
        return self.router.handle_malformed(raw, exc)


def test_unrouted_delivery_is_retried_within_the_loop(session_factory, fake_redis) -> None:
    queue, _, router = _wiring(fake_redis, session_factory, _OkSession())
    flaky = _FlakyRouter(router)
    queue.send(_message())

    run_loop(queue=queue, dispatcher=_FailingDispatcher(), router=flaky, max_iterations=5)

    assert flaky.calls == 2
    assert fake_redis.llen(queue.processing_name) == 0
    assert queue.dlq_depth() == 1
