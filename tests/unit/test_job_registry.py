from __future__ import annotations

import pytest

from pawmatch_media.common.errors import ConflictError, InvalidTransitionError, NotFoundError
from pawmatch_media.domain.enums import JobKind, JobStatus, PetType
from pawmatch_media.services.job_registry import JobConfig, JobRegistry
from pawmatch_media.storage.repositories import SyncJobRepository


@pytest.fixture()
def registry(session_factory) -> JobRegistry:
    return JobRegistry(session_factory=session_factory, max_attempts=3)


def test_create_job_starts_pending(registry: JobRegistry) -> None:
    job = registry.create_job(
        JobConfig(kind=JobKind.image, pet_type=PetType.cat, pet_ids=["c-1"], limit=5)
    )

    assert job.id.startswith("sync_")
    assert job.status == JobStatus.pending
    assert job.progress_percent == 0
    assert job.completed_at is None
    assert job.version == 1
    assert job.metadata == {"pet_type": "cat", "pet_ids": ["c-1"], "limit": 5}
    assert registry.last_job_id() == job.id


def test_lifecycle_running_then_completed(registry: JobRegistry) -> None:
    job = registry.create_job(JobConfig(kind=JobKind.full))

    running = registry.transition(job.id, JobStatus.running)
    assert running.status == JobStatus.running
    assert running.version == 2
    assert [j.id for j in registry.list_active()] == [job.id]

    done = registry.transition(job.id, JobStatus.completed, progress_percent=100)
    assert done.status == JobStatus.completed
    assert done.progress_percent == 100
    assert done.completed_at is not None
    assert done.is_terminal
    assert registry.list_active() == []
    assert registry.count_by_status() == {JobStatus.completed: 1}


def test_failed_keeps_error_text(registry: JobRegistry) -> None:
    job = registry.create_job(JobConfig(kind=JobKind.full))
    registry.transition(job.id, JobStatus.running)

    failed = registry.transition(job.id, JobStatus.failed, error="queue unavailable")

    assert failed.status == JobStatus.failed
    assert failed.error == "queue unavailable"


def test_pending_cannot_jump_to_completed(registry: JobRegistry) -> None:
    job = registry.create_job(JobConfig(kind=JobKind.image))

    with pytest.raises(InvalidTransitionError):
        registry.transition(job.id, JobStatus.completed)

    assert registry.require_job(job.id).status == JobStatus.pending


def test_terminal_job_is_immutable(registry: JobRegistry) -> None:
    job = registry.create_job(JobConfig(kind=JobKind.image))
    registry.transition(job.id, JobStatus.running)
    registry.transition(job.id, JobStatus.failed, error="boom")

    with pytest.raises(InvalidTransitionError) as ei:
        registry.transition(job.id, JobStatus.running)

    assert ei.value.details["reason"] == "job_terminal"
    assert registry.require_job(job.id).error == "boom"


def test_progress_never_goes_back_on_transition(registry: JobRegistry) -> None:
    job = registry.create_job(JobConfig(kind=JobKind.image))
    registry.transition(job.id, JobStatus.running, progress_percent=40)

    done = registry.transition(job.id, JobStatus.completed, progress_percent=10)

    assert done.progress_percent == 40


def test_unknown_job(registry: JobRegistry) -> None:
    assert registry.get_job("nope") is None
    with pytest.raises(NotFoundError):
        registry.require_job("nope")
    with pytest.raises(NotFoundError):
        registry.transition("nope", JobStatus.running)


def test_conflict_is_retried_with_fresh_version(registry: JobRegistry, monkeypatch) -> None:
    job = registry.create_job(JobConfig(kind=JobKind.image))
    original = SyncJobRepository.compare_and_set
    calls: list[int] = []

    def _flaky(self, job_id, *, expected_version, values):
        calls.append(expected_version)
        if len(calls) == 1:
            return False
        return original(self, job_id, expected_version=expected_version, values=values)

    monkeypatch.setattr(SyncJobRepository, "compare_and_set", _flaky)

    running = registry.transition(job.id, JobStatus.running)

    assert running.status == JobStatus.running
    assert calls == [1, 1]


def test_persistent_conflict_raises_after_max_attempts(registry: JobRegistry, monkeypatch) -> None:
    job = registry.create_job(JobConfig(kind=JobKind.image))
    calls: list[int] = []

    def _always_lose(self, job_id, *, expected_version, values):
        calls.append(expected_version)
        return False

    monkeypatch.setattr(SyncJobRepository, "compare_and_set", _always_lose)

    with pytest.raises(ConflictError):
        registry.transition(job.id, JobStatus.running)

    assert len(calls) == 3
    monkeypatch.undo()
    assert registry.require_job(job.id).status == JobStatus.pending
