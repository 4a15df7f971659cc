from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from pawmatch_media.common.errors import InvalidTransitionError, NotFoundError, ValidationError
from pawmatch_media.domain.enums import JobKind, JobStatus
from pawmatch_media.services.job_registry import JobConfig, JobRegistry
from pawmatch_media.services.progress_monitor import (
    ProgressDelta,
    ProgressMonitor,
    compute_percent,
    estimate_remaining,
)


@pytest.fixture()
def registry(session_factory) -> JobRegistry:
    return JobRegistry(session_factory=session_factory)


@pytest.fixture()
def monitor(session_factory, registry) -> ProgressMonitor:
    return ProgressMonitor(registry=registry, session_factory=session_factory)


def _running_job(registry: JobRegistry, kind: JobKind = JobKind.full):
    job = registry.create_job(JobConfig(kind=kind))
    return registry.transition(job.id, JobStatus.running)


@pytest.mark.parametrize(
    ("processed", "total", "percent"),
    [
        (0, 0, 0),
        (0, 10, 0),
        (1, 3, 33),
        (2, 3, 67),
        (1, 200, 1),
        (1, 201, 0),
        (10, 10, 100),
        (15, 10, 100),
    ],
)
def test_compute_percent(processed: int, total: int, percent: int) -> None:
    assert compute_percent(processed, total) == percent


def test_counters_accumulate(registry, monitor) -> None:
    job = _running_job(registry)

    monitor.update_progress(job.id, ProgressDelta(total_items=4))
    monitor.update_progress(job.id, ProgressDelta(success=1))
    rec = monitor.update_progress(job.id, ProgressDelta(success=1, failed=1))

    assert (rec.total_items, rec.processed_items, rec.success_count, rec.failed_count) == (4, 3, 2, 1)
    assert rec.progress_percent == 75


def test_percent_does_not_decrease_when_total_grows(registry, monitor) -> None:
    job = _running_job(registry)
    monitor.update_progress(job.id, ProgressDelta(success=5, total_items=10))

    rec = monitor.update_progress(job.id, ProgressDelta(success=1, total_items=100))

    assert rec.processed_items == 6
    assert rec.progress_percent == 50


def test_negative_delta_rejected(registry, monitor) -> None:
    job = _running_job(registry)
    with pytest.raises(ValidationError):
        monitor.update_progress(job.id, ProgressDelta(success=-1))
    with pytest.raises(ValidationError):
        monitor.update_progress(job.id, ProgressDelta(total_items=-5))


def test_terminal_job_rejects_progress(registry, monitor) -> None:
    job = _running_job(registry)
    monitor.update_progress(job.id, ProgressDelta(success=2, total_items=2))
    registry.transition(job.id, JobStatus.completed, progress_percent=100)

    with pytest.raises(InvalidTransitionError):
        monitor.update_progress(job.id, ProgressDelta(success=1))

    assert monitor.get_progress(job.id).success_count == 2


def test_get_progress_unknown_job(monitor) -> None:
    with pytest.raises(NotFoundError):
        monitor.get_progress("missing")


def test_eta_only_for_running_jobs(registry, monitor) -> None:
    job = registry.create_job(JobConfig(kind=JobKind.image))
    assert monitor.get_progress(job.id).estimated_remaining_ms is None

    registry.transition(job.id, JobStatus.running)
    monitor.update_progress(job.id, ProgressDelta(success=1, total_items=3))
    assert monitor.get_progress(job.id).estimated_remaining_ms is not None


def test_estimate_remaining(registry, monitor) -> None:
    job = _running_job(registry)
    rec = monitor.update_progress(job.id, ProgressDelta(success=2, total_items=10))
    snapshot = registry.require_job(job.id)

    eta = estimate_remaining(snapshot, rec, now=snapshot.started_at + timedelta(seconds=10))
    assert eta == 40000

    nothing_done = replace(rec, processed_items=0)
    assert estimate_remaining(snapshot, nothing_done, now=snapshot.started_at) == 0


def test_summarize_counts_and_total_processed(registry, monitor) -> None:
    done = _running_job(registry)
    monitor.update_progress(done.id, ProgressDelta(success=3, failed=1, total_items=4))
    registry.transition(done.id, JobStatus.completed, progress_percent=100)

    broken = _running_job(registry)
    monitor.update_progress(broken.id, ProgressDelta(success=2, total_items=10))
    registry.transition(broken.id, JobStatus.failed, error="boom")

    _running_job(registry)
    registry.create_job(JobConfig(kind=JobKind.image))

    summary = monitor.summarize()

    assert summary.active_jobs == 1
    assert summary.completed_jobs == 1
    assert summary.failed_jobs == 1
    assert summary.total_processed == 5
    assert summary.last_sync_time == registry.require_job(done.id).completed_at


def test_summarize_empty(monitor) -> None:
    summary = monitor.summarize()
    assert (summary.active_jobs, summary.completed_jobs, summary.failed_jobs) == (0, 0, 0)
    assert summary.total_processed == 0
    assert summary.last_sync_time is None


def test_job_statistics(registry, monitor) -> None:
    job = _running_job(registry)
    monitor.update_progress(job.id, ProgressDelta(success=3, failed=1, total_items=4))
    started = registry.require_job(job.id).started_at

    stats = monitor.job_statistics(job.id, now=started + timedelta(seconds=4))

    assert stats.duration_ms == 4000
    assert stats.avg_processing_time_ms == 1000
    assert stats.success_rate == 75
    assert stats.error_rate == 25


def test_job_statistics_without_items(registry, monitor) -> None:
    job = _running_job(registry)
    stats = monitor.job_statistics(job.id)
    assert stats.avg_processing_time_ms == 0
    assert stats.success_rate == 0
    assert stats.error_rate == 0
