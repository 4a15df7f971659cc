from __future__ import annotations

import pytest

from pawmatch_media.domain.enums import JobStatus
from pawmatch_media.domain.state_machine import allowed_targets, is_terminal, transition


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (JobStatus.pending, JobStatus.running),
        (JobStatus.running, JobStatus.completed),
        (JobStatus.running, JobStatus.failed),
    ],
)
def test_forward_edges_allowed(current: JobStatus, target: JobStatus) -> None:
    res = transition(current, target)
    assert res.ok is True
    assert res.status == target


def test_skipping_running_is_rejected() -> None:
    res = transition(JobStatus.pending, JobStatus.completed)
    assert res.ok is False
    assert res.reason == "edge_not_allowed"
    assert res.status == JobStatus.pending


def test_backwards_edge_is_rejected() -> None:
    assert transition(JobStatus.running, JobStatus.pending).ok is False


@pytest.mark.parametrize("terminal", [JobStatus.completed, JobStatus.failed])
def test_terminal_statuses_are_immutable(terminal: JobStatus) -> None:
    assert is_terminal(terminal)
    assert allowed_targets(terminal) == frozenset()
    for target in JobStatus:
        res = transition(terminal, target)
        assert res.ok is False
        assert res.reason == "job_terminal"
