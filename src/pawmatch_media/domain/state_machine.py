"""
Машина состояний batch-задач.

Назначение:
- Централизованное управление переходами статусов
- Переходы только вперёд: pending → running → completed | failed
- Терминальные задачи неизменяемы
"""

from __future__ import annotations

from dataclasses import dataclass

from .enums import TERMINAL_JOB_STATUSES, JobStatus


# =============================================================================
# РЕЗУЛЬТАТ ПЕРЕХОДА
# =============================================================================
@dataclass
class TransitionResult:
    ok: bool
    status: JobStatus | None = None
    reason: str | None = None


# =============================================================================
# ДОПУСТИМЫЕ РЁБРА
# =============================================================================
_ALLOWED: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.pending: frozenset({JobStatus.running}),
    JobStatus.running: frozenset({JobStatus.completed, JobStatus.failed}),
    JobStatus.completed: frozenset(),
    JobStatus.failed: frozenset(),
}


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_JOB_STATUSES


def allowed_targets(current: JobStatus) -> frozenset[JobStatus]:
    return _ALLOWED.get(current, frozenset())


# =============================================================================
# ПЕРЕХОД СОСТОЯНИЙ
# =============================================================================
def transition(current: JobStatus, target: JobStatus) -> TransitionResult:
    """
    Правила перехода:
    - из терминального статуса → отказ (job_terminal)
    - ребро не из таблицы _ALLOWED → отказ (edge_not_allowed)
    - иначе → новый статус
    """
    if is_terminal(current):
        return TransitionResult(ok=False, status=current, reason="job_terminal")

    if target not in allowed_targets(current):
        return TransitionResult(ok=False, status=current, reason="edge_not_allowed")

    return TransitionResult(ok=True, status=target)
