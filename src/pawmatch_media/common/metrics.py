"""
Метрики Prometheus для сервиса.

Назначение:
- Экспорт /metrics
- Счётчики конвертаций, ретраев/DLQ, сверки и batch-задач
- Используется API Gateway и воркерами
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# =============================================================================
# СЧЁТЧИКИ И МЕТРИКИ
# =============================================================================

REQUESTS_TOTAL = Counter(
    "media_requests_total",
    "Общее количество HTTP запросов",
    ["service", "route", "method", "status"],
)

# Обработка сообщений конвертации
CONVERSIONS_TOTAL = Counter(
    "media_conversions_total",
    "Количество обработанных сообщений конвертации",
    ["message_type", "result"],  # success|noop|failed
)

RETRY_DECISIONS_TOTAL = Counter(
    "media_retry_decisions_total",
    "Решения роутера ошибок",
    ["action", "category"],  # requeue|dead_letter
)

TRANSFORM_LATENCY_MS = Histogram(
    "media_transform_latency_ms",
    "Задержка вызова transform backend (мс)",
    ["operation"],
    buckets=(10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000),
)

TRANSFORM_FALLBACK_TOTAL = Counter(
    "media_transform_fallback_total",
    "Количество деградаций до passthrough исходных байт",
    ["operation", "reason"],
)

QUEUE_DEPTH = Gauge(
    "media_queue_depth",
    "Текущая глубина очереди конвертации",
    ["queue"],
)

DLQ_DEPTH = Gauge(
    "media_dlq_depth",
    "Текущая глубина DLQ",
    ["queue"],
)

RECONCILE_RUNS_TOTAL = Counter(
    "media_reconcile_runs_total",
    "Запуски сверки БД и blob storage",
    ["source", "result"],
)

RECONCILE_LAST_CHECKED = Gauge(
    "media_reconcile_last_checked",
    "Количество проверенных записей в последней сверке",
)

RECONCILE_LAST_DISCREPANCIES = Gauge(
    "media_reconcile_last_discrepancies",
    "Количество расхождений в последней сверке",
)

RECONCILE_FIXED_TOTAL = Counter(
    "media_reconcile_fixed_total",
    "Количество исправленных presence-записей",
)

JOBS_BY_STATUS = Gauge(
    "media_jobs",
    "Количество batch-задач по статусам",
    ["status"],
)

METRICS_COLLECTION_ERRORS_TOTAL = Counter(
    "media_metrics_collection_errors_total",
    "Ошибки сборки служебных метрик",
    ["source"],
)


@contextmanager
def track_transform_latency(operation: str) -> Iterator[None]:
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        TRANSFORM_LATENCY_MS.labels(operation=operation).observe(elapsed_ms)


def record_conversion(*, message_type: str, result: str) -> None:
    CONVERSIONS_TOTAL.labels(message_type=message_type, result=result).inc()


def record_retry_decision(*, action: str, category: str) -> None:
    RETRY_DECISIONS_TOTAL.labels(action=action, category=category).inc()


def record_transform_fallback(*, operation: str, reason: str) -> None:
    TRANSFORM_FALLBACK_TOTAL.labels(operation=operation, reason=reason).inc()


def record_reconcile_result(
    *,
    source: str,
    checked: int,
    discrepancies: int,
    fixed: int,
    cancelled: bool = False,
) -> None:
    result = "cancelled" if cancelled else ("drift" if discrepancies > 0 else "ok")
    RECONCILE_RUNS_TOTAL.labels(source=source, result=result).inc()
    RECONCILE_LAST_CHECKED.set(max(0, checked))
    RECONCILE_LAST_DISCREPANCIES.set(max(0, discrepancies))
    if fixed > 0:
        RECONCILE_FIXED_TOTAL.inc(fixed)


def refresh_queue_metrics() -> None:
    try:
        from pawmatch_media.queue.client import ConversionQueue

        q = ConversionQueue()
        QUEUE_DEPTH.labels(queue=q.queue_name).set(q.depth())
        DLQ_DEPTH.labels(queue=q.queue_name).set(q.dlq_depth())
    except Exception:
        METRICS_COLLECTION_ERRORS_TOTAL.labels(source="queue_metrics").inc()


def refresh_job_metrics() -> None:
    try:
        from pawmatch_media.domain.enums import JobStatus
        from pawmatch_media.services.job_registry import JobRegistry

        counts = JobRegistry().count_by_status()
        for status in JobStatus:
            JOBS_BY_STATUS.labels(status=status.value).set(counts.get(status, 0))
    except Exception:
        METRICS_COLLECTION_ERRORS_TOTAL.labels(source="job_metrics").inc()


# =============================================================================
# ENDPOINT /metrics
# =============================================================================
def setup_metrics_endpoint(app: FastAPI) -> None:
    """
    Регистрирует endpoint /metrics для Prometheus.
    """

    @app.middleware("http")
    async def http_metrics(request: Request, call_next):
        response = await call_next(request)
        REQUESTS_TOTAL.labels(
            service="api-gateway",
            route=request.url.path,
            method=request.method,
            status=str(response.status_code),
        ).inc()
        return response

    @app.get("/metrics")
    def metrics() -> Response:
        refresh_queue_metrics()
        refresh_job_metrics()
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
