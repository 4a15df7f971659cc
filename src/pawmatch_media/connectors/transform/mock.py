"""
Passthrough transform backend для dev/тестов.

Назначение:
- позволить гонять конвертер без внешнего сервиса преобразования
- используется, когда TRANSFORM_URL не задан
"""

from __future__ import annotations

from pawmatch_media.connectors.base import TransformBackend, TransformRequest, TransformResult


class PassthroughTransformBackend(TransformBackend):
    def transform(self, request: TransformRequest) -> TransformResult:
        return TransformResult(data=request.source, passthrough=True, fallback_reason="not_configured")
