"""
HTTP-адаптер transform backend.

Контракт:
- POST сырых байт исходника
- параметры (формат/качество/размеры) в заголовке TRANSFORM_OPTIONS_HEADER
- 200 → тело ответа = преобразованные байты
- всё остальное (не-200, сеть, таймаут) → retryable ошибка;
  при TRANSFORM_FALLBACK_PASSTHROUGH возвращаем исходные байты без изменений
"""

from __future__ import annotations

import requests

from pawmatch_media.common.config import get_settings
from pawmatch_media.common.errors import ErrCode, ProcessingError
from pawmatch_media.common.logging import get_project_logger
from pawmatch_media.common.metrics import record_transform_fallback, track_transform_latency
from pawmatch_media.connectors.base import TransformBackend, TransformRequest, TransformResult

from .mock import PassthroughTransformBackend

log = get_project_logger()


def _status_code_category(status_code: int) -> str:
    if status_code == 429:
        return ErrCode.RATE_LIMITED
    return ErrCode.UPSTREAM_UNAVAILABLE


class HttpTransformBackend(TransformBackend):
    def __init__(
        self,
        *,
        url: str | None = None,
        timeout_sec: float | None = None,
        options_header: str | None = None,
        fallback_passthrough: bool | None = None,
        session: requests.Session | None = None,
    ) -> None:
        s = get_settings()
        self.url = (url or s.transform_url or "").strip()
        self.timeout_sec = float(timeout_sec if timeout_sec is not None else s.transform_timeout_sec)
        self.options_header = options_header or s.transform_options_header
        self.fallback_passthrough = (
            s.transform_fallback_passthrough if fallback_passthrough is None else fallback_passthrough
        )
        self._session = session

    def _post(self, request: TransformRequest) -> bytes:
        if not self.url:
            raise ProcessingError(ErrCode.UPSTREAM_UNAVAILABLE, "TRANSFORM_URL не настроен")

        headers = {
            "Content-Type": "application/octet-stream",
            self.options_header: request.options_header(),
        }
        http = self._session or requests
        try:
            resp = http.post(self.url, data=request.source, headers=headers, timeout=self.timeout_sec)
        except requests.Timeout as e:
            raise ProcessingError(
                ErrCode.TIMEOUT,
                "Таймаут transform backend",
                details={"timeout_sec": self.timeout_sec},
            ) from e
        except requests.RequestException as e:
            raise ProcessingError(
                ErrCode.NETWORK,
                "Ошибка обращения к transform backend",
                details={"err": str(e)[:200]},
            ) from e

        if resp.status_code != 200:
            raise ProcessingError(
                _status_code_category(resp.status_code),
                f"Transform backend ответил {resp.status_code}",
                details={"status_code": resp.status_code},
            )
        return resp.content

    def transform(self, request: TransformRequest) -> TransformResult:
        try:
            with track_transform_latency(request.operation):
                data = self._post(request)
        except ProcessingError as e:
            if not self.fallback_passthrough:
                raise
            record_transform_fallback(operation=request.operation, reason=e.code)
            log.warning(
                "transform_fallback_passthrough",
                extra={
                    "payload": {
                        "operation": request.operation,
                        "category": e.code,
                        "error": e.message,
                    }
                },
            )
            return TransformResult(data=request.source, passthrough=True, fallback_reason=e.code)

        return TransformResult(data=data)


def resolve_transform_backend() -> TransformBackend:
    """
    HTTP-адаптер, если TRANSFORM_URL задан, иначе passthrough.
    """
    s = get_settings()
    if (s.transform_url or "").strip():
        return HttpTransformBackend()
    log.info("transform_backend_passthrough", extra={"payload": {"reason": "TRANSFORM_URL empty"}})
    return PassthroughTransformBackend()
