from __future__ import annotations

import pytest
import requests

from pawmatch_media.common.config import get_settings
from pawmatch_media.common.errors import ErrCode, ProcessingError
from pawmatch_media.connectors.base import TransformRequest
from pawmatch_media.connectors.transform import http_adapter
from pawmatch_media.connectors.transform.http_adapter import (
    HttpTransformBackend,
    resolve_transform_backend,
)
from pawmatch_media.connectors.transform.mock import PassthroughTransformBackend


class _FakeResponse:
    def __init__(self, status_code: int, content: bytes = b"") -> None:
        self.status_code = status_code
        self.content = content


class _FakeSession:
    def __init__(self, response: _FakeResponse | None = None, exc: Exception | None = None) -> None:
        self.response = response
        self.exc = exc
        self.calls: list[dict] = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return self.response


def _request() -> TransformRequest:
    return TransformRequest(
        operation="convert_to_webp",
        source=b"original-jpeg",
        options={"format": "webp", "quality": 85, "fit": "scale-down", "width": 1200},
    )


def test_success_returns_transformed_bytes_and_sends_options_header() -> None:
    session = _FakeSession(_FakeResponse(200, b"webp-bytes"))
    backend = HttpTransformBackend(url="http://transform.local/img", timeout_sec=7, session=session)

    result = backend.transform(_request())

    assert result.data == b"webp-bytes"
    assert result.passthrough is False
    call = session.calls[0]
    assert call["data"] == b"original-jpeg"
    assert call["timeout"] == 7
    assert call["headers"]["CF-Polished"] == "format=webp,quality=85,fit=scale-down,width=1200"


def test_non_200_falls_back_to_original_bytes() -> None:
    session = _FakeSession(_FakeResponse(503))
    backend = HttpTransformBackend(url="http://transform.local", fallback_passthrough=True, session=session)

    result = backend.transform(_request())

    assert result.data == b"original-jpeg"
    assert result.passthrough is True
    assert result.fallback_reason == ErrCode.UPSTREAM_UNAVAILABLE


@pytest.mark.parametrize(
    ("session", "code"),
    [
        (_FakeSession(_FakeResponse(429)), ErrCode.RATE_LIMITED),
        (_FakeSession(_FakeResponse(502)), ErrCode.UPSTREAM_UNAVAILABLE),
        (_FakeSession(exc=requests.Timeout("read timed out")), ErrCode.TIMEOUT),
        (_FakeSession(exc=requests.ConnectionError("refused")), ErrCode.NETWORK),
    ],
)
def test_without_fallback_errors_are_retryable(session: _FakeSession, code: str) -> None:
    backend = HttpTransformBackend(url="http://transform.local", fallback_passthrough=False, session=session)

    with pytest.raises(ProcessingError) as ei:
        backend.transform(_request())

    assert ei.value.code == code
    assert ei.value.retryable is True


def test_resolve_backend_by_url(monkeypatch) -> None:
    s = get_settings()
    monkeypatch.setattr(s, "transform_url", None)
    assert isinstance(resolve_transform_backend(), PassthroughTransformBackend)

    monkeypatch.setattr(s, "transform_url", "http://transform.local")
    assert isinstance(resolve_transform_backend(), HttpTransformBackend)


def test_passthrough_backend_returns_source() -> None:
    result = PassthroughTransformBackend().transform(_request())
    assert result.data == b"original-jpeg"
    assert result.passthrough is True


def test_module_uses_requests_when_no_session(monkeypatch) -> None:
    calls = []

    def _fake_post(url, data=None, headers=None, timeout=None):
        calls.append(url)
        return _FakeResponse(200, b"ok")

    monkeypatch.setattr(http_adapter.requests, "post", _fake_post)
    backend = HttpTransformBackend(url="http://transform.local/x")
    assert backend.transform(_request()).data == b"ok"
    assert calls == ["http://transform.local/x"]
