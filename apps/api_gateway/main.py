"""
API Gateway (FastAPI).

Функции:
- /health
- /metrics
- HTTP API batch-задач, сверки и просмотра DLQ

Архитектурно:
- POST /v1/jobs регистрирует задачу и запускает её в фоне (BackgroundTasks)
- сама конвертация выполняется worker_converter по сообщениям из очереди
"""

from __future__ import annotations

from typing import Any

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from apps.api_gateway.routers.jobs import router as jobs_router
from pawmatch_media.common.config import get_settings
from pawmatch_media.common.errors import ErrCode, InvalidTransitionError, ValidationError
from pawmatch_media.common.logging import get_project_logger, setup_logging
from pawmatch_media.common.metrics import setup_metrics_endpoint

log = get_project_logger()


def _create_app() -> FastAPI:
    app = FastAPI(title="PawMatch Media Converter", version="0.1.0")

    setup_metrics_endpoint(app)

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
        return JSONResponse(
            status_code=409,
            content={"detail": {"code": exc.code, "message": exc.message, "details": exc.details or {}}},
        )

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=422,
            content={"detail": {"code": ErrCode.VALIDATION, "message": exc.message}},
        )

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"ok": True}

    app.include_router(jobs_router, prefix="/v1")

    return app


setup_logging()
log.info("api_gateway_ready")

app = _create_app()


def main() -> None:
    s = get_settings()
    uvicorn.run(app, host=s.api_host, port=int(s.api_port), log_config=None)


if __name__ == "__main__":
    main()
