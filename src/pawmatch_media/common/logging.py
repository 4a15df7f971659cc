"""
Логирование PawMatch media.

Одна строка JSON на событие в stdout. Ключи, по которым ищут в логах
(pet_id, job_id, type сообщения, consumer), поднимаются из payload на верхний
уровень, остальное остаётся в payload как есть.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from pawmatch_media.common.config import get_settings

ROOT_LOGGER = "pawmatch-media"
INDEXED_KEYS = ("pet_id", "pet_type", "job_id", "message_type", "consumer")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        payload = getattr(record, "payload", None)
        if isinstance(payload, dict):
            rest = dict(payload)
            for key in INDEXED_KEYS:
                if rest.get(key) is not None:
                    out[key] = rest.pop(key)
            if rest:
                out["payload"] = rest
        if record.exc_info:
            out["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(out, ensure_ascii=False, default=str)


def setup_logging() -> None:
    level = getattr(logging, (get_settings().log_level or "INFO").upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)

    # повторный вызов (uvicorn reload, тесты) не добавляет хэндлер
    if any(getattr(h, "_pawmatch", False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler._pawmatch = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    for name in ("uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)


def get_project_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    return logging.getLogger(name)


def get_worker_logger() -> logging.Logger:
    """Логгер воркера конвертации."""
    return logging.getLogger(f"{ROOT_LOGGER}.worker")
