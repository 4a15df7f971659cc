"""
Blob storage (локальная ФС, раскладка как в объектном хранилище).

Назначение:
- put/get байт по ключу объекта
- head/exists: проверка наличия без чтения содержимого
- листинг по префиксу (поиск orphan-объектов)

Метаданные объекта хранятся рядом в <key>.meta.json.
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from pawmatch_media.common.config import get_settings
from pawmatch_media.common.errors import ErrCode, ProcessingError

_META_SUFFIX = ".meta.json"


@dataclass
class BlobHead:
    key: str
    size: int
    modified_at: float
    metadata: dict


def _base_dir() -> Path:
    return Path(get_settings().blob_dir).resolve()


def _key_to_path(key: str) -> Path:
    # защита от path traversal
    key = key.lstrip("/")
    if not key or ".." in key.split("/"):
        raise ProcessingError(ErrCode.VALIDATION, "invalid key", details={"key": key})
    return _base_dir() / key


def _meta_path(p: Path) -> Path:
    return p.with_name(p.name + _META_SUFFIX)


def put_bytes(key: str, data: bytes, *, metadata: dict | None = None) -> str:
    """Сохранить bytes (атомарно через rename) и вернуть ключ."""
    p = _key_to_path(key)
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_name(p.name + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, p)
        if metadata is not None:
            _meta_path(p).write_text(json.dumps(metadata, ensure_ascii=False), encoding="utf-8")
    except OSError as e:
        raise ProcessingError(
            ErrCode.STORAGE_TRANSIENT, "Ошибка записи в blob storage", details={"key": key}
        ) from e
    return key


def get_bytes(key: str) -> bytes | None:
    """None, если объекта нет."""
    p = _key_to_path(key)
    try:
        return p.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise ProcessingError(
            ErrCode.STORAGE_TRANSIENT, "Ошибка чтения из blob storage", details={"key": key}
        ) from e


def head(key: str) -> BlobHead | None:
    p = _key_to_path(key)
    try:
        st = p.stat()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise ProcessingError(
            ErrCode.STORAGE_TRANSIENT, "Ошибка HEAD в blob storage", details={"key": key}
        ) from e
    metadata: dict = {}
    mp = _meta_path(p)
    if mp.exists():
        try:
            metadata = json.loads(mp.read_text(encoding="utf-8"))
        except ValueError:
            metadata = {}
    return BlobHead(key=key, size=st.st_size, modified_at=st.st_mtime, metadata=metadata)


def exists(key: str) -> bool:
    return head(key) is not None


def list_keys(prefix: str = "") -> Iterator[str]:
    """
    Ключи объектов под префиксом (без служебных .meta.json/.tmp).
    """
    base = _base_dir()
    root = base / prefix.lstrip("/") if prefix else base
    if not root.exists():
        return
    for p in sorted(root.rglob("*")):
        if not p.is_file():
            continue
        if p.name.endswith(_META_SUFFIX) or p.name.endswith(".tmp"):
            continue
        yield p.relative_to(base).as_posix()
