from __future__ import annotations

from collections.abc import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pawmatch_media.common.config import get_settings
from pawmatch_media.common.time import utc_now
from pawmatch_media.storage import blob, paths
from pawmatch_media.storage.db import SessionFactory, session_scope
from pawmatch_media.storage.models import Base, Pet


class FakeRedis:
    """
    Минимальный in-memory Redis: списки, sorted set, строки с NX.
    """

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.store: dict[str, str] = {}

    # lists: индекс 0 = левый край
    def lpush(self, name: str, *values: str) -> int:
        lst = self.lists.setdefault(name, [])
        for v in values:
            lst.insert(0, v)
        return len(lst)

    def _pop(self, name: str, side: str) -> str | None:
        lst = self.lists.get(name) or []
        if not lst:
            return None
        return lst.pop(-1) if side.upper() == "RIGHT" else lst.pop(0)

    def _push(self, name: str, side: str, value: str) -> None:
        lst = self.lists.setdefault(name, [])
        if side.upper() == "RIGHT":
            lst.append(value)
        else:
            lst.insert(0, value)

    def lmove(self, first_list: str, second_list: str, src: str = "LEFT", dest: str = "RIGHT"):
        value = self._pop(first_list, src)
        if value is not None:
            self._push(second_list, dest, value)
        return value

    def blmove(self, first_list: str, second_list: str, timeout: int, src: str = "LEFT", dest: str = "RIGHT"):
        _ = timeout
        return self.lmove(first_list, second_list, src, dest)

    def lrem(self, name: str, count: int, value: str) -> int:
        lst = self.lists.get(name) or []
        if value in lst:
            lst.remove(value)
            return 1
        return 0

    def llen(self, name: str) -> int:
        return len(self.lists.get(name) or [])

    def lrange(self, name: str, start: int, end: int) -> list[str]:
        lst = self.lists.get(name) or []
        # как в Redis: end включительно, -1 = последний элемент
        stop = len(lst) + end + 1 if end < 0 else end + 1
        return lst[start:stop]

    # sorted sets
    def zadd(self, name: str, mapping: dict[str, float]) -> int:
        z = self.zsets.setdefault(name, {})
        added = sum(1 for k in mapping if k not in z)
        z.update(mapping)
        return added

    def zrangebyscore(self, name: str, min, max, start=None, num=None) -> list[str]:
        lo = float("-inf") if min == "-inf" else float(min)
        hi = float("inf") if max == "+inf" else float(max)
        items = sorted((score, member) for member, score in (self.zsets.get(name) or {}).items())
        out = [m for score, m in items if lo <= score <= hi]
        if start is not None and num is not None:
            out = out[start : start + num]
        return out

    def zrem(self, name: str, *values: str) -> int:
        z = self.zsets.get(name) or {}
        removed = 0
        for v in values:
            if v in z:
                del z[v]
                removed += 1
        return removed

    def zcard(self, name: str) -> int:
        return len(self.zsets.get(name) or {})

    # strings
    def set(self, name: str, value: str, ex: int | None = None, nx: bool = False):
        _ = ex
        if nx and name in self.store:
            return None
        self.store[name] = value
        return True

    def get(self, name: str) -> str | None:
        return self.store.get(name)

    def delete(self, *names: str) -> int:
        removed = 0
        for n in names:
            if self.store.pop(n, None) is not None:
                removed += 1
        return removed


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def session_factory() -> Iterator[SessionFactory]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    try:
        yield session_scope(factory)
    finally:
        engine.dispose()


@pytest.fixture()
def blob_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(get_settings(), "blob_dir", str(tmp_path / "blobs"))
    return tmp_path / "blobs"


@pytest.fixture()
def add_pet(session_factory):
    def _add(
        pet_id: str,
        pet_type: str = "dog",
        *,
        has_jpeg: bool = False,
        has_webp: bool = False,
        with_original: bool = False,
    ) -> None:
        now = utc_now()
        with session_factory() as s:
            s.add(
                Pet(
                    id=pet_id,
                    type=pet_type,
                    name=f"name-{pet_id}",
                    has_jpeg=has_jpeg,
                    has_webp=has_webp,
                    created_at=now,
                    updated_at=now,
                )
            )
        if with_original:
            blob.put_bytes(paths.original_key(pet_type, pet_id), b"\xff\xd8jpeg-bytes")

    return _add
