from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
import time
from typing import Any, Callable

from pydantic import ValidationError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ragcore.config import StoreOptions
from ragcore.db import Base
from ragcore.errors import MalformedIndexError, StoreIOError
from ragcore.models import KeyValueRecord
from ragcore.services.retrieval.types import Index

logger = logging.getLogger(__name__)

INDEXES_KEY = "retrieval:indexes"
LRU_KEY = "retrieval:lru"


class IndexStore:
    """Persists indexes under ``retrieval:indexes`` with LRU order in ``retrieval:lru``.

    The SQL database is the primary medium. Every write is mirrored into an
    in-process map, and the first database failure switches the store over to
    that map for the rest of its lifetime. No operation raises to the caller.
    Database calls run in a worker thread, one operation at a time; the
    in-process map is used inline.
    """

    def __init__(
        self,
        *,
        engine: Engine | None = None,
        options: StoreOptions | None = None,
        clock: Callable[[], float] = time.time,
        owns_engine: bool = False,
    ) -> None:
        self._engine = engine
        self._options = options or StoreOptions()
        self._clock = clock
        self._owns_engine = owns_engine
        self._memory: dict[str, Any] = {}
        self._degraded = engine is None
        self._lock = asyncio.Lock()

        if self._engine is not None:
            try:
                Base.metadata.create_all(bind=self._engine)
            except SQLAlchemyError as exc:
                self._fall_back("create schema", exc)

    @property
    def degraded(self) -> bool:
        return self._degraded

    async def load_index(self, key: str) -> Index | None:
        return await self._run(self._load_index, key)

    async def save_index(self, key: str, index: Index) -> None:
        await self._run(self._save_index, key, index)

    async def delete_index(self, key: str) -> None:
        await self._run(self._remove, key)

    async def keys(self) -> list[str]:
        return await self._run(self._read_lru)

    async def cleanup(self) -> int:
        return await self._run(self._cleanup)

    def close(self) -> None:
        self._memory.clear()
        if self._engine is not None and self._owns_engine:
            self._engine.dispose()

    async def _run(self, operation: Callable[..., Any], *args: Any) -> Any:
        async with self._lock:
            if self._degraded:
                return operation(*args)
            return await asyncio.to_thread(operation, *args)

    def _load_index(self, key: str) -> Index | None:
        indexes = self._read_indexes()
        raw = indexes.get(key)
        if raw is None:
            return None

        try:
            index = Index.model_validate(raw)
        except ValidationError as exc:
            error = MalformedIndexError(f"index {key} dropped: {exc.error_count()} validation errors")
            logger.warning("%s", error)
            self._remove(key)
            return None

        if self._expired(index):
            logger.info("index %s expired", key)
            self._remove(key)
            return None

        lru = self._read_lru()
        self._write(lru=[key, *(item for item in lru if item != key)])
        return index

    def _save_index(self, key: str, index: Index) -> None:
        indexes = self._read_indexes()
        lru = [item for item in self._read_lru() if item != key and item in indexes]

        indexes[key] = index.model_dump(mode="json", by_alias=True)
        lru.insert(0, key)
        # Entries missing from the LRU list count as the oldest.
        lru.extend(item for item in indexes if item not in lru)

        for stale_key in [item for item in lru if item != key and self._raw_expired(indexes[item])]:
            indexes.pop(stale_key, None)
            lru.remove(stale_key)

        while len(indexes) > self._options.max_entries and len(lru) > 1:
            victim = lru.pop()
            indexes.pop(victim, None)
            logger.info("index %s evicted (lru)", victim)

        self._write(indexes=indexes, lru=lru)

    def _cleanup(self) -> int:
        indexes = self._read_indexes()
        removed = [
            key
            for key, raw in indexes.items()
            if self._raw_expired(raw)
        ]
        if not removed:
            return 0
        for key in removed:
            indexes.pop(key, None)
        lru = [item for item in self._read_lru() if item in indexes]
        self._write(indexes=indexes, lru=lru)
        logger.info("index store cleanup removed=%d", len(removed))
        return len(removed)

    def _expired(self, index: Index) -> bool:
        ttl_seconds = self._options.ttl_hours * 3600
        return self._clock() - index.meta.created_at > ttl_seconds

    def _raw_expired(self, raw: Any) -> bool:
        try:
            return self._expired(Index.model_validate(raw))
        except ValidationError:
            return True

    def _remove(self, key: str) -> None:
        indexes = self._read_indexes()
        indexes.pop(key, None)
        lru = [item for item in self._read_lru() if item != key]
        self._write(indexes=indexes, lru=lru)

    def _read_indexes(self) -> dict[str, Any]:
        value = self._read(INDEXES_KEY)
        return dict(value) if isinstance(value, dict) else {}

    def _read_lru(self) -> list[str]:
        value = self._read(LRU_KEY)
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str)]

    def _read(self, container: str) -> Any:
        if not self._degraded:
            try:
                with Session(self._engine) as session:
                    record = session.get(KeyValueRecord, container)
                    return None if record is None else record.value_json
            except SQLAlchemyError as exc:
                self._fall_back(f"read {container}", exc)
        return self._memory.get(container)

    def _write(
        self,
        *,
        indexes: dict[str, Any] | None = None,
        lru: list[str] | None = None,
    ) -> None:
        updates: dict[str, Any] = {}
        if indexes is not None:
            updates[INDEXES_KEY] = indexes
        if lru is not None:
            updates[LRU_KEY] = lru

        self._memory.update(updates)
        if self._degraded:
            return

        try:
            with Session(self._engine) as session:
                now = datetime.now(timezone.utc)
                for container, value in updates.items():
                    session.merge(
                        KeyValueRecord(key=container, value_json=value, updated_at=now)
                    )
                session.commit()
        except SQLAlchemyError as exc:
            self._fall_back("write", exc)

    def _fall_back(self, operation: str, exc: Exception) -> None:
        logger.warning("%s; using in-process map", StoreIOError(f"index store {operation} failed: {exc}"))
        self._degraded = True
