import asyncio
from pathlib import Path
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ragcore.config import StoreOptions
from ragcore.models import KeyValueRecord
from ragcore.services.retrieval.index_store import INDEXES_KEY, LRU_KEY, IndexStore
from ragcore.services.retrieval.types import Index, IndexMeta, Summary


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _index(created_at: float, *, content_hash: str = "h1") -> Index:
    return Index(
        meta=IndexMeta(title="Page", created_at=created_at, content_hash=content_hash),
        summaries=[Summary(id="sum-global-1", ref_id="p1", kind="global", text="Page — Topics: a")],
    )


@pytest.mark.asyncio
async def test_save_and_load_round_trip_through_database(sqlite_engine: Engine) -> None:
    clock = FakeClock()
    store = IndexStore(engine=sqlite_engine, clock=clock)

    await store.save_index("page:a:h1", _index(clock.now))

    reopened = IndexStore(engine=sqlite_engine, clock=clock)
    loaded = await reopened.load_index("page:a:h1")
    assert loaded is not None
    assert loaded.meta.content_hash == "h1"
    assert loaded.summaries[0].ref_id == "p1"
    assert await reopened.keys() == ["page:a:h1"]
    assert reopened.degraded is False


@pytest.mark.asyncio
async def test_load_missing_key_returns_none(sqlite_engine: Engine) -> None:
    store = IndexStore(engine=sqlite_engine)

    assert await store.load_index("nope") is None


@pytest.mark.asyncio
async def test_expired_entry_is_dropped_on_load(sqlite_engine: Engine) -> None:
    clock = FakeClock()
    store = IndexStore(engine=sqlite_engine, options=StoreOptions(ttl_hours=1), clock=clock)
    await store.save_index("k", _index(clock.now))

    clock.now += 3601

    assert await store.load_index("k") is None
    assert await store.keys() == []


@pytest.mark.asyncio
async def test_cleanup_removes_only_expired_entries(sqlite_engine: Engine) -> None:
    clock = FakeClock()
    store = IndexStore(engine=sqlite_engine, options=StoreOptions(ttl_hours=1), clock=clock)
    await store.save_index("old", _index(clock.now - 7200))
    await store.save_index("fresh", _index(clock.now))

    # "old" was already expired when "fresh" was saved.
    assert await store.keys() == ["fresh"]

    clock.now += 3601
    assert await store.cleanup() == 1
    assert await store.keys() == []
    assert await store.cleanup() == 0


@pytest.mark.asyncio
async def test_lru_eviction_drops_least_recently_used(sqlite_engine: Engine) -> None:
    clock = FakeClock()
    store = IndexStore(engine=sqlite_engine, options=StoreOptions(max_entries=2), clock=clock)

    await store.save_index("a", _index(clock.now))
    await store.save_index("b", _index(clock.now))
    assert await store.load_index("a") is not None
    await store.save_index("c", _index(clock.now))

    assert await store.keys() == ["c", "a"]
    assert await store.load_index("b") is None


@pytest.mark.asyncio
async def test_malformed_entry_is_removed(sqlite_engine: Engine) -> None:
    store = IndexStore(engine=sqlite_engine)
    with Session(sqlite_engine) as session:
        session.merge(KeyValueRecord(key=INDEXES_KEY, value_json={"broken": {"meta": "oops"}}))
        session.merge(KeyValueRecord(key=LRU_KEY, value_json=["broken"]))
        session.commit()

    assert await store.load_index("broken") is None
    assert await store.keys() == []


@pytest.mark.asyncio
async def test_delete_index(sqlite_engine: Engine) -> None:
    clock = FakeClock()
    store = IndexStore(engine=sqlite_engine, clock=clock)
    await store.save_index("a", _index(clock.now))

    await store.delete_index("a")

    assert await store.load_index("a") is None
    assert await store.keys() == []


@pytest.mark.asyncio
async def test_unreachable_database_falls_back_to_memory(tmp_path: Path) -> None:
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'missing' / 'dir' / 'x.db'}")
    clock = FakeClock()
    store = IndexStore(engine=engine, clock=clock, owns_engine=True)

    assert store.degraded is True
    await store.save_index("a", _index(clock.now))
    loaded = await store.load_index("a")

    assert loaded is not None
    assert await store.keys() == ["a"]
    store.close()


@pytest.mark.asyncio
async def test_store_without_engine_keeps_entries_in_memory() -> None:
    clock = FakeClock()
    store = IndexStore(clock=clock)

    await store.save_index("a", _index(clock.now))

    assert store.degraded is True
    assert (await store.load_index("a")) is not None
    store.close()
    assert await store.keys() == []


class ThreadRecordingStore(IndexStore):
    def __init__(self, **kwargs: object) -> None:
        super().__init__(**kwargs)
        self.read_threads: set[int] = set()

    def _read(self, container: str) -> object:
        self.read_threads.add(threading.get_ident())
        return super()._read(container)


@pytest.mark.asyncio
async def test_database_calls_run_off_the_event_loop_thread(sqlite_engine: Engine) -> None:
    clock = FakeClock()
    store = ThreadRecordingStore(engine=sqlite_engine, clock=clock)

    await store.save_index("a", _index(clock.now))
    await store.load_index("a")

    assert store.read_threads
    assert threading.get_ident() not in store.read_threads


@pytest.mark.asyncio
async def test_concurrent_saves_keep_every_entry(sqlite_engine: Engine) -> None:
    clock = FakeClock()
    store = IndexStore(engine=sqlite_engine, clock=clock)

    await asyncio.gather(*(store.save_index(key, _index(clock.now)) for key in ("a", "b", "c")))

    assert sorted(await store.keys()) == ["a", "b", "c"]
