from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from ragcore.config import get_settings
from ragcore.db import get_engine
from ragcore.main import app, get_retrieval_engine
from ragcore.services.retrieval.adapters import reset_adapters


@pytest.fixture(autouse=True)
def reset_caches() -> Iterator[None]:
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_retrieval_engine.cache_clear()
    reset_adapters()
    yield
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_retrieval_engine.cache_clear()
    reset_adapters()


@pytest.fixture
def sqlite_engine(tmp_path: Path) -> Iterator[Engine]:
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'retrieval.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[TestClient]:
    monkeypatch.setenv("RAGCORE_DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'api-tests.db'}")
    monkeypatch.setenv("RAGCORE_NOTES_DIR", str(tmp_path / "notes"))
    monkeypatch.setenv("RAGCORE_DB_ECHO", "false")

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    get_engine().dispose()
