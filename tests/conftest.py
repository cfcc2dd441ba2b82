from __future__ import annotations

import json
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shortlink.db import get_db
from shortlink.kv import get_legacy_source
from shortlink.main import app
from shortlink.schema_manager import ensure_schema
from shortlink.schemas import MappingCreate
from shortlink.security import require_admin


class ListSource:
    """In-memory stand-in for the legacy key-value store."""

    def __init__(self, entries: dict[str, object]) -> None:
        self.entries = entries

    def iter_entries(self):
        for key, value in self.entries.items():
            if value is None or isinstance(value, str):
                yield key, value
            else:
                yield key, json.dumps(value)


class StatementCounter:
    def __init__(self, engine, prefix: str) -> None:
        self.prefix = prefix
        self.count = 0
        event.listen(engine, "before_cursor_execute", self)

    def __call__(self, conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith(self.prefix):
            self.count += 1


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    ensure_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def make_mapping():
    def _make(path: str, target: str = "https://example.com", **kwargs) -> MappingCreate:
        return MappingCreate(path=path, target=target, **kwargs)

    return _make


@pytest.fixture
def legacy_source():
    return ListSource({})


@pytest.fixture
def count_statements(engine):
    return lambda prefix: StatementCounter(engine, prefix)


@pytest.fixture
def client(session_factory, legacy_source) -> Iterator[TestClient]:
    def _get_db():
        with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[require_admin] = lambda: None
    app.dependency_overrides[get_legacy_source] = lambda: legacy_source
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
