"""Shared fixtures for rheodb tests.

Fake adapters for the three capability families live here so manager
tests can control connect/health/disconnect outcomes without a server.
"""

from __future__ import annotations

import asyncio
import itertools
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import pytest

from rheodb.adapters.adapter_factory import AdapterRegistry
from rheodb.adapters.base import CollectionHandle, DocumentAdapter, OpaqueAdapter, SQLAdapter
from rheodb.adapters.dialect_parser import DataDialect
from rheodb.config.models import ProviderSettings
from rheodb.types.core_types import (
    DeleteResult,
    ExecuteResult,
    InsertManyResult,
    InsertOneResult,
    UpdateResult,
)

# ---------------------------------------------------------------------------
# Fake adapters
# ---------------------------------------------------------------------------

# name -> asyncio.Event, reset per test by the ``rendezvous`` fixture
RENDEZVOUS: Dict[str, asyncio.Event] = {}


class FakeSettings(ProviderSettings):
    dsn: str
    fail_connect: bool = False
    fail_disconnect: bool = False
    healthy: bool = True
    hang: bool = False
    set_event: Optional[str] = None
    wait_event: Optional[str] = None


class FakeBehaviour:
    """Mixin implementing the driver hooks from ``FakeSettings``."""

    settings: FakeSettings

    def _init_fake(self) -> None:
        self.open_calls = 0
        self.close_calls = 0
        self.handle = object()

    async def _open(self) -> None:
        self.open_calls += 1
        s = self.settings
        if s.set_event:
            RENDEZVOUS.setdefault(s.set_event, asyncio.Event()).set()
        if s.wait_event:
            await RENDEZVOUS.setdefault(s.wait_event, asyncio.Event()).wait()
        if s.hang:
            await asyncio.sleep(3600)
        if s.fail_connect:
            raise ConnectionRefusedError(f"{self.name}: connection refused")

    async def _close(self) -> None:
        self.close_calls += 1
        if self.settings.fail_disconnect and self.is_connected():
            raise RuntimeError(f"{self.name}: close exploded")

    async def _ping(self) -> None:
        if not self.settings.healthy:
            raise RuntimeError(f"{self.name}: backend down")

    def _native_handle(self) -> Any:
        return self.handle


class FakeSQLAdapter(FakeBehaviour, SQLAdapter):
    provider_type = "fake-sql"
    dialect = DataDialect.SQLITE
    settings_model = FakeSettings

    def __init__(self, name, settings=None, tracer=None):
        super().__init__(name, settings, tracer)
        self._init_fake()
        self.statements: List[tuple] = []

    @asynccontextmanager
    async def _acquire(self):
        yield self

    async def _fetch(self, connection, sql, args):
        self.statements.append((sql, args))
        return []

    async def _run(self, connection, sql, args):
        self.statements.append((sql, args))
        return ExecuteResult(affected_rows=0)


class MemoryCollection(CollectionHandle):
    """Equality-filter collection backed by a list, ordered by insertion."""

    _ids = itertools.count(1)

    def __init__(self, adapter, name, store: List[Dict[str, Any]]):
        super().__init__(adapter, name)
        self.store = store

    def _matches(self, filter):
        return [d for d in self.store if all(d.get(k) == v for k, v in (filter or {}).items())]

    async def find(self, filter=None):
        return [dict(d) for d in self._matches(filter)]

    async def find_one(self, filter):
        found = self._matches(filter)
        return dict(found[0]) if found else None

    async def insert_one(self, document):
        doc = {"id": str(next(self._ids)), **document}
        self.store.append(doc)
        return InsertOneResult(inserted_id=doc["id"])

    async def insert_many(self, documents):
        return InsertManyResult(inserted_ids=[(await self.insert_one(d)).inserted_id for d in documents])

    async def update_one(self, filter, update):
        found = self._matches(filter)[:1]
        for d in found:
            d.update(update)
        return UpdateResult(modified_count=len(found))

    async def update_many(self, filter, update):
        found = self._matches(filter)
        for d in found:
            d.update(update)
        return UpdateResult(modified_count=len(found))

    async def delete_one(self, filter):
        found = self._matches(filter)[:1]
        for d in found:
            self.store.remove(d)
        return DeleteResult(deleted_count=len(found))

    async def delete_many(self, filter):
        found = self._matches(filter)
        for d in found:
            self.store.remove(d)
        return DeleteResult(deleted_count=len(found))

    async def count(self, filter=None):
        return len(self._matches(filter))


class FakeDocumentAdapter(FakeBehaviour, DocumentAdapter):
    provider_type = "fake-doc"
    settings_model = FakeSettings

    def __init__(self, name, settings=None, tracer=None):
        super().__init__(name, settings, tracer)
        self._init_fake()
        self.collections: Dict[str, List[Dict[str, Any]]] = {}

    def _collection(self, name):
        return MemoryCollection(self, name, self.collections.setdefault(name, []))


class FakeOpaqueAdapter(FakeBehaviour, OpaqueAdapter):
    provider_type = "fake-opaque"
    settings_model = FakeSettings

    def __init__(self, name, settings=None, tracer=None):
        super().__init__(name, settings, tracer)
        self._init_fake()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def registry() -> AdapterRegistry:
    """Registry with the built-in adapters plus the fakes."""
    reg = AdapterRegistry()
    reg.register("fake-sql", FakeSQLAdapter)
    reg.register("fake-doc", FakeDocumentAdapter)
    reg.register("fake-opaque", FakeOpaqueAdapter)
    return reg


@pytest.fixture(autouse=True)
def rendezvous():
    RENDEZVOUS.clear()
    yield RENDEZVOUS
    RENDEZVOUS.clear()


@pytest.fixture
def sqlite_path(tmp_path) -> str:
    return str(tmp_path / "rheodb-test.db")


def fake(kind: str = "fake-sql", **settings: Any) -> Dict[str, Any]:
    """Build a valid fake provider config."""
    return {"type": kind, "dsn": "fake://local", **settings}
