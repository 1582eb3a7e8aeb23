"""
Shared test fixtures.

Every component is built over an in-memory store, a manual connectivity
flag, a fake clock and a scripted cloud, so each test gets an isolated
engine instance.
"""

import asyncio
import logging

import pytest

from posterm.common.exceptions import StorageError
from posterm.common.models import OutletContext, ReferenceSnapshot
from posterm.services.cache.repository import ReadThroughRepository
from posterm.services.cache.store import CacheStore
from posterm.services.sync.auth import AuthGate, StaticTokenProvider
from posterm.services.sync.connectivity import ManualConnectivity
from posterm.services.sync.coordinator import SyncCoordinator
from posterm.services.sync.negotiator import VersionNegotiator
from posterm.services.sync.outbox import MutationOutbox
from posterm.storage.kv_store import MemoryKeyValueStore

START_TIME = 1_700_000_000.0


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BrokenKeyValueStore(MemoryKeyValueStore):
    """Store whose reads and/or writes fail on demand"""

    def __init__(self):
        super().__init__()
        self.fail_reads = False
        self.fail_writes = False

    def get(self, key):
        if self.fail_reads:
            raise StorageError("disk unavailable", key=key)
        return super().get(key)

    def set(self, key, value):
        if self.fail_writes:
            raise StorageError("disk full", key=key)
        super().set(key, value)


class RecordingHandler(logging.Handler):
    """Keeps emitted records; attach to a posterm.* logger, which does not propagate"""

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record):
        self.records.append(record)


class FakeCloud:
    """
    Scripted stand-in for CloudClient.

    push_errors is consumed one entry per push call; None means success.
    """

    def __init__(self):
        self.pushed = []
        self.push_attempts = []
        self.push_errors: list[Exception | None] = []
        self.push_gate: asyncio.Event | None = None

        self.server_version = 0
        self.products: list[dict] = []
        self.outlet: dict | None = {"id": "o1", "name": "Main Street"}
        self.customers: list[dict] = []
        self.tables: list[dict] = []
        self.read_error: Exception | None = None
        self.stale_menu_version: int | None = None

        self.check_calls: list[int] = []
        self.menu_calls = 0
        self.customer_calls = 0
        self.table_calls = 0
        self.tokens: list[str] = []

    @property
    def read_calls(self) -> int:
        return len(self.check_calls) + self.menu_calls + self.customer_calls + self.table_calls

    async def push_mutation(self, record, token):
        self.push_attempts.append(record.id)
        self.tokens.append(token)
        if self.push_gate is not None:
            await self.push_gate.wait()
        if self.push_errors:
            error = self.push_errors.pop(0)
            if error is not None:
                raise error
        self.pushed.append(record)

    async def check_sync(self, context, current_version, token):
        self.check_calls.append(current_version)
        if self.read_error:
            raise self.read_error
        return self.server_version > current_version

    async def fetch_menu(self, context, token, cached_at):
        self.menu_calls += 1
        if self.read_error:
            raise self.read_error
        version = self.stale_menu_version if self.stale_menu_version is not None else self.server_version
        return ReferenceSnapshot(
            items=list(self.products),
            categories=[],
            metadata={"outlet": self.outlet} if self.outlet else {},
            version=version,
            cached_at=cached_at,
        )

    async def fetch_customers(self, context, token):
        self.customer_calls += 1
        if self.read_error:
            raise self.read_error
        return list(self.customers)

    async def fetch_open_tables(self, context, token):
        self.table_calls += 1
        if self.read_error:
            raise self.read_error
        return list(self.tables)

    async def probe(self, path):
        return True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def cache(kv, clock):
    return CacheStore(kv, clock=clock)


@pytest.fixture
def connectivity():
    return ManualConnectivity(online=True)


@pytest.fixture
def token_provider():
    return StaticTokenProvider("token-1")


@pytest.fixture
def auth(token_provider):
    return AuthGate(token_provider)


@pytest.fixture
def cloud():
    return FakeCloud()


@pytest.fixture
def context():
    return OutletContext(tenant_id="t1", outlet_id="o1")


@pytest.fixture
def negotiator(cloud, cache, connectivity, auth):
    return VersionNegotiator(cloud, cache, connectivity, auth)


@pytest.fixture
def repository(cache, negotiator, cloud, connectivity, auth, clock):
    return ReadThroughRepository(
        cache,
        negotiator,
        cloud,
        connectivity,
        auth,
        customers_revalidate_minutes=60,
        customers_expire_minutes=24 * 60,
        tables_revalidate_minutes=1,
        tables_expire_minutes=5,
        version_check_interval_s=30,
        monotonic=clock,
    )


@pytest.fixture
def outbox(kv, cloud, connectivity, auth, clock):
    counter = iter(range(1, 10_000))
    return MutationOutbox(
        kv,
        cloud,
        connectivity,
        auth,
        max_retries=5,
        backoff_base_ms=1000,
        backoff_cap_ms=60000,
        clock=clock,
        id_factory=lambda: f"m{next(counter)}",
    )


@pytest.fixture
def coordinator(outbox, negotiator, repository, cache, connectivity, auth, context):
    coordinator = SyncCoordinator(
        outbox,
        negotiator,
        repository,
        cache,
        connectivity,
        auth,
        context=context,
    )
    yield coordinator
    coordinator.close()
