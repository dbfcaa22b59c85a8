"""
Shared test configuration and fixtures.

Provides an in-memory store seeded with the default cache configuration,
a fake resource adapter that records every call instead of using HTTP,
and a SyncOrchestrator wired to both with connectivity forced online.
"""

import copy
from unittest.mock import AsyncMock

import pytest

from lubelogger_sync.cache import CachePolicy, seed_default_configurations
from lubelogger_sync.config import TransportConfig
from lubelogger_sync.exceptions import RemoteOperationError
from lubelogger_sync.models import (
    CachedEntity,
    OdometerRecord,
    SyncStatus,
    UserPreference,
    Vehicle,
    utc_now,
)
from lubelogger_sync.resources import ResourceAdapter, ResourceRegistry
from lubelogger_sync.store import InMemoryEntityStore
from lubelogger_sync.sync import EventChannel, SyncOrchestrator
from lubelogger_sync.transport import (
    CircuitState,
    HealthStatus,
    RateLimitInfo,
    ResilientTransport,
)


class FakeResource(ResourceAdapter):
    """
    In-memory stand-in for a remote resource family.

    Keeps a dict of "server" records and logs which ids were created,
    updated and deleted so tests can assert on the exact calls made.
    """

    def __init__(self, entity_type: type[CachedEntity], server: list[CachedEntity] | None = None):
        self.entity_type = entity_type
        self.server: dict[int, CachedEntity] = {e.id: e for e in server or []}
        self.created: list[int] = []
        self.updated: list[int] = []
        self.deleted: list[int] = []
        self.failing_ids: set[int] = set()
        self.list_error: Exception | None = None
        self.next_id = 1000
        self.before_call = None

    def _check(self, entity: CachedEntity, operation: str) -> None:
        if self.before_call is not None:
            self.before_call(entity)
        if entity.id in self.failing_ids:
            raise RemoteOperationError(self.entity_type.ENTITY_TYPE, operation, 500)

    async def create(self, entity):
        self._check(entity, "create")
        self.created.append(entity.id)
        self.next_id += 1
        stored = copy.deepcopy(entity)
        stored.id = self.next_id
        stored.sync_status = SyncStatus.SYNCED
        stored.is_dirty = False
        self.server[stored.id] = stored
        return stored.id

    async def update(self, entity):
        self._check(entity, "update")
        self.updated.append(entity.id)
        self.server[entity.id] = copy.deepcopy(entity)

    async def delete(self, entity):
        self._check(entity, "delete")
        self.deleted.append(entity.id)
        self.server.pop(entity.id, None)

    async def get_all(self):
        if self.list_error is not None:
            raise self.list_error
        return [self._server_copy(e) for e in self.server.values()]

    async def get_one(self, entity_id, vehicle_id=None):
        entity = self.server.get(entity_id)
        return self._server_copy(entity) if entity is not None else None

    @staticmethod
    def _server_copy(entity: CachedEntity) -> CachedEntity:
        fresh = copy.deepcopy(entity)
        fresh.sync_status = SyncStatus.SYNCED
        fresh.is_dirty = False
        fresh.last_sync_timestamp = None
        fresh.expiration_timestamp = None
        return fresh


def healthy_transport() -> ResilientTransport:
    """Transport whose health probe always reports the API as up."""
    transport = ResilientTransport(TransportConfig(base_url="http://lubelogger.test"))
    transport.check_health = AsyncMock(
        return_value=HealthStatus(
            is_healthy=True,
            last_checked=utc_now(),
            circuit_state=CircuitState.CLOSED,
            rate_limit=RateLimitInfo(),
        )
    )
    return transport


def event_tuples(events) -> list[tuple[str, str, str, str | None]]:
    """Flatten events into (entity_type, operation, status, message) tuples."""
    return [(e.entity_type, e.operation.value, e.status.value, e.message) for e in events]


@pytest.fixture
async def store():
    """In-memory store seeded with the default cache configuration."""
    store = InMemoryEntityStore()
    await seed_default_configurations(store)
    return store


@pytest.fixture
def policy(store):
    return CachePolicy(store)


@pytest.fixture
def vehicles():
    return FakeResource(Vehicle)


@pytest.fixture
def odometer():
    return FakeResource(OdometerRecord)


@pytest.fixture
def registry(vehicles, odometer):
    registry = ResourceRegistry()
    registry.register(Vehicle, vehicles)
    registry.register(OdometerRecord, odometer)
    registry.register(UserPreference, None)
    return registry


@pytest.fixture
def channel():
    return EventChannel(buffer_size=256)


@pytest.fixture
def orchestrator(store, policy, registry, channel):
    """Orchestrator over the fakes, with the network reported as available."""
    return SyncOrchestrator(
        store=store,
        policy=policy,
        transport=healthy_transport(),
        registry=registry,
        events=channel,
        connectivity_check=AsyncMock(return_value=True),
    )
