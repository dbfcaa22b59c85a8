"""
Typed registry of resource adapters, keyed by entity-type tag.

Entity types registered without an adapter are tracked locally only
(user preferences); the sync engine skips them during upload and
download.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from ..models import (
    CachedEntity,
    GasRecord,
    OdometerRecord,
    PlanRecord,
    Reminder,
    RepairRecord,
    ServiceRecord,
    TaxRecord,
    UpgradeRecord,
    UserPreference,
    Vehicle,
)
from ..store.base import EntityStore
from ..transport import ResilientTransport
from .base import ResourceAdapter, ResourceEndpoints, RestResource

logger = logging.getLogger(__name__)


def _record_endpoints(family: str) -> ResourceEndpoints:
    base = f"/api/vehicle/{family}"
    return ResourceEndpoints(
        list=base,
        add=f"{base}/add",
        update=f"{base}/update",
        delete=f"{base}/delete",
        vehicle_scoped=True,
    )


VEHICLE_ENDPOINTS = ResourceEndpoints(
    list="/api/vehicles",
    add="/api/vehicles/add",
    update="/api/vehicles/update",
    delete="/api/vehicles/delete",
    info="/api/vehicle/info",
)

RECORD_ENDPOINTS: dict[type[CachedEntity], ResourceEndpoints] = {
    OdometerRecord: _record_endpoints("odometerrecords"),
    PlanRecord: _record_endpoints("planrecords"),
    ServiceRecord: _record_endpoints("servicerecords"),
    RepairRecord: _record_endpoints("repairrecords"),
    UpgradeRecord: _record_endpoints("upgraderecords"),
    TaxRecord: _record_endpoints("taxrecords"),
    GasRecord: _record_endpoints("gasrecords"),
    Reminder: _record_endpoints("reminders"),
}


class ResourceRegistry:
    """Maps entity types to the adapter that syncs them."""

    def __init__(self) -> None:
        self._types: dict[str, type[CachedEntity]] = {}
        self._adapters: dict[str, ResourceAdapter] = {}

    def register(
        self,
        entity_type: type[CachedEntity],
        adapter: ResourceAdapter | None,
    ) -> None:
        """Register an entity type; pass adapter=None for local-only types."""
        self._types[entity_type.ENTITY_TYPE] = entity_type
        if adapter is None:
            self._adapters.pop(entity_type.ENTITY_TYPE, None)
        else:
            self._adapters[entity_type.ENTITY_TYPE] = adapter

    def get(self, entity_type: type[CachedEntity] | str) -> ResourceAdapter | None:
        name = entity_type if isinstance(entity_type, str) else entity_type.ENTITY_TYPE
        return self._adapters.get(name)

    def entity_types(self) -> list[type[CachedEntity]]:
        return list(self._types.values())

    def resolve(self, name: str) -> type[CachedEntity]:
        return self._types[name]

    def __contains__(self, entity_type: object) -> bool:
        name = entity_type if isinstance(entity_type, str) else getattr(entity_type, "ENTITY_TYPE", None)
        return name in self._types

    def __iter__(self) -> Iterator[type[CachedEntity]]:
        return iter(self.entity_types())

    def __len__(self) -> int:
        return len(self._types)


def build_default_registry(transport: ResilientTransport, store: EntityStore) -> ResourceRegistry:
    """Registry covering every LubeLogger resource family.

    Vehicle-scoped families list records for each vehicle currently in the
    local store, so vehicles (priority 1) must be downloaded first.
    """

    async def vehicle_ids() -> list[int]:
        return [v.id for v in await store.query(Vehicle) if v.id > 0]

    registry = ResourceRegistry()
    registry.register(Vehicle, RestResource(transport, Vehicle, VEHICLE_ENDPOINTS))
    for entity_type, endpoints in RECORD_ENDPOINTS.items():
        registry.register(entity_type, RestResource(transport, entity_type, endpoints, vehicle_ids))
    registry.register(UserPreference, None)
    logger.debug(f"Built resource registry with {len(registry)} entity types")
    return registry
