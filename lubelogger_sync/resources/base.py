"""
Remote resource adapters.

A ResourceAdapter exposes one LubeLogger resource family through the same
five operations, so the sync engine never branches on entity type:

- create(entity) -> server id (when the server reports one)
- update(entity)
- delete(entity)
- get_all() -> every record of the family
- get_one(entity_id, vehicle_id) -> one record or None

RestResource implements the capability once over an endpoint table.
Vehicle-scoped families (odometer, plan, service, ... records) are listed
per vehicle; the ids come from a callable so the adapter does not depend
on the store directly.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from ..exceptions import RemoteOperationError
from ..models import CachedEntity
from ..transport import ApiResponse, ResilientTransport

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=CachedEntity)

VehicleIdSource = Callable[[], Awaitable[list[int]]]


class ResourceAdapter(ABC, Generic[E]):
    """Capability interface over one remote resource family."""

    entity_type: type[E]

    @abstractmethod
    async def create(self, entity: E) -> int | None:
        """Create the entity remotely. Returns the server-assigned id when known."""
        pass

    @abstractmethod
    async def update(self, entity: E) -> None:
        pass

    @abstractmethod
    async def delete(self, entity: E) -> None:
        pass

    @abstractmethod
    async def get_all(self) -> list[E]:
        pass

    @abstractmethod
    async def get_one(self, entity_id: int, vehicle_id: int | None = None) -> E | None:
        pass

    def take_decode_failures(self) -> list[DecodeFailure]:
        """Rows the last read could not decode; the list is cleared on return."""
        return []


@dataclass(frozen=True)
class DecodeFailure:
    """A downloaded row that could not be turned into an entity."""

    entity_id: int | None
    error: Exception


@dataclass(frozen=True)
class ResourceEndpoints:
    """Endpoint layout of one resource family.

    Attributes:
        list: GET endpoint returning a JSON array
        add: POST (form) endpoint creating a record
        update: PUT (form) endpoint updating a record
        delete: DELETE endpoint taking ?id=
        info: Optional GET endpoint returning one vehicle by ?vehicleId=
        vehicle_scoped: Whether list/add take a vehicleId parameter
    """

    list: str
    add: str
    update: str
    delete: str
    info: str | None = None
    vehicle_scoped: bool = False


def extract_created_id(response: ApiResponse) -> int | None:
    """Pull a server-assigned id out of a create response, if it carries one."""
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, bool):
        return None
    if isinstance(payload, int):
        return payload if payload > 0 else None
    if isinstance(payload, dict):
        for key in ("id", "recordId", "vehicleId"):
            value = payload.get(key)
            if isinstance(value, int) and not isinstance(value, bool) and value > 0:
                return value
    return None


class RestResource(ResourceAdapter[E]):
    """Generic adapter for a form-in / JSON-out resource family."""

    def __init__(
        self,
        transport: ResilientTransport,
        entity_type: type[E],
        endpoints: ResourceEndpoints,
        vehicle_ids: VehicleIdSource | None = None,
    ):
        """Initialize the adapter.

        Args:
            transport: Shared resilient transport
            entity_type: Entity class this family maps to
            endpoints: Endpoint layout
            vehicle_ids: Source of vehicle ids for vehicle-scoped listing
        """
        if endpoints.vehicle_scoped and vehicle_ids is None:
            raise ValueError(f"{entity_type.ENTITY_TYPE} is vehicle-scoped and needs vehicle_ids")
        self.transport = transport
        self.entity_type = entity_type
        self.endpoints = endpoints
        self._vehicle_ids = vehicle_ids
        self._decode_failures: list[DecodeFailure] = []

    def take_decode_failures(self) -> list[DecodeFailure]:
        failures, self._decode_failures = self._decode_failures, []
        return failures

    def _check(self, response: ApiResponse, operation: str) -> ApiResponse:
        if not response.ok:
            raise RemoteOperationError(
                self.entity_type.ENTITY_TYPE, operation, response.status, response.text()
            )
        return response

    def _scope(self, entity: CachedEntity) -> list[tuple[str, Any]]:
        if not self.endpoints.vehicle_scoped:
            return []
        return [("vehicleId", getattr(entity, "vehicle_id", None))]

    def _decode_list(self, payload: Any, vehicle_id: int | None = None) -> list[E]:
        if payload is None:
            return []
        items = payload if isinstance(payload, list) else [payload]
        entities = []
        for item in items:
            if not isinstance(item, dict):
                continue
            row = _unwrap(item)
            try:
                entity = self.entity_type.from_api(row)
            except (ValueError, TypeError) as e:
                raw_id = _raw_id(row)
                logger.warning(
                    f"Skipping undecodable {self.entity_type.ENTITY_TYPE} row (id {raw_id}): {e}"
                )
                self._decode_failures.append(DecodeFailure(raw_id, e))
                continue
            if vehicle_id is not None and hasattr(entity, "vehicle_id") and not entity.vehicle_id:
                entity.vehicle_id = vehicle_id
            entities.append(entity)
        return entities

    async def create(self, entity: E) -> int | None:
        response = self._check(
            await self.transport.post_form(
                self.endpoints.add, form=entity.to_form(), params=self._scope(entity)
            ),
            "create",
        )
        created_id = extract_created_id(response)
        logger.debug(f"Created {self.entity_type.ENTITY_TYPE} (server id {created_id})")
        return created_id

    async def update(self, entity: E) -> None:
        self._check(
            await self.transport.put_form(
                self.endpoints.update,
                form=entity.to_form(include_id=True),
                params=self._scope(entity),
            ),
            "update",
        )

    async def delete(self, entity: E) -> None:
        self._check(
            await self.transport.delete(self.endpoints.delete, params=[("id", entity.id)]),
            "delete",
        )

    async def get_all(self) -> list[E]:
        if not self.endpoints.vehicle_scoped:
            response = self._check(await self.transport.get(self.endpoints.list), "list")
            return self._decode_list(response.json())

        entities: list[E] = []
        vehicle_ids = self._vehicle_ids or _no_vehicles
        for vehicle_id in await vehicle_ids():
            entities.extend(await self._list_for_vehicle(vehicle_id))
        return entities

    async def _list_for_vehicle(self, vehicle_id: int) -> list[E]:
        response = self._check(
            await self.transport.get(self.endpoints.list, params=[("vehicleId", vehicle_id)]),
            "list",
        )
        return self._decode_list(response.json(), vehicle_id)

    async def get_one(self, entity_id: int, vehicle_id: int | None = None) -> E | None:
        if self.endpoints.info:
            response = await self.transport.get(self.endpoints.info, params=[("vehicleId", entity_id)])
            if response.status == 404:
                return None
            candidates = self._decode_list(self._check(response, "get").json())
        elif self.endpoints.vehicle_scoped and vehicle_id is not None:
            candidates = await self._list_for_vehicle(vehicle_id)
        else:
            candidates = await self.get_all()
        return next((c for c in candidates if c.id == entity_id), None)


async def _no_vehicles() -> list[int]:
    return []


def _raw_id(row: dict[str, Any]) -> int | None:
    for key, value in row.items():
        if str(key).lower() == "id":
            try:
                return int(value)
            except (TypeError, ValueError):
                return None
    return None


def _unwrap(item: dict[str, Any]) -> dict[str, Any]:
    # Vehicle info responses nest the vehicle under "vehicleData"
    nested = item.get("vehicleData")
    if isinstance(nested, dict):
        return {**item, **nested}
    return item
