"""In-memory entity store, for tests and ephemeral sessions."""

from __future__ import annotations

from collections.abc import Iterable

from ..config import CacheConfiguration
from ..exceptions import EntityNotFoundError, StoreError
from ..models import CachedEntity
from .base import E, EntityStore, Predicate


class InMemoryEntityStore(EntityStore):
    """Dict-backed store that keeps serialized copies.

    Rows are held as to_dict() snapshots so callers never share mutable
    state with the store, the same as with a real database.
    """

    def __init__(self) -> None:
        self._rows: dict[str, dict[int, dict]] = {}
        self._configurations: dict[str, CacheConfiguration] = {}

    def _table(self, entity_type: type[CachedEntity]) -> dict[int, dict]:
        return self._rows.setdefault(entity_type.ENTITY_TYPE, {})

    async def find(self, entity_type: type[E], entity_id: int) -> E | None:
        row = self._table(entity_type).get(entity_id)
        return entity_type.from_dict(row) if row is not None else None

    async def add(self, entity: CachedEntity) -> None:
        table = self._table(type(entity))
        if entity.id in table:
            raise StoreError("add", entity.ENTITY_TYPE, ValueError(f"duplicate id {entity.id}"))
        table[entity.id] = entity.to_dict()

    async def update(self, entity: CachedEntity, fields: Iterable[str] | None = None) -> None:
        table = self._table(type(entity))
        if entity.id not in table:
            raise EntityNotFoundError(entity.ENTITY_TYPE, entity.id)
        values = entity.to_dict()
        if fields is None:
            table[entity.id] = values
        else:
            table[entity.id].update({name: values[name] for name in fields})

    async def remove(self, entity_type: type[CachedEntity], entity_id: int) -> bool:
        return self._table(entity_type).pop(entity_id, None) is not None

    async def query(self, entity_type: type[E], predicate: Predicate | None = None) -> list[E]:
        entities = [entity_type.from_dict(row) for row in self._table(entity_type).values()]
        if predicate is None:
            return entities
        return [entity for entity in entities if predicate(entity)]

    async def get_cache_configuration(self, entity_type_name: str) -> CacheConfiguration | None:
        configuration = self._configurations.get(entity_type_name)
        return CacheConfiguration.from_dict(configuration.to_dict()) if configuration else None

    async def list_cache_configurations(self) -> list[CacheConfiguration]:
        return [CacheConfiguration.from_dict(c.to_dict()) for c in self._configurations.values()]

    async def save_cache_configuration(self, configuration: CacheConfiguration) -> None:
        self._configurations[configuration.entity_type_name] = CacheConfiguration.from_dict(
            configuration.to_dict()
        )
