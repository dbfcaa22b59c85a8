"""
Abstract base class for the durable local store.

The sync engine treats the store as a keyed collection per entity type:
find-by-id, add, field-level update, remove and predicate query, plus
the cache-configuration rows. Each call is an independent commit; there
are no cross-entity transactions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import TypeVar

from ..config import CacheConfiguration
from ..models import CachedEntity, next_local_id

E = TypeVar("E", bound=CachedEntity)

Predicate = Callable[[E], bool]


class EntityStore(ABC):
    """Abstract interface for the local entity cache.

    Entity types are identified by their class; implementations key rows
    by ``cls.ENTITY_TYPE`` and the entity id.
    """

    # =========================================================================
    # Entities
    # =========================================================================

    @abstractmethod
    async def find(self, entity_type: type[E], entity_id: int) -> E | None:
        """Return a copy of the stored entity, or None."""
        pass

    @abstractmethod
    async def add(self, entity: CachedEntity) -> None:
        """Insert a new entity.

        Raises:
            StoreError: If an entity with the same type and id already exists
        """
        pass

    @abstractmethod
    async def update(self, entity: CachedEntity, fields: Iterable[str] | None = None) -> None:
        """Write an existing entity back.

        Args:
            entity: Entity carrying the new values
            fields: Only copy these fields onto the stored row (all if None)

        Raises:
            EntityNotFoundError: If the entity is not stored
        """
        pass

    @abstractmethod
    async def remove(self, entity_type: type[CachedEntity], entity_id: int) -> bool:
        """Delete an entity. Returns True if it existed."""
        pass

    @abstractmethod
    async def query(
        self,
        entity_type: type[E],
        predicate: Predicate | None = None,
    ) -> list[E]:
        """Return stored entities of one type in insertion order, optionally filtered."""
        pass

    async def upsert(self, entity: CachedEntity) -> None:
        if await self.find(type(entity), entity.id) is None:
            await self.add(entity)
        else:
            await self.update(entity)

    async def rekey(self, entity: CachedEntity, new_id: int) -> None:
        """Move an entity to a new id (e.g. after the server assigned one)."""
        if new_id == entity.id:
            return
        await self.remove(type(entity), entity.id)
        entity.id = new_id
        await self.upsert(entity)

    async def count(self, entity_type: type[CachedEntity]) -> int:
        return len(await self.query(entity_type))

    async def next_local_id(self, entity_type: type[CachedEntity]) -> int:
        """Temporary id for a record created offline."""
        return next_local_id(await self.query(entity_type))

    # =========================================================================
    # Cache configuration
    # =========================================================================

    @abstractmethod
    async def get_cache_configuration(self, entity_type_name: str) -> CacheConfiguration | None:
        pass

    @abstractmethod
    async def list_cache_configurations(self) -> list[CacheConfiguration]:
        pass

    @abstractmethod
    async def save_cache_configuration(self, configuration: CacheConfiguration) -> None:
        """Insert or replace one configuration row."""
        pass

    async def close(self) -> None:
        """Release resources held by the store."""
        pass


async def seed_cache_configurations(
    store: EntityStore,
    configurations: Iterable[CacheConfiguration],
) -> int:
    """Insert configuration rows that do not exist yet.

    Existing rows are left alone so user-tuned settings survive restarts.

    Returns:
        Number of rows inserted
    """
    inserted = 0
    for configuration in configurations:
        if await store.get_cache_configuration(configuration.entity_type_name) is None:
            await store.save_cache_configuration(configuration)
            inserted += 1
    return inserted
