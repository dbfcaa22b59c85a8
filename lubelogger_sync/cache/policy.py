"""
Cache freshness and dirty-tracking policy.

CachePolicy answers "is this stale?" and "what still needs uploading?"
for each entity type, using the per-type CacheConfiguration rows kept
in the store. It also owns the sync-status transitions of an entity:
mark_for_sync moves it into a pending state, mark_synced is the only
way back to Synced.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timedelta

from ..config import DEFAULT_CACHE_CONFIGURATIONS, CacheConfiguration
from ..exceptions import EntityNotFoundError, ValidationError
from ..models import CachedEntity, SyncStatus, utc_now
from ..store.base import E, EntityStore, seed_cache_configurations

logger = logging.getLogger(__name__)

DEFAULT_EXPIRATION_MINUTES = 60
DEFAULT_SYNC_PRIORITY = 100

EntityTypeRef = type[CachedEntity] | str


def _type_name(entity_type: EntityTypeRef) -> str:
    return entity_type if isinstance(entity_type, str) else entity_type.ENTITY_TYPE


class CachePolicy:
    """Expiration checks and sync-status bookkeeping over an EntityStore."""

    def __init__(
        self,
        store: EntityStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the cache policy.

        Args:
            store: Store holding entities and cache configuration rows
            clock: Source of "now" (timezone-aware UTC)
        """
        self.store = store
        self.clock = clock
        self._configurations: dict[str, CacheConfiguration] | None = None

    async def _load(self) -> dict[str, CacheConfiguration]:
        if self._configurations is None:
            rows = await self.store.list_cache_configurations()
            self._configurations = {row.entity_type_name: row for row in rows}
        return self._configurations

    async def reload_configurations(self) -> None:
        """Drop cached configuration rows so the next lookup re-reads the store."""
        self._configurations = None

    async def get_configuration(self, entity_type: EntityTypeRef) -> CacheConfiguration | None:
        return (await self._load()).get(_type_name(entity_type))

    async def get_expiration_minutes(self, entity_type: EntityTypeRef) -> int:
        configuration = await self.get_configuration(entity_type)
        return configuration.expiration_minutes if configuration else DEFAULT_EXPIRATION_MINUTES

    async def is_critical(self, entity_type: EntityTypeRef) -> bool:
        configuration = await self.get_configuration(entity_type)
        return configuration.is_critical if configuration else False

    async def get_sync_priority(self, entity_type: EntityTypeRef) -> int:
        configuration = await self.get_configuration(entity_type)
        return configuration.sync_priority if configuration else DEFAULT_SYNC_PRIORITY

    async def order_by_priority(
        self, entity_types: Iterable[type[CachedEntity]]
    ) -> list[type[CachedEntity]]:
        """Sort entity types by ascending sync priority, keeping ties in input order."""
        keyed = [(await self.get_sync_priority(t), index, t) for index, t in enumerate(entity_types)]
        return [t for _, _, t in sorted(keyed, key=lambda item: (item[0], item[1]))]

    # =========================================================================
    # Expiration
    # =========================================================================

    def _expired(self, entity: CachedEntity, now: datetime) -> bool:
        # Never-fetched entities have no expiration and count as stale
        return entity.expiration_timestamp is None or entity.expiration_timestamp < now

    async def is_expired(self, entity_type: type[CachedEntity], entity_id: int) -> bool:
        """True for a missing entity or one whose expiration has passed."""
        entity = await self.store.find(entity_type, entity_id)
        if entity is None:
            return True
        return self._expired(entity, self.clock())

    async def needs_refresh(self, entity_type: type[CachedEntity]) -> bool:
        """True if any stored entity of this type has expired."""
        now = self.clock()
        expired = await self.store.query(entity_type, lambda e: self._expired(e, now))
        return len(expired) > 0

    async def update_expiration(self, entity: CachedEntity) -> None:
        """Set expiration to now + the configured minutes and persist it."""
        minutes = await self.get_expiration_minutes(type(entity))
        entity.expiration_timestamp = self.clock() + timedelta(minutes=minutes)
        await self._persist(entity, ("expiration_timestamp",))

    # =========================================================================
    # Sync status
    # =========================================================================

    async def get_pending_sync_items(self, entity_type: type[E]) -> list[E]:
        """All stored entities of this type whose status is not Synced."""
        return await self.store.query(
            entity_type, lambda e: e.sync_status != SyncStatus.SYNCED
        )

    async def mark_synced(self, entity: CachedEntity) -> None:
        entity.sync_status = SyncStatus.SYNCED
        entity.last_sync_timestamp = self.clock()
        entity.is_dirty = False
        await self._persist(entity, ("sync_status", "last_sync_timestamp", "is_dirty"))

    async def mark_for_sync(self, entity: CachedEntity, status: SyncStatus) -> None:
        """Flag an entity as carrying local edits.

        Raises:
            ValidationError: If status is Synced (use mark_synced instead)
        """
        if status == SyncStatus.SYNCED:
            raise ValidationError(
                "status", "cannot mark for sync with Synced; use mark_synced", status.value
            )
        entity.sync_status = status
        entity.is_dirty = True
        await self._persist(entity, ("sync_status", "is_dirty"))

    async def mark_failed(self, entity: CachedEntity) -> None:
        """Record a failed upload; the entity keeps its local edits."""
        entity.sync_status = SyncStatus.SYNC_FAILED
        await self._persist(entity, ("sync_status", "is_dirty"))

    async def _persist(self, entity: CachedEntity, fields: Sequence[str]) -> None:
        try:
            await self.store.update(entity, fields)
        except EntityNotFoundError:
            logger.debug(f"{entity.ENTITY_TYPE} {entity.id} not stored yet, inserting")
            await self.store.add(entity)


async def seed_default_configurations(
    store: EntityStore,
    configurations: Iterable[CacheConfiguration] | None = None,
) -> int:
    """Seed the store with DEFAULT_CACHE_CONFIGURATIONS (or the given rows)."""
    inserted = await seed_cache_configurations(
        store, DEFAULT_CACHE_CONFIGURATIONS if configurations is None else configurations
    )
    if inserted:
        logger.info(f"Seeded {inserted} cache configuration row(s)")
    return inserted
