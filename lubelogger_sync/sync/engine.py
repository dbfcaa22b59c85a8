"""
Synchronization engine for the local LubeLogger cache.

Orchestrates synchronization between the local store and the server:
- Upload: pending local changes -> server, entity types in priority order
- Download: stale or empty entity types <- server, server wins on conflict
- Single-flight: one campaign at a time across the whole process
- Cooperative cancellation between items and between entity types
- Network availability detection before every campaign
- Optional background auto-sync loop
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from pathlib import Path
from urllib.parse import urlsplit

from ..cache.policy import CachePolicy, seed_default_configurations
from ..config import Settings, SyncConfig
from ..logging_utils import SyncLoggerAdapter, configure_structured_logging
from ..models import CachedEntity, SyncStatus, looks_server_assigned, utc_now
from ..resources.base import ResourceAdapter
from ..resources.registry import ResourceRegistry, build_default_registry
from ..store.base import EntityStore
from ..store.sqlite import SQLiteEntityStore, SQLiteStoreConfig
from ..transport import ResilientTransport
from .cancellation import CANCELLED_BY_USER, CancellationContext
from .conflict import Conflict, ServerWinsResolver
from .events import (
    ALL_ENTITIES,
    SYSTEM,
    EventChannel,
    SyncEventStatus,
    SyncOperation,
)
from .journal import ConflictJournal
from .result import SyncResult

logger = logging.getLogger(__name__)

ConnectivityCheck = Callable[[], Awaitable[bool]]

DEVICE_OFFLINE = "Device is offline"
ALREADY_SYNCING = "Sync already in progress"
OPERATION_CANCELLED = "Operation cancelled"
CONNECTIVITY_TIMEOUT_SECONDS = 5.0


class SyncState(Enum):
    """Current state of the sync engine."""

    IDLE = "idle"
    SYNCING = "syncing"
    PAUSED = "paused"
    OFFLINE = "offline"
    ERROR = "error"


class SyncOrchestrator:
    """Bidirectional, single-flight sync between the local store and the API.

    Handles:
    - Uploading pending creates, updates and deletions
    - Downloading stale entity types and reconciling them (server wins)
    - Publishing progress on an EventChannel
    - Cancellation, pause/resume and background auto-sync
    """

    def __init__(
        self,
        store: EntityStore,
        policy: CachePolicy,
        transport: ResilientTransport,
        registry: ResourceRegistry,
        events: EventChannel | None = None,
        config: SyncConfig | None = None,
        connectivity_check: ConnectivityCheck | None = None,
        journal: ConflictJournal | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            store: Local entity store
            policy: Cache policy over the same store
            transport: Transport used for health probing
            registry: Resource adapters per entity type
            events: Progress channel (created if None)
            config: Sync configuration
            connectivity_check: Local network probe; defaults to resolving the API host
            journal: Where discarded local edits are recorded (optional)
        """
        self.store = store
        self.policy = policy
        self.transport = transport
        self.registry = registry
        self.config = config or SyncConfig()
        self.events = events or EventChannel(self.config.event_buffer_size)
        self.resolver = ServerWinsResolver()
        self.journal = journal
        self._connectivity_check = connectivity_check or self._resolve_api_host

        self._lock = asyncio.Lock()
        self._is_syncing = False
        self._cancellation = CancellationContext()
        self._state = SyncState.IDLE
        self._last_sync_times: dict[str, datetime] = {}
        self._sync_task: asyncio.Task[None] | None = None
        self._log: logging.LoggerAdapter = SyncLoggerAdapter(logger, {})

    @property
    def state(self) -> SyncState:
        """Get current sync state."""
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    def _emit(
        self,
        entity_type: str,
        operation: SyncOperation,
        status: SyncEventStatus,
        message: str | None = None,
    ) -> None:
        self.events.emit(entity_type, operation, status, message)

    # =========================================================================
    # Connectivity
    # =========================================================================

    async def _resolve_api_host(self) -> bool:
        host = urlsplit(self.transport.config.base_url).hostname
        if not host:
            return False
        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(loop.getaddrinfo(host, None), CONNECTIVITY_TIMEOUT_SECONDS)
            return True
        except (OSError, asyncio.TimeoutError):
            return False

    async def is_online(self) -> bool:
        """Check local connectivity, then probe the API's health endpoint."""
        self._emit(SYSTEM, SyncOperation.CONNECTIVITY_CHECK, SyncEventStatus.STARTED)
        try:
            if not await self._connectivity_check():
                self._emit(
                    SYSTEM,
                    SyncOperation.CONNECTIVITY_CHECK,
                    SyncEventStatus.FAILED,
                    "Network is not available",
                )
                self._set_offline()
                return False

            health = await self.transport.check_health()
            if not health.is_healthy:
                self._emit(
                    SYSTEM,
                    SyncOperation.CONNECTIVITY_CHECK,
                    SyncEventStatus.FAILED,
                    "API is not available",
                )
                self._set_offline()
                return False
        except Exception as e:
            logger.warning(f"Connectivity check failed: {e}")
            self._emit(SYSTEM, SyncOperation.CONNECTIVITY_CHECK, SyncEventStatus.FAILED, str(e))
            self._set_offline()
            return False

        self._emit(SYSTEM, SyncOperation.CONNECTIVITY_CHECK, SyncEventStatus.COMPLETED)
        if self._state == SyncState.OFFLINE:
            self._state = SyncState.IDLE
        return True

    def _set_offline(self) -> None:
        if self._state in (SyncState.IDLE, SyncState.ERROR):
            self._state = SyncState.OFFLINE

    # =========================================================================
    # Single-flight guard
    # =========================================================================

    async def _try_begin(self) -> CancellationContext | None:
        async with self._lock:
            if self._is_syncing:
                return None
            self._is_syncing = True
            self._cancellation = CancellationContext()
            if self._state != SyncState.PAUSED:
                self._state = SyncState.SYNCING
            self._log = SyncLoggerAdapter(logger, {"campaign_id": uuid.uuid4().hex[:12]})
            return self._cancellation

    async def _end(self, failed: bool = False) -> None:
        async with self._lock:
            self._is_syncing = False
            if self._state == SyncState.SYNCING:
                self._state = SyncState.ERROR if failed else SyncState.IDLE

    async def _guarded(
        self,
        entity_name: str,
        operation: SyncOperation,
        campaign: Callable[[CancellationContext], Awaitable[SyncResult]],
    ) -> SyncResult:
        """Run a campaign under the online check and the single-flight guard."""
        if not await self.is_online():
            logger.warning(f"Cannot sync {entity_name}: {DEVICE_OFFLINE}")
            self._emit(entity_name, operation, SyncEventStatus.SKIPPED, DEVICE_OFFLINE)
            return SyncResult().complete()

        cancellation = await self._try_begin()
        if cancellation is None:
            logger.info(f"Skipping sync of {entity_name}: {ALREADY_SYNCING}")
            self._emit(entity_name, operation, SyncEventStatus.SKIPPED, ALREADY_SYNCING)
            return SyncResult().complete()

        failed = False
        try:
            return (await campaign(cancellation)).complete()
        except Exception as e:
            failed = True
            self._log.exception(f"Sync of {entity_name} failed")
            self._emit(entity_name, operation, SyncEventStatus.FAILED, str(e))
            result = SyncResult()
            result.add_failure(entity_name, None, e)
            return result.complete()
        finally:
            await self._end(failed)

    def _finish(
        self,
        entity_name: str,
        operation: SyncOperation,
        result: SyncResult,
        cancellation: CancellationContext,
    ) -> SyncResult:
        if cancellation.cancelled:
            self._log.info(f"Sync of {entity_name} was cancelled")
            self._emit(entity_name, operation, SyncEventStatus.SKIPPED, OPERATION_CANCELLED)
        else:
            status = (
                SyncEventStatus.COMPLETED if result.failure_count == 0 else SyncEventStatus.FAILED
            )
            self._emit(entity_name, operation, status)
        return result

    # =========================================================================
    # Public campaigns
    # =========================================================================

    async def sync_all(self) -> SyncResult:
        """Upload pending changes for every type, then refresh stale types."""

        async def campaign(cancellation: CancellationContext) -> SyncResult:
            self._emit(ALL_ENTITIES, SyncOperation.UPLOAD, SyncEventStatus.STARTED)
            self._log.info("Sync campaign started")
            entity_types = await self.policy.order_by_priority(self.registry.entity_types())

            result = await self._upload_types(entity_types, cancellation)
            if not cancellation.cancelled:
                result = result.merge(await self._refresh_types(entity_types, cancellation))
            if not cancellation.cancelled:
                now = utc_now()
                for entity_type in entity_types:
                    self._last_sync_times[entity_type.ENTITY_TYPE] = now

            self._log.info(
                f"Sync campaign finished: {result.success_count} ok, "
                f"{result.failure_count} failed, {result.conflict_count} conflicts"
            )
            return self._finish(ALL_ENTITIES, SyncOperation.UPLOAD, result, cancellation)

        return await self._guarded(ALL_ENTITIES, SyncOperation.UPLOAD, campaign)

    async def sync_entity(self, entity_type: type[CachedEntity]) -> SyncResult:
        """Upload then download one entity type, and record its last sync time."""
        name = entity_type.ENTITY_TYPE

        async def campaign(cancellation: CancellationContext) -> SyncResult:
            result = await self._upload_type(entity_type, cancellation)
            if not cancellation.cancelled:
                adapter = self.registry.get(entity_type)
                if adapter is not None:
                    result = result.merge(
                        await self._download_type(entity_type, adapter, cancellation)
                    )
                self._last_sync_times[name] = utc_now()
            return self._finish(name, SyncOperation.UPLOAD, result, cancellation)

        return await self._guarded(name, SyncOperation.UPLOAD, campaign)

    async def force_sync_entity(self, entity_type: type[CachedEntity], entity_id: int) -> SyncResult:
        """Upload one entity unconditionally, then re-download it."""
        name = entity_type.ENTITY_TYPE

        async def campaign(cancellation: CancellationContext) -> SyncResult:
            self._emit(name, SyncOperation.UPLOAD, SyncEventStatus.STARTED)
            entity = await self.store.find(entity_type, entity_id)
            if entity is None:
                logger.warning(f"{name} {entity_id} not found in local store")
                self._emit(name, SyncOperation.UPLOAD, SyncEventStatus.FAILED, "Entity not found")
                result = SyncResult()
                result.add_failure(name, entity_id, "Entity not found")
                return result

            adapter = self.registry.get(entity_type)
            if adapter is None:
                result = SyncResult()
                result.add_skipped(f"{name} has no remote resource")
                self._emit(name, SyncOperation.UPLOAD, SyncEventStatus.SKIPPED, "No remote resource")
                return result

            result = SyncResult()
            deleted = entity.sync_status == SyncStatus.PENDING_DELETION
            await self._upload_entity(adapter, entity, result, force=True)
            if not deleted and not cancellation.cancelled:
                result = result.merge(
                    await self._download_type(
                        entity_type,
                        adapter,
                        cancellation,
                        entity_id=entity.id,
                        vehicle_id=getattr(entity, "vehicle_id", None),
                    )
                )
            return self._finish(name, SyncOperation.UPLOAD, result, cancellation)

        return await self._guarded(name, SyncOperation.UPLOAD, campaign)

    async def upload_pending_changes(self) -> SyncResult:
        """Upload pass only, every entity type in priority order."""

        async def campaign(cancellation: CancellationContext) -> SyncResult:
            self._emit(ALL_ENTITIES, SyncOperation.UPLOAD, SyncEventStatus.STARTED)
            entity_types = await self.policy.order_by_priority(self.registry.entity_types())
            result = await self._upload_types(entity_types, cancellation)
            return self._finish(ALL_ENTITIES, SyncOperation.UPLOAD, result, cancellation)

        return await self._guarded(ALL_ENTITIES, SyncOperation.UPLOAD, campaign)

    async def refresh_expired_cache(self) -> SyncResult:
        """Download pass only, for every type that needs a refresh."""

        async def campaign(cancellation: CancellationContext) -> SyncResult:
            self._emit(ALL_ENTITIES, SyncOperation.REFRESH, SyncEventStatus.STARTED)
            entity_types = await self.policy.order_by_priority(self.registry.entity_types())
            result = await self._refresh_types(entity_types, cancellation)
            return self._finish(ALL_ENTITIES, SyncOperation.REFRESH, result, cancellation)

        return await self._guarded(ALL_ENTITIES, SyncOperation.REFRESH, campaign)

    def cancel_sync(self) -> None:
        """Signal the running campaign to stop at the next boundary.

        Writes already applied are kept. Does nothing when no campaign is running.
        """
        if not self._is_syncing:
            logger.debug("Sync cancellation requested with no campaign running")
            return
        self._cancellation.cancel(CANCELLED_BY_USER)
        logger.info("Sync cancellation requested")
        self._emit(ALL_ENTITIES, SyncOperation.UPLOAD, SyncEventStatus.SKIPPED, CANCELLED_BY_USER)

    async def get_last_sync_time(self, entity_type: type[CachedEntity]) -> datetime | None:
        """Last campaign that covered this type, else the newest per-entity sync time."""
        recorded = self._last_sync_times.get(entity_type.ENTITY_TYPE)
        if recorded is not None:
            return recorded
        stamps = [
            e.last_sync_timestamp
            for e in await self.store.query(entity_type)
            if e.last_sync_timestamp is not None
        ]
        return max(stamps, default=None)

    # =========================================================================
    # Upload pass
    # =========================================================================

    async def _upload_types(
        self,
        entity_types: list[type[CachedEntity]],
        cancellation: CancellationContext,
    ) -> SyncResult:
        result = SyncResult()
        for entity_type in entity_types:
            if cancellation.cancelled:
                break
            result = result.merge(await self._upload_type(entity_type, cancellation))
        return result

    async def _upload_type(
        self,
        entity_type: type[CachedEntity],
        cancellation: CancellationContext,
    ) -> SyncResult:
        name = entity_type.ENTITY_TYPE
        result = SyncResult()
        self._emit(name, SyncOperation.UPLOAD, SyncEventStatus.STARTED)

        try:
            pending = await self.policy.get_pending_sync_items(entity_type)
        except Exception as e:
            self._log.error(f"Could not read pending {name} items: {e}")
            result.add_failure(name, None, e)
            self._emit(name, SyncOperation.UPLOAD, SyncEventStatus.FAILED, str(e))
            return result

        if not pending:
            self._emit(name, SyncOperation.UPLOAD, SyncEventStatus.SKIPPED, "No pending changes")
            return result

        adapter = self.registry.get(entity_type)
        if adapter is None:
            result.add_skipped(f"{name} has no remote resource", count=len(pending))
            self._emit(name, SyncOperation.UPLOAD, SyncEventStatus.SKIPPED, "No remote resource")
            return result

        self._log.debug(f"Uploading {len(pending)} pending {name} item(s)")
        for entity in pending:
            if cancellation.cancelled:
                break
            await self._upload_entity(adapter, entity, result)

        self._emit_type_outcome(name, SyncOperation.UPLOAD, result, cancellation)
        return result

    async def _upload_entity(
        self,
        adapter: ResourceAdapter,
        entity: CachedEntity,
        result: SyncResult,
        force: bool = False,
    ) -> None:
        """Push one entity according to its sync status; failures are recorded, not raised."""
        name = entity.ENTITY_TYPE
        status = entity.sync_status
        try:
            if status == SyncStatus.PENDING_DELETION:
                if looks_server_assigned(entity.id):
                    await adapter.delete(entity)
                # Created and deleted offline: the server never saw it
                await self.store.remove(type(entity), entity.id)
                result.add_success()
                return

            if status == SyncStatus.PENDING_UPLOAD:
                await self._create_remote(adapter, entity)
            elif status == SyncStatus.PENDING_UPDATE:
                await adapter.update(entity)
            elif status == SyncStatus.SYNC_FAILED or force:
                if entity.is_dirty or force:
                    if looks_server_assigned(entity.id):
                        await adapter.update(entity)
                    else:
                        await self._create_remote(adapter, entity)

            await self.policy.mark_synced(entity)
            result.add_success()
        except Exception as e:
            self._log.warning(
                f"Upload of {name} {entity.id} failed: {e}",
                extra={"entity_type": name, "entity_id": entity.id, "operation": "Upload"},
            )
            result.add_failure(name, entity.id, e)
            try:
                await self.policy.mark_failed(entity)
            except Exception as store_error:
                self._log.error(f"Could not record failed upload of {name} {entity.id}: {store_error}")

    async def _create_remote(self, adapter: ResourceAdapter, entity: CachedEntity) -> None:
        new_id = await adapter.create(entity)
        if new_id is not None and new_id != entity.id:
            self._log.debug(f"{entity.ENTITY_TYPE} {entity.id} assigned server id {new_id}")
            await self.store.rekey(entity, new_id)

    # =========================================================================
    # Download pass
    # =========================================================================

    async def _should_refresh(self, entity_type: type[CachedEntity]) -> bool:
        if await self.policy.needs_refresh(entity_type):
            return True
        return self.config.refresh_empty_types and await self.store.count(entity_type) == 0

    async def _refresh_types(
        self,
        entity_types: list[type[CachedEntity]],
        cancellation: CancellationContext,
    ) -> SyncResult:
        result = SyncResult()
        for entity_type in entity_types:
            if cancellation.cancelled:
                break
            adapter = self.registry.get(entity_type)
            if adapter is None:
                continue
            try:
                stale = await self._should_refresh(entity_type)
            except Exception as e:
                result.add_failure(entity_type.ENTITY_TYPE, None, e)
                continue
            if stale:
                result = result.merge(await self._download_type(entity_type, adapter, cancellation))
        return result

    async def _download_type(
        self,
        entity_type: type[CachedEntity],
        adapter: ResourceAdapter,
        cancellation: CancellationContext,
        entity_id: int | None = None,
        vehicle_id: int | None = None,
    ) -> SyncResult:
        name = entity_type.ENTITY_TYPE
        result = SyncResult()
        self._emit(name, SyncOperation.DOWNLOAD, SyncEventStatus.STARTED)

        try:
            if entity_id is None:
                server_entities = await adapter.get_all()
            else:
                one = await adapter.get_one(entity_id, vehicle_id)
                server_entities = [one] if one is not None else []
        except Exception as e:
            self._log.warning(
                f"Download of {name} failed: {e}",
                extra={"entity_type": name, "operation": "Download"},
            )
            result.add_failure(name, entity_id, e)
            self._emit(name, SyncOperation.DOWNLOAD, SyncEventStatus.FAILED, str(e))
            return result

        for failure in adapter.take_decode_failures():
            result.add_failure(name, failure.entity_id, failure.error)

        for server_entity in server_entities:
            if cancellation.cancelled:
                break
            await self._reconcile(server_entity, result)

        self._emit_type_outcome(name, SyncOperation.DOWNLOAD, result, cancellation)
        return result

    def _emit_type_outcome(
        self,
        name: str,
        operation: SyncOperation,
        result: SyncResult,
        cancellation: CancellationContext,
    ) -> None:
        if cancellation.cancelled:
            self._emit(name, operation, SyncEventStatus.SKIPPED, OPERATION_CANCELLED)
        elif result.failure_count == 0:
            self._emit(name, operation, SyncEventStatus.COMPLETED)
        else:
            self._emit(name, operation, SyncEventStatus.FAILED)

    async def _reconcile(self, server: CachedEntity, result: SyncResult) -> None:
        """Write one downloaded record into the store, server wins."""
        name = server.ENTITY_TYPE
        try:
            local = await self.store.find(type(server), server.id)
            if local is None:
                server.sync_status = SyncStatus.SYNCED
                server.is_dirty = False
                await self.store.add(server)
                await self.policy.mark_synced(server)
                await self.policy.update_expiration(server)
                result.add_success()
                return

            conflict = self.resolver.detect(local, server)
            if conflict is not None:
                await self._journal(conflict)

            self.resolver.apply(local, server)
            await self.store.update(local, local.data_fields())
            await self.policy.mark_synced(local)
            await self.policy.update_expiration(local)

            if conflict is None:
                result.add_success()
                return

            result.add_conflict()
            self._log.warning(
                f"Conflict on {name} {local.id} ({conflict.local_status.value}): "
                f"server wins, discarded {sorted(conflict.discarded_values)}"
            )
            self._emit(
                name,
                SyncOperation.CONFLICT_RESOLUTION,
                SyncEventStatus.CONFLICT_DETECTED,
                "Conflict resolved using server data (server wins)",
            )
        except Exception as e:
            self._log.warning(f"Could not store downloaded {name} {server.id}: {e}")
            result.add_failure(name, server.id, e)

    async def _journal(self, conflict: Conflict) -> None:
        if self.journal is None:
            return
        try:
            await self.journal.record(conflict)
        except OSError as e:
            self._log.error(f"Could not journal discarded edit of {conflict.entity_type}: {e}")

    # =========================================================================
    # Background sync
    # =========================================================================

    async def start_auto_sync(self) -> None:
        """Start automatic background sync every auto_sync_interval_seconds."""
        if self._sync_task is not None:
            return

        async def sync_loop() -> None:
            while True:
                try:
                    await asyncio.sleep(self.config.auto_sync_interval_seconds)
                    if self._state != SyncState.PAUSED:
                        await self.sync_all()
                except asyncio.CancelledError:
                    break
                except Exception:
                    logger.exception("Background sync failed; will retry next interval")

        self._sync_task = asyncio.create_task(sync_loop())
        logger.info(f"Auto-sync started (every {self.config.auto_sync_interval_seconds}s)")

    async def stop_auto_sync(self) -> None:
        """Stop automatic background sync."""
        if self._sync_task is not None:
            self._sync_task.cancel()
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass
            self._sync_task = None
            logger.info("Auto-sync stopped")

    def pause(self) -> None:
        """Pause background sync; explicit campaigns still run."""
        self._state = SyncState.PAUSED

    def resume(self) -> None:
        """Resume background sync."""
        if self._state == SyncState.PAUSED:
            self._state = SyncState.SYNCING if self._is_syncing else SyncState.IDLE

    async def close(self) -> None:
        await self.stop_auto_sync()
        self.events.close()
        await self.transport.close()
        await self.store.close()


async def create_sync_orchestrator(
    settings: Settings | None = None,
    store: EntityStore | None = None,
    db_path: Path | None = None,
) -> SyncOrchestrator:
    """Create and initialize a sync orchestrator.

    Args:
        settings: Loaded settings (read from ~/.lubelogger/settings.yaml if None)
        store: Entity store (a SQLite store at db_path is created if None)
        db_path: SQLite file; defaults to ~/.lubelogger/cache.db

    Returns:
        Initialized SyncOrchestrator with seeded cache configuration
    """
    settings = settings or Settings.load()
    if settings.logging.structured:
        configure_structured_logging(settings.logging.level)

    if store is None:
        path = db_path or Path.home() / ".lubelogger" / "cache.db"
        store = await SQLiteEntityStore.create(SQLiteStoreConfig(db_path=path))

    await seed_default_configurations(store, settings.cache)

    transport = ResilientTransport(settings.transport)
    journal = (
        ConflictJournal(settings.sync.conflict_journal_path)
        if settings.sync.conflict_journal_path
        else None
    )

    return SyncOrchestrator(
        store=store,
        policy=CachePolicy(store),
        transport=transport,
        registry=build_default_registry(transport, store),
        config=settings.sync,
        journal=journal,
    )
