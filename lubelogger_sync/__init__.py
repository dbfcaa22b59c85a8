"""
LubeLogger Sync

Offline-first client cache for a LubeLogger server.

Provides:
- Local entity store (SQLite or in-memory) with per-type expiration policy
- Resilient HTTP transport (retry with backoff, circuit breaker, rate limits)
- Bidirectional sync orchestration with server-wins conflict resolution
- Progress events for UI or log consumers

Usage:

    >>> from lubelogger_sync import create_sync_orchestrator
    >>> orchestrator = await create_sync_orchestrator()
    >>> orchestrator.transport.set_auth_header("my-api-token")
    >>> subscription = orchestrator.events.subscribe()
    >>> result = await orchestrator.sync_all()
    >>> print(result.status.value, result.success_count, result.conflict_count)
"""

# Cache policy
from .cache import CachePolicy, seed_default_configurations

# Configuration
from .config import (
    DEFAULT_CACHE_CONFIGURATIONS,
    CacheConfiguration,
    LoggingSettings,
    Settings,
    SyncConfig,
    TransportConfig,
)

# Exceptions
from .exceptions import (
    CircuitOpenError,
    ConfigurationError,
    EntityNotFoundError,
    LubeLoggerSyncError,
    RemoteOperationError,
    ServerError,
    StoreError,
    TransportError,
    ValidationError,
)

# Logging
from .logging_utils import configure_structured_logging, get_sync_logger

# Entities
from .models import (
    ENTITY_TYPES,
    CachedEntity,
    ExtraField,
    GasRecord,
    OdometerRecord,
    PlanRecord,
    Reminder,
    ReminderFrequency,
    ReminderType,
    RepairRecord,
    ServiceRecord,
    SyncStatus,
    TaxRecord,
    UpgradeRecord,
    UserPreference,
    Vehicle,
    entity_class,
)

# Remote resources
from .resources import ResourceAdapter, ResourceRegistry, RestResource, build_default_registry

# Stores
from .store import EntityStore, InMemoryEntityStore, SQLiteEntityStore, SQLiteStoreConfig

# Sync
from .sync import (
    EventChannel,
    SyncEventStatus,
    SyncOperation,
    SyncOrchestrator,
    SyncResult,
    SyncState,
    SyncStatusEvent,
    create_sync_orchestrator,
)

# Transport
from .transport import CircuitBreaker, CircuitState, HealthStatus, ResilientTransport

__version__ = "0.1.0"

__all__ = [
    # Cache
    "CachePolicy",
    "seed_default_configurations",
    # Configuration
    "DEFAULT_CACHE_CONFIGURATIONS",
    "CacheConfiguration",
    "LoggingSettings",
    "Settings",
    "SyncConfig",
    "TransportConfig",
    # Exceptions
    "CircuitOpenError",
    "ConfigurationError",
    "EntityNotFoundError",
    "LubeLoggerSyncError",
    "RemoteOperationError",
    "ServerError",
    "StoreError",
    "TransportError",
    "ValidationError",
    # Logging
    "configure_structured_logging",
    "get_sync_logger",
    # Entities
    "ENTITY_TYPES",
    "CachedEntity",
    "ExtraField",
    "GasRecord",
    "OdometerRecord",
    "PlanRecord",
    "Reminder",
    "ReminderFrequency",
    "ReminderType",
    "RepairRecord",
    "ServiceRecord",
    "SyncStatus",
    "TaxRecord",
    "UpgradeRecord",
    "UserPreference",
    "Vehicle",
    "entity_class",
    # Resources
    "ResourceAdapter",
    "ResourceRegistry",
    "RestResource",
    "build_default_registry",
    # Stores
    "EntityStore",
    "InMemoryEntityStore",
    "SQLiteEntityStore",
    "SQLiteStoreConfig",
    # Sync
    "EventChannel",
    "SyncEventStatus",
    "SyncOperation",
    "SyncOrchestrator",
    "SyncResult",
    "SyncState",
    "SyncStatusEvent",
    "create_sync_orchestrator",
    # Transport
    "CircuitBreaker",
    "CircuitState",
    "HealthStatus",
    "ResilientTransport",
]
