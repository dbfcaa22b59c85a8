"""
Sync orchestration.

Uploads pending local changes, refreshes stale entity types from the
server (server wins), and publishes progress events along the way.
"""

from .cancellation import CANCELLED_BY_USER, CancellationContext
from .conflict import Conflict, ConflictResolution, FieldDifference, ServerWinsResolver
from .engine import SyncOrchestrator, SyncState, create_sync_orchestrator
from .events import (
    ALL_ENTITIES,
    SYSTEM,
    EventChannel,
    EventSubscription,
    SyncEventStatus,
    SyncOperation,
    SyncStatusEvent,
)
from .journal import ConflictJournal
from .result import SyncError, SyncResult, SyncResultStatus

__all__ = [
    "ALL_ENTITIES",
    "CANCELLED_BY_USER",
    "SYSTEM",
    "CancellationContext",
    "Conflict",
    "ConflictJournal",
    "ConflictResolution",
    "EventChannel",
    "EventSubscription",
    "FieldDifference",
    "ServerWinsResolver",
    "SyncError",
    "SyncEventStatus",
    "SyncOperation",
    "SyncOrchestrator",
    "SyncResult",
    "SyncResultStatus",
    "SyncState",
    "SyncStatusEvent",
    "create_sync_orchestrator",
]
