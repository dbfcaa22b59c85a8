"""
Conflict handling for downloads.

The server is authoritative. When a downloaded record meets a local copy
that still carries an uncommitted edit (PendingUpload, PendingUpdate or
PendingDeletion), the server's fields overwrite the local ones and the
edit is discarded. The conflict is reported, never raised.

Discarding local edits without a merge or prompt is the established
behavior; any future multi-writer support has to revisit it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..models import UNCOMMITTED_STATUSES, CachedEntity, SyncStatus, encode_value, utc_now


class ConflictResolution(Enum):
    SERVER_WINS = "server wins"


@dataclass
class FieldDifference:
    field: str
    local_value: Any
    server_value: Any


@dataclass
class Conflict:
    """A local edit that lost to the server copy.

    Attributes:
        entity_type: Entity type tag
        entity_id: Id of the record in conflict
        local_status: Sync status the local copy had before resolution
        differences: Fields whose local value was overwritten
        resolution: How the conflict was settled
        detected_at: When the conflict was detected
    """

    entity_type: str
    entity_id: int
    local_status: SyncStatus
    differences: list[FieldDifference] = field(default_factory=list)
    resolution: ConflictResolution = ConflictResolution.SERVER_WINS
    detected_at: datetime = field(default_factory=utc_now)

    @property
    def discarded_values(self) -> dict[str, Any]:
        return {d.field: d.local_value for d in self.differences}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "local_status": self.local_status.value,
            "differences": [
                {
                    "field": d.field,
                    "local_value": encode_value(d.local_value),
                    "server_value": encode_value(d.server_value),
                }
                for d in self.differences
            ],
            "resolution": self.resolution.value,
            "detected_at": self.detected_at.isoformat(),
        }


class ServerWinsResolver:
    """Detects and settles download conflicts in the server's favor."""

    def detect(self, local: CachedEntity, server: CachedEntity) -> Conflict | None:
        """Return a Conflict when the local copy has an uncommitted edit."""
        if local.sync_status not in UNCOMMITTED_STATUSES:
            return None

        differences = [
            FieldDifference(name, getattr(local, name), getattr(server, name))
            for name in local.data_fields()
            if getattr(local, name) != getattr(server, name)
        ]
        return Conflict(
            entity_type=local.ENTITY_TYPE,
            entity_id=local.id,
            local_status=local.sync_status,
            differences=differences,
        )

    def apply(self, local: CachedEntity, server: CachedEntity) -> CachedEntity:
        """Overwrite the local copy's data fields with the server's values."""
        for name in local.data_fields():
            setattr(local, name, getattr(server, name))
        return local
