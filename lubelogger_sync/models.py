"""
Data model for cached LubeLogger entities.

Every tracked record kind derives from CachedEntity, which carries the
sync bookkeeping (status, dirty flag, sync and expiration timestamps).
Subclasses only declare their data fields; serialization to the local
store (to_dict/from_dict), decoding of API payloads (from_api) and
form encoding for write requests (to_form) are shared.

Records created offline get a non-positive temporary id until the
server assigns a real one.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, fields
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, ClassVar, TypeVar

E = TypeVar("E", bound="CachedEntity")


class SyncStatus(Enum):
    """Synchronization state of a cached entity."""

    SYNCED = "Synced"
    PENDING_UPLOAD = "PendingUpload"
    PENDING_UPDATE = "PendingUpdate"
    PENDING_DELETION = "PendingDeletion"
    SYNC_FAILED = "SyncFailed"


# Statuses that may carry local edits (is_dirty=True)
DIRTY_STATUSES = frozenset(
    {
        SyncStatus.PENDING_UPLOAD,
        SyncStatus.PENDING_UPDATE,
        SyncStatus.PENDING_DELETION,
        SyncStatus.SYNC_FAILED,
    }
)

# Statuses that represent an uncommitted local edit during reconciliation
UNCOMMITTED_STATUSES = frozenset(
    {
        SyncStatus.PENDING_UPLOAD,
        SyncStatus.PENDING_UPDATE,
        SyncStatus.PENDING_DELETION,
    }
)


class ReminderType(Enum):
    DATE = "Date"
    ODOMETER = "Odometer"
    BOTH = "Both"


class ReminderFrequency(Enum):
    DAYS = "Days"
    WEEKS = "Weeks"
    MONTHS = "Months"
    YEARS = "Years"
    MILES = "Miles"
    KILOMETERS = "Kilometers"


def utc_now() -> datetime:
    return datetime.now(UTC)


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO timestamp (or pass through a datetime), always timezone-aware."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def parse_date(value: Any) -> date | None:
    """Parse a calendar date from ISO (2024-01-31), US (1/31/2024) or timestamp form."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if "/" in text:
        return datetime.strptime(text, "%m/%d/%Y").date()
    return datetime.fromisoformat(text[:10]).date()


def looks_server_assigned(entity_id: int) -> bool:
    """Heuristic used to pick create vs. update when retrying a failed upload.

    Server ids are positive; ids minted locally for offline creates are zero
    or negative. A legitimately small server id is indistinguishable from a
    mis-keyed local one, so this is a guess, not a guarantee.
    """
    return entity_id > 0


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def encode_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [encode_value(item) for item in value]
    if isinstance(value, ExtraField):
        return value.to_dict()
    return value


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, list):
        return json.dumps(encode_value(value))
    return str(value)


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _to_float(value: Any) -> float:
    if isinstance(value, str):
        value = re.sub(r"[^0-9.\-]", "", value) or "0"
    return float(value or 0)


def _to_optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


@dataclass
class ExtraField:
    """Free-form name/value pair attached to a record."""

    name: str = ""
    value: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtraField:
        return cls(name=str(data.get("name", "")), value=str(data.get("value", "")))


def _extra_fields(value: Any) -> list[ExtraField]:
    if isinstance(value, str):
        value = json.loads(value) if value else []
    return [item if isinstance(item, ExtraField) else ExtraField.from_dict(item) for item in value or []]


_SYNC_FIELDS = frozenset(
    {"id", "last_sync_timestamp", "expiration_timestamp", "sync_status", "is_dirty"}
)


@dataclass
class CachedEntity:
    """Base class for every record kind tracked by the local cache.

    Invariant: ``is_dirty`` implies ``sync_status`` is one of DIRTY_STATUSES.

    Attributes:
        id: Server id, or a non-positive temporary id for offline creates
        last_sync_timestamp: When this entity last synced successfully
        expiration_timestamp: When the cached copy goes stale
        sync_status: Position in the sync state machine
        is_dirty: True while the entity carries unsynchronized local edits
    """

    ENTITY_TYPE: ClassVar[str] = "CachedEntity"
    # Field name -> decoder applied when reading stored or API values
    DECODERS: ClassVar[dict[str, Callable[[Any], Any]]] = {
        "id": int,
        "last_sync_timestamp": parse_datetime,
        "expiration_timestamp": parse_datetime,
        "sync_status": SyncStatus,
        "is_dirty": _to_bool,
    }
    # Data fields never sent in form bodies
    FORM_EXCLUDE: ClassVar[frozenset[str]] = frozenset()

    id: int = 0
    last_sync_timestamp: datetime | None = None
    expiration_timestamp: datetime | None = None
    sync_status: SyncStatus = SyncStatus.SYNCED
    is_dirty: bool = False

    @classmethod
    def data_fields(cls) -> tuple[str, ...]:
        """Names of the fields that carry record data (what the server owns)."""
        return tuple(f.name for f in fields(cls) if f.name not in _SYNC_FIELDS)

    def data(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.data_fields()}

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-safe dictionary for the local store."""
        return {f.name: encode_value(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls: type[E], data: dict[str, Any]) -> E:
        """Create from a dictionary produced by to_dict."""
        known = {f.name for f in fields(cls)}
        kwargs = {
            name: cls._decode(name, value) for name, value in data.items() if name in known
        }
        return cls(**kwargs)

    @classmethod
    def from_api(cls: type[E], payload: dict[str, Any]) -> E:
        """Create a Synced entity from a JSON object returned by the server.

        Keys are matched case-insensitively against the camelCase form of
        each field name; unknown keys are ignored.
        """
        lowered = {str(key).lower(): value for key, value in payload.items()}
        kwargs: dict[str, Any] = {}
        for name in ("id", *cls.data_fields()):
            key = _camel(name).lower()
            if key in lowered:
                kwargs[name] = cls._decode(name, lowered[key])
        return cls(**kwargs)

    def to_form(self, include_id: bool = False) -> list[tuple[str, str]]:
        """Encode data fields as form pairs for create/update requests."""
        pairs: list[tuple[str, str]] = []
        if include_id:
            pairs.append(("id", str(self.id)))
        for name in self.data_fields():
            value = getattr(self, name)
            if name in self.FORM_EXCLUDE or value is None:
                continue
            pairs.append((_camel(name), _form_value(value)))
        return pairs

    @classmethod
    def _decode(cls, name: str, value: Any) -> Any:
        decoder = cls.DECODERS.get(name)
        if decoder is None or value is None:
            return value
        return decoder(value)


@dataclass
class Vehicle(CachedEntity):
    ENTITY_TYPE: ClassVar[str] = "Vehicle"
    DECODERS: ClassVar[dict[str, Callable[[Any], Any]]] = {
        **CachedEntity.DECODERS,
        "year": int,
        "current_mileage": int,
    }

    name: str = ""
    make: str = ""
    model: str = ""
    year: int = 0
    vin: str = ""
    license_plate: str = ""
    current_mileage: int = 0
    notes: str = ""


@dataclass
class OdometerRecord(CachedEntity):
    ENTITY_TYPE: ClassVar[str] = "OdometerRecord"
    DECODERS: ClassVar[dict[str, Callable[[Any], Any]]] = {
        **CachedEntity.DECODERS,
        "vehicle_id": int,
        "date": parse_date,
        "odometer": int,
        "initial_odometer": int,
        "extra_fields": _extra_fields,
    }
    FORM_EXCLUDE: ClassVar[frozenset[str]] = frozenset({"extra_fields"})

    vehicle_id: int = 0
    date: date | None = None
    odometer: int = 0
    initial_odometer: int = 0
    notes: str = ""
    extra_fields: list[ExtraField] = field(default_factory=list)


@dataclass
class MaintenanceRecord(CachedEntity):
    """Shared shape of plan, service, repair and upgrade records."""

    DECODERS: ClassVar[dict[str, Callable[[Any], Any]]] = {
        **CachedEntity.DECODERS,
        "vehicle_id": int,
        "date": parse_date,
        "odometer": _to_optional_int,
        "cost": _to_float,
    }

    vehicle_id: int = 0
    date: date | None = None
    odometer: int | None = None
    description: str = ""
    cost: float = 0.0


@dataclass
class PlanRecord(MaintenanceRecord):
    ENTITY_TYPE: ClassVar[str] = "PlanRecord"

    type: str = ""
    priority: str = ""
    progress: str = ""


@dataclass
class ServiceRecord(MaintenanceRecord):
    ENTITY_TYPE: ClassVar[str] = "ServiceRecord"


@dataclass
class RepairRecord(MaintenanceRecord):
    ENTITY_TYPE: ClassVar[str] = "RepairRecord"


@dataclass
class UpgradeRecord(MaintenanceRecord):
    ENTITY_TYPE: ClassVar[str] = "UpgradeRecord"


@dataclass
class TaxRecord(CachedEntity):
    ENTITY_TYPE: ClassVar[str] = "TaxRecord"
    DECODERS: ClassVar[dict[str, Callable[[Any], Any]]] = {
        **CachedEntity.DECODERS,
        "vehicle_id": int,
        "date": parse_date,
        "cost": _to_float,
    }

    vehicle_id: int = 0
    date: date | None = None
    description: str = ""
    cost: float = 0.0


@dataclass
class GasRecord(CachedEntity):
    ENTITY_TYPE: ClassVar[str] = "GasRecord"
    DECODERS: ClassVar[dict[str, Callable[[Any], Any]]] = {
        **CachedEntity.DECODERS,
        "vehicle_id": int,
        "date": parse_date,
        "odometer": int,
        "fuel_consumed": _to_float,
        "is_full_fill": _to_bool,
        "missed_fuel_up": _to_bool,
        "cost": _to_float,
    }

    vehicle_id: int = 0
    date: date | None = None
    odometer: int = 0
    fuel_consumed: float = 0.0
    is_full_fill: bool = True
    missed_fuel_up: bool = False
    cost: float = 0.0
    notes: str = ""


@dataclass
class Reminder(CachedEntity):
    ENTITY_TYPE: ClassVar[str] = "Reminder"
    DECODERS: ClassVar[dict[str, Callable[[Any], Any]]] = {
        **CachedEntity.DECODERS,
        "vehicle_id": int,
        "due_date": parse_date,
        "due_odometer": _to_optional_int,
        "is_active": _to_bool,
        "is_dismissed": _to_bool,
        "dismissed_date": parse_datetime,
        "type": ReminderType,
        "frequency": ReminderFrequency,
        "frequency_value": int,
    }

    vehicle_id: int = 0
    title: str = ""
    description: str = ""
    due_date: date | None = None
    due_odometer: int | None = None
    is_active: bool = True
    is_dismissed: bool = False
    dismissed_date: datetime | None = None
    type: ReminderType = ReminderType.DATE
    frequency: ReminderFrequency | None = None
    frequency_value: int = 0


@dataclass
class UserPreference(CachedEntity):
    """Local-only preference row; there is no remote resource for it."""

    ENTITY_TYPE: ClassVar[str] = "UserPreference"
    DECODERS: ClassVar[dict[str, Callable[[Any], Any]]] = {
        **CachedEntity.DECODERS,
        "is_system_preference": _to_bool,
    }

    key: str = ""
    value: str = ""
    category: str = ""
    is_system_preference: bool = False


ENTITY_TYPES: dict[str, type[CachedEntity]] = {
    cls.ENTITY_TYPE: cls
    for cls in (
        Vehicle,
        OdometerRecord,
        PlanRecord,
        ServiceRecord,
        RepairRecord,
        UpgradeRecord,
        TaxRecord,
        GasRecord,
        Reminder,
        UserPreference,
    )
}


def entity_class(entity_type: str) -> type[CachedEntity]:
    """Look up an entity class by its type tag."""
    try:
        return ENTITY_TYPES[entity_type]
    except KeyError:
        raise KeyError(f"Unknown entity type: {entity_type}") from None


def next_local_id(entities: Iterable[CachedEntity]) -> int:
    """Return a fresh temporary id below every locally minted id in use."""
    return min((e.id for e in entities if e.id <= 0), default=0) - 1
