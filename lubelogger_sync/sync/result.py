"""Outcome of a sync campaign or of one pass within it."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from ..models import utc_now


class SyncResultStatus(Enum):
    SUCCESS = "Success"
    PARTIAL_SUCCESS = "PartialSuccess"
    FAILURE = "Failure"


@dataclass
class SyncError:
    """One per-item failure recorded during a pass."""

    entity_type: str
    entity_id: int | None
    cause: str
    error_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "cause": self.cause,
            "error_type": self.error_type,
        }


def _min_time(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None or b is None:
        return a or b
    return min(a, b)


def _max_time(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None or b is None:
        return a or b
    return max(a, b)


@dataclass
class SyncResult:
    """Counts, errors and timing of a sync pass.

    Results merge: counts sum, error lists concatenate in order, and the
    merged window spans the earliest start to the latest end.
    """

    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    conflict_count: int = 0
    errors: list[SyncError] = field(default_factory=list)
    skip_reasons: list[str] = field(default_factory=list)
    start_time: datetime | None = field(default_factory=utc_now)
    end_time: datetime | None = None

    def add_success(self, count: int = 1) -> None:
        self.success_count += count

    def add_failure(
        self,
        entity_type: str,
        entity_id: int | None,
        cause: str | Exception,
    ) -> None:
        error_type = type(cause).__name__ if isinstance(cause, Exception) else None
        self.failure_count += 1
        self.errors.append(SyncError(entity_type, entity_id, str(cause), error_type))

    def add_skipped(self, reason: str | None = None, count: int = 1) -> None:
        self.skipped_count += count
        if reason:
            self.skip_reasons.append(reason)

    def add_conflict(self) -> None:
        self.conflict_count += 1

    def complete(self) -> SyncResult:
        self.end_time = utc_now()
        return self

    def merge(self, other: SyncResult) -> SyncResult:
        """Return a new result combining this one with ``other``."""
        return SyncResult(
            success_count=self.success_count + other.success_count,
            failure_count=self.failure_count + other.failure_count,
            skipped_count=self.skipped_count + other.skipped_count,
            conflict_count=self.conflict_count + other.conflict_count,
            errors=[*self.errors, *other.errors],
            skip_reasons=[*self.skip_reasons, *other.skip_reasons],
            start_time=_min_time(self.start_time, other.start_time),
            end_time=_max_time(self.end_time, other.end_time),
        )

    @classmethod
    def combine(cls, *results: SyncResult) -> SyncResult:
        combined = cls(start_time=None)
        for result in results:
            combined = combined.merge(result)
        return combined

    @property
    def status(self) -> SyncResultStatus:
        if self.failure_count == 0 and self.success_count > 0:
            return SyncResultStatus.SUCCESS
        if self.failure_count > 0 and self.success_count > 0:
            return SyncResultStatus.PARTIAL_SUCCESS
        return SyncResultStatus.FAILURE

    @property
    def duration(self) -> timedelta:
        if self.start_time is None or self.end_time is None:
            return timedelta(0)
        return self.end_time - self.start_time

    @property
    def is_empty(self) -> bool:
        return (
            self.success_count == 0
            and self.failure_count == 0
            and self.skipped_count == 0
            and self.conflict_count == 0
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "conflict_count": self.conflict_count,
            "errors": [error.to_dict() for error in self.errors],
            "skip_reasons": list(self.skip_reasons),
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": int(self.duration.total_seconds() * 1000),
        }
