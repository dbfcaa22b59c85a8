"""Resilience primitives for outbound API calls.

Provides the circuit breaker, rate-limit tracking from server headers and
the jittered exponential backoff used by ResilientTransport. All state
here is owned by a single transport instance; nothing is module-global.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

# Exponent cap for backoff: base * 2**6 is the longest delay
MAX_BACKOFF_EXPONENT = 6

# X-RateLimit-Reset values above this are absolute epoch seconds
_EPOCH_THRESHOLD = 1_000_000_000


class CircuitState(Enum):
    CLOSED = "Closed"  # Normal, requests flow through
    OPEN = "Open"  # Tripped, requests fail fast
    HALF_OPEN = "HalfOpen"  # Probing, one request allowed to test recovery


@dataclass
class CircuitBreaker:
    """Three-state circuit breaker.

    Tracks consecutive failures. When the threshold is reached the circuit
    opens and every call fails fast for ``reset_timeout`` seconds. After
    that a single probe is admitted (half-open). If the probe succeeds the
    circuit closes; if it fails the circuit re-opens immediately.
    """

    failure_threshold: int = 5
    reset_timeout: float = 60.0  # seconds before half-open probe
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    # Internal state (not constructor args)
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False, repr=False)
    _failure_count: int = field(default=0, init=False, repr=False)
    _reset_at: float = field(default=0.0, init=False, repr=False)
    _reset_time: datetime | None = field(default=None, init=False, repr=False)
    _probe_in_flight: bool = field(default=False, init=False, repr=False)
    _total_trips: int = field(default=0, init=False, repr=False)

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self.clock() >= self._reset_at:
            self._state = CircuitState.HALF_OPEN
            self._probe_in_flight = False
            logger.info("Circuit breaker entering HALF_OPEN, allowing probe request")
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def reset_time(self) -> datetime | None:
        """Wall-clock time at which an open circuit admits a probe."""
        return self._reset_time if self._state != CircuitState.CLOSED else None

    def allow_request(self) -> bool:
        state = self.state  # triggers timeout check
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN and not self._probe_in_flight:
            self._probe_in_flight = True
            return True
        return False

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("Circuit breaker CLOSED, API recovered")
        self._failure_count = 0
        self._state = CircuitState.CLOSED
        self._probe_in_flight = False

    def release_probe(self) -> None:
        """Give back a half-open probe slot whose call ended without an outcome.

        A cancelled probe says nothing about the API, so the next caller
        gets to probe instead.
        """
        if self._state == CircuitState.HALF_OPEN and self._probe_in_flight:
            logger.info("Circuit breaker probe abandoned, next request will probe")
            self._probe_in_flight = False

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN:
            logger.warning("Circuit breaker probe failed, re-opening")
            self._trip()
        elif self._failure_count >= self.failure_threshold:
            self._trip()

    def _trip(self) -> None:
        if self._state != CircuitState.OPEN:
            self._total_trips += 1
            logger.warning(
                f"Circuit breaker OPEN: {self._failure_count} consecutive failures "
                f"(trip #{self._total_trips}), will probe again in {self.reset_timeout}s"
            )
        self._state = CircuitState.OPEN
        self._probe_in_flight = False
        self._reset_at = self.clock() + self.reset_timeout
        self._reset_time = datetime.now(UTC) + timedelta(seconds=self.reset_timeout)

    def stats(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self._failure_count,
            "total_trips": self._total_trips,
            "reset_time": self.reset_time.isoformat() if self.reset_time else None,
        }


@dataclass
class RateLimitInfo:
    """Rate-limit state reported by the server on the most recent response."""

    limit: int | None = None
    remaining: int | None = None
    reset_time: datetime | None = None
    is_throttled: bool = False

    def update_from_headers(self, headers: Mapping[str, str], now: datetime | None = None) -> None:
        """Refresh from X-RateLimit-* headers; absent headers leave fields untouched.

        X-RateLimit-Reset is either seconds from now or an absolute epoch timestamp.
        """
        now = now or datetime.now(UTC)

        limit = _header_int(headers, "X-RateLimit-Limit")
        if limit is not None:
            self.limit = limit

        remaining = _header_int(headers, "X-RateLimit-Remaining")
        if remaining is not None:
            self.remaining = remaining

        reset = _header_int(headers, "X-RateLimit-Reset")
        if reset is not None:
            if reset >= _EPOCH_THRESHOLD:
                self.reset_time = datetime.fromtimestamp(reset, UTC)
            else:
                self.reset_time = now + timedelta(seconds=reset)

        self.is_throttled = self.must_wait(now)

    def must_wait(self, now: datetime | None = None) -> bool:
        """True when the quota is spent and the window has not reset yet."""
        now = now or datetime.now(UTC)
        return self.remaining == 0 and self.reset_time is not None and now < self.reset_time

    def seconds_until_reset(self, now: datetime | None = None) -> float:
        if self.reset_time is None:
            return 0.0
        now = now or datetime.now(UTC)
        return max(0.0, (self.reset_time - now).total_seconds())

    def to_dict(self) -> dict[str, Any]:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_time": self.reset_time.isoformat() if self.reset_time else None,
            "is_throttled": self.is_throttled,
        }


def _header_int(headers: Mapping[str, str], name: str) -> int | None:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        logger.debug(f"Ignoring unparseable {name} header: {raw!r}")
        return None


def backoff_delay(
    retry: int,
    base: float,
    jitter: Callable[[float, float], float] = random.uniform,
) -> float:
    """Delay before retry number ``retry`` (0-based), in the units of ``base``.

    ``base * 2**min(retry, 6)`` scaled by a uniform factor in [0.5, 1.0].
    """
    return base * (2 ** min(retry, MAX_BACKOFF_EXPONENT)) * jitter(0.5, 1.0)


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header (delta seconds or HTTP date) into seconds."""
    if value is None:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        logger.debug(f"Ignoring unparseable Retry-After header: {value!r}")
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)
    return max(0.0, (when - now).total_seconds())
