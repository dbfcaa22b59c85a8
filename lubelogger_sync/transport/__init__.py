"""Resilient HTTP transport: retry, circuit breaking and rate-limit compliance."""

from .client import ApiResponse, HealthStatus, ResilientTransport
from .resilience import (
    CircuitBreaker,
    CircuitState,
    RateLimitInfo,
    backoff_delay,
    parse_retry_after,
)

__all__ = [
    "ApiResponse",
    "CircuitBreaker",
    "CircuitState",
    "HealthStatus",
    "RateLimitInfo",
    "ResilientTransport",
    "backoff_delay",
    "parse_retry_after",
]
