"""Cache freshness policy."""

from .policy import (
    DEFAULT_EXPIRATION_MINUTES,
    DEFAULT_SYNC_PRIORITY,
    CachePolicy,
    seed_default_configurations,
)

__all__ = [
    "DEFAULT_EXPIRATION_MINUTES",
    "DEFAULT_SYNC_PRIORITY",
    "CachePolicy",
    "seed_default_configurations",
]
