"""Durable local store for cached entities."""

from .base import EntityStore, seed_cache_configurations
from .memory import InMemoryEntityStore
from .sqlite import SQLiteEntityStore, SQLiteStoreConfig

__all__ = [
    "EntityStore",
    "InMemoryEntityStore",
    "SQLiteEntityStore",
    "SQLiteStoreConfig",
    "seed_cache_configurations",
]
