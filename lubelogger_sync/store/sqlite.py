"""
SQLite entity store.

Each entity is stored as one JSON document keyed by (entity_type, id),
which keeps the schema stable as record kinds gain fields. Insertion
order is the rowid order, so pending queries replay in the order edits
were made.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiosqlite

from ..config import CacheConfiguration
from ..exceptions import EntityNotFoundError, StoreError
from ..models import CachedEntity
from .base import E, EntityStore, Predicate

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS entities (
        entity_type TEXT NOT NULL,
        id INTEGER NOT NULL,
        data TEXT NOT NULL,
        PRIMARY KEY (entity_type, id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cache_configurations (
        entity_type_name TEXT NOT NULL PRIMARY KEY,
        expiration_minutes INTEGER NOT NULL,
        is_critical INTEGER NOT NULL,
        sync_priority INTEGER NOT NULL
    )
    """,
)


@dataclass
class SQLiteStoreConfig:
    """Configuration for the SQLite store."""

    db_path: str | Path = ":memory:"

    @classmethod
    def from_env(cls) -> SQLiteStoreConfig:
        """Create config from environment variables."""
        return cls(db_path=os.environ.get("LUBELOGGER_SQLITE_PATH", ":memory:"))


class SQLiteEntityStore(EntityStore):
    """Durable store on aiosqlite."""

    def __init__(self, config: SQLiteStoreConfig):
        self.config = config
        self.conn: aiosqlite.Connection | None = None
        self._initialized = False

    @classmethod
    async def create(cls, config: SQLiteStoreConfig | None = None) -> SQLiteEntityStore:
        """Create and initialize a SQLite store."""
        store = cls(config or SQLiteStoreConfig.from_env())
        await store.initialize()
        return store

    async def initialize(self) -> None:
        """Open the connection and create the schema."""
        if self._initialized:
            return

        db_path = str(self.config.db_path)
        try:
            if db_path != ":memory:":
                Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            self.conn = await aiosqlite.connect(db_path)
            for statement in _SCHEMA:
                await self.conn.execute(statement)
            await self.conn.commit()
        except (aiosqlite.Error, OSError) as e:
            raise StoreError("initialize", cause=e) from e

        self._initialized = True
        logger.info(f"SQLite entity store ready at {db_path}")

    async def close(self) -> None:
        if self.conn:
            await self.conn.close()
            self.conn = None
        self._initialized = False

    def _connection(self) -> aiosqlite.Connection:
        if self.conn is None:
            raise StoreError("connect", cause=RuntimeError("store is not initialized"))
        return self.conn

    async def _fetch_row(self, entity_type: str, entity_id: int) -> dict[str, Any] | None:
        cursor = await self._connection().execute(
            "SELECT data FROM entities WHERE entity_type = ? AND id = ?",
            (entity_type, entity_id),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return json.loads(row[0]) if row else None

    # =========================================================================
    # Entities
    # =========================================================================

    async def find(self, entity_type: type[E], entity_id: int) -> E | None:
        try:
            data = await self._fetch_row(entity_type.ENTITY_TYPE, entity_id)
        except aiosqlite.Error as e:
            raise StoreError("find", entity_type.ENTITY_TYPE, e) from e
        return entity_type.from_dict(data) if data is not None else None

    async def add(self, entity: CachedEntity) -> None:
        conn = self._connection()
        try:
            await conn.execute(
                "INSERT INTO entities (entity_type, id, data) VALUES (?, ?, ?)",
                (entity.ENTITY_TYPE, entity.id, json.dumps(entity.to_dict())),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise StoreError("add", entity.ENTITY_TYPE, e) from e

    async def update(self, entity: CachedEntity, fields: Iterable[str] | None = None) -> None:
        conn = self._connection()
        try:
            current = await self._fetch_row(entity.ENTITY_TYPE, entity.id)
            if current is None:
                raise EntityNotFoundError(entity.ENTITY_TYPE, entity.id)
            values = entity.to_dict()
            if fields is None:
                current = values
            else:
                current.update({name: values[name] for name in fields})
            await conn.execute(
                "UPDATE entities SET data = ? WHERE entity_type = ? AND id = ?",
                (json.dumps(current), entity.ENTITY_TYPE, entity.id),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise StoreError("update", entity.ENTITY_TYPE, e) from e

    async def remove(self, entity_type: type[CachedEntity], entity_id: int) -> bool:
        conn = self._connection()
        try:
            cursor = await conn.execute(
                "DELETE FROM entities WHERE entity_type = ? AND id = ?",
                (entity_type.ENTITY_TYPE, entity_id),
            )
            await conn.commit()
            return cursor.rowcount > 0
        except aiosqlite.Error as e:
            raise StoreError("remove", entity_type.ENTITY_TYPE, e) from e

    async def query(self, entity_type: type[E], predicate: Predicate | None = None) -> list[E]:
        try:
            cursor = await self._connection().execute(
                "SELECT data FROM entities WHERE entity_type = ? ORDER BY rowid",
                (entity_type.ENTITY_TYPE,),
            )
            rows = await cursor.fetchall()
            await cursor.close()
        except aiosqlite.Error as e:
            raise StoreError("query", entity_type.ENTITY_TYPE, e) from e

        entities = [entity_type.from_dict(json.loads(row[0])) for row in rows]
        if predicate is None:
            return entities
        return [entity for entity in entities if predicate(entity)]

    async def count(self, entity_type: type[CachedEntity]) -> int:
        cursor = await self._connection().execute(
            "SELECT COUNT(*) FROM entities WHERE entity_type = ?",
            (entity_type.ENTITY_TYPE,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return int(row[0]) if row else 0

    # =========================================================================
    # Cache configuration
    # =========================================================================

    async def get_cache_configuration(self, entity_type_name: str) -> CacheConfiguration | None:
        cursor = await self._connection().execute(
            "SELECT entity_type_name, expiration_minutes, is_critical, sync_priority "
            "FROM cache_configurations WHERE entity_type_name = ?",
            (entity_type_name,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return self._row_to_configuration(row) if row else None

    async def list_cache_configurations(self) -> list[CacheConfiguration]:
        cursor = await self._connection().execute(
            "SELECT entity_type_name, expiration_minutes, is_critical, sync_priority "
            "FROM cache_configurations ORDER BY sync_priority, entity_type_name"
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [self._row_to_configuration(row) for row in rows]

    async def save_cache_configuration(self, configuration: CacheConfiguration) -> None:
        conn = self._connection()
        await conn.execute(
            """
            INSERT OR REPLACE INTO cache_configurations
                (entity_type_name, expiration_minutes, is_critical, sync_priority)
            VALUES (?, ?, ?, ?)
            """,
            (
                configuration.entity_type_name,
                configuration.expiration_minutes,
                int(configuration.is_critical),
                configuration.sync_priority,
            ),
        )
        await conn.commit()

    @staticmethod
    def _row_to_configuration(row: Any) -> CacheConfiguration:
        return CacheConfiguration(
            entity_type_name=row[0],
            expiration_minutes=int(row[1]),
            is_critical=bool(row[2]),
            sync_priority=int(row[3]),
        )
