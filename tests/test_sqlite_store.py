"""
Tests for the SQLite entity store.

Uses real SQLite (in-memory) for accurate testing.
"""

from datetime import UTC, date, datetime

import pytest

from lubelogger_sync.config import CacheConfiguration
from lubelogger_sync.exceptions import EntityNotFoundError, StoreError
from lubelogger_sync.models import GasRecord, SyncStatus, Vehicle
from lubelogger_sync.store import SQLiteEntityStore, SQLiteStoreConfig, seed_cache_configurations


@pytest.fixture
async def sqlite_store():
    """Fixture providing an initialized in-memory SQLite store."""
    store = await SQLiteEntityStore.create(SQLiteStoreConfig(db_path=":memory:"))
    yield store
    await store.close()


class TestSQLiteEntities:
    """Entity CRUD."""

    @pytest.mark.asyncio
    async def test_add_and_find(self, sqlite_store):
        record = GasRecord(
            id=5,
            vehicle_id=2,
            date=date(2024, 4, 1),
            odometer=30500,
            fuel_consumed=9.8,
            sync_status=SyncStatus.PENDING_UPLOAD,
            is_dirty=True,
        )
        await sqlite_store.add(record)

        found = await sqlite_store.find(GasRecord, 5)

        assert found == record

    @pytest.mark.asyncio
    async def test_find_missing_returns_none(self, sqlite_store):
        assert await sqlite_store.find(Vehicle, 404) is None

    @pytest.mark.asyncio
    async def test_duplicate_add_fails(self, sqlite_store):
        await sqlite_store.add(Vehicle(id=1))
        with pytest.raises(StoreError):
            await sqlite_store.add(Vehicle(id=1))

    @pytest.mark.asyncio
    async def test_types_are_separate_keyspaces(self, sqlite_store):
        await sqlite_store.add(Vehicle(id=1, name="Car"))
        await sqlite_store.add(GasRecord(id=1, vehicle_id=1))

        assert (await sqlite_store.find(Vehicle, 1)).name == "Car"
        assert (await sqlite_store.find(GasRecord, 1)).vehicle_id == 1

    @pytest.mark.asyncio
    async def test_field_level_update(self, sqlite_store):
        await sqlite_store.add(Vehicle(id=1, name="Stored", notes="keep"))

        await sqlite_store.update(Vehicle(id=1, name="Changed", notes="drop"), ["name"])

        stored = await sqlite_store.find(Vehicle, 1)
        assert stored.name == "Changed"
        assert stored.notes == "keep"

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, sqlite_store):
        with pytest.raises(EntityNotFoundError):
            await sqlite_store.update(Vehicle(id=9))

    @pytest.mark.asyncio
    async def test_remove(self, sqlite_store):
        await sqlite_store.add(Vehicle(id=1))

        assert await sqlite_store.remove(Vehicle, 1) is True
        assert await sqlite_store.remove(Vehicle, 1) is False

    @pytest.mark.asyncio
    async def test_query_keeps_insertion_order_and_filters(self, sqlite_store):
        for entity_id in (3, 1, 2):
            await sqlite_store.add(
                Vehicle(
                    id=entity_id,
                    sync_status=SyncStatus.SYNCED if entity_id == 1 else SyncStatus.PENDING_UPDATE,
                )
            )

        everything = await sqlite_store.query(Vehicle)
        pending = await sqlite_store.query(
            Vehicle, lambda v: v.sync_status != SyncStatus.SYNCED
        )

        assert [v.id for v in everything] == [3, 1, 2]
        assert [v.id for v in pending] == [3, 2]
        assert await sqlite_store.count(Vehicle) == 3

    @pytest.mark.asyncio
    async def test_rekey_moves_entity(self, sqlite_store):
        vehicle = Vehicle(id=-1, name="Offline")
        await sqlite_store.add(vehicle)

        await sqlite_store.rekey(vehicle, 77)

        assert await sqlite_store.find(Vehicle, -1) is None
        assert (await sqlite_store.find(Vehicle, 77)).name == "Offline"

    @pytest.mark.asyncio
    async def test_next_local_id(self, sqlite_store):
        await sqlite_store.add(Vehicle(id=10))
        await sqlite_store.add(Vehicle(id=-2))

        assert await sqlite_store.next_local_id(Vehicle) == -3

    @pytest.mark.asyncio
    async def test_timestamps_survive_storage(self, sqlite_store):
        synced_at = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        await sqlite_store.add(Vehicle(id=1, last_sync_timestamp=synced_at))

        assert (await sqlite_store.find(Vehicle, 1)).last_sync_timestamp == synced_at


class TestSQLiteConfigurations:
    """Cache configuration rows."""

    @pytest.mark.asyncio
    async def test_save_and_list(self, sqlite_store):
        await sqlite_store.save_cache_configuration(
            CacheConfiguration("TaxRecord", expiration_minutes=1440, sync_priority=4)
        )
        await sqlite_store.save_cache_configuration(
            CacheConfiguration("Vehicle", expiration_minutes=1440, is_critical=True, sync_priority=1)
        )

        rows = await sqlite_store.list_cache_configurations()

        assert [r.entity_type_name for r in rows] == ["Vehicle", "TaxRecord"]
        assert rows[0].is_critical is True

    @pytest.mark.asyncio
    async def test_save_replaces(self, sqlite_store):
        await sqlite_store.save_cache_configuration(CacheConfiguration("Vehicle", 10))
        await sqlite_store.save_cache_configuration(CacheConfiguration("Vehicle", 20))

        assert (await sqlite_store.get_cache_configuration("Vehicle")).expiration_minutes == 20
        assert await sqlite_store.get_cache_configuration("Boat") is None

    @pytest.mark.asyncio
    async def test_seed_inserts_missing_only(self, sqlite_store):
        rows = [CacheConfiguration("Vehicle", 10), CacheConfiguration("Reminder", 20)]

        assert await seed_cache_configurations(sqlite_store, rows) == 2
        assert await seed_cache_configurations(sqlite_store, rows) == 0


class TestSQLiteFile:
    @pytest.mark.asyncio
    async def test_data_persists_across_connections(self, tmp_path):
        config = SQLiteStoreConfig(db_path=tmp_path / "nested" / "cache.db")

        store = await SQLiteEntityStore.create(config)
        await store.add(Vehicle(id=1, name="Durable"))
        await store.close()

        reopened = await SQLiteEntityStore.create(config)
        assert (await reopened.find(Vehicle, 1)).name == "Durable"
        await reopened.close()

    @pytest.mark.asyncio
    async def test_use_before_initialize_fails(self):
        store = SQLiteEntityStore(SQLiteStoreConfig())
        with pytest.raises(StoreError):
            await store.add(Vehicle(id=1))
