"""
Integration tests for Database open and migration.

Tests cover:
- Lazy open at the aggregate storage version
- Handle sharing and reopening after late registration
- Destructive migration on version bump
- debug_reset and validate_schema_only
- StorageOpenError surfacing
- Process-wide defaults
"""

import os
import tempfile

import pytest

from storemodel import (
    Database,
    StorageOpenError,
    StoreConfig,
    StoreModel,
    configure,
    field,
    get_database,
    get_registry,
    reset_config,
    reset_database,
)
from storemodel.engine import VersionError
from storemodel.schema import SchemaRegistry, reset_registry


def user_fields():
    return [field("id", primary_key=True), field("email")]


class TestDatabase:
    """Tests for Database."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    def make_database(self, data_dir, **overrides):
        config = StoreConfig(
            database_name="appdb", data_dir=data_dir, wal_mode=False, **overrides
        )
        return Database(config, SchemaRegistry())

    @pytest.mark.asyncio
    async def test_lazy_open(self, data_dir):
        """Nothing touches disk until the first operation."""
        database = self.make_database(data_dir)
        users = StoreModel("users", user_fields(), database=database)

        assert os.listdir(data_dir) == []

        await users.insert({"id": "u1", "email": "a@example.com"})

        assert os.listdir(data_dir) == ["appdb.db"]

    @pytest.mark.asyncio
    async def test_handle_shared_across_stores(self, data_dir):
        """All stores use one handle at the aggregate version."""
        database = self.make_database(data_dir)
        StoreModel("users", user_fields(), database=database)
        StoreModel("teams", [field("id", primary_key=True)], version=2, database=database)

        handle = await database.get_handle()

        assert handle.version == 4
        assert handle.table_names == ["teams", "users"]
        assert await database.get_handle() is handle

    @pytest.mark.asyncio
    async def test_late_registration_reopens(self, data_dir):
        """Registering after the first open triggers a new migration."""
        database = self.make_database(data_dir)
        users = StoreModel("users", user_fields(), database=database)
        await users.insert({"id": "u1"})
        first = await database.get_handle()

        teams = StoreModel("teams", [field("id", primary_key=True)], database=database)
        await teams.insert({"id": "t1"})

        handle = await database.get_handle()
        assert handle is not first
        assert handle.version == 2
        # Migration recreated every table
        assert await users.select("u1") is None
        assert await teams.select("t1") == {"id": "t1"}

    @pytest.mark.asyncio
    async def test_data_survives_reopen_at_same_version(self, data_dir):
        """Same schema, same version: no migration, data is kept."""
        first = self.make_database(data_dir)
        users = StoreModel("users", user_fields(), database=first)
        await users.insert({"id": "u1", "email": "a@example.com"})
        await first.close()

        second = self.make_database(data_dir)
        users = StoreModel("users", user_fields(), database=second)

        assert await users.select("u1") == {"id": "u1", "email": "a@example.com"}

    @pytest.mark.asyncio
    async def test_version_bump_is_destructive(self, data_dir):
        """A higher version drops and recreates all tables."""
        first = self.make_database(data_dir)
        users = StoreModel("users", user_fields(), database=first)
        await users.insert({"id": "u1", "email": "a@example.com"})
        await first.close()

        second = self.make_database(data_dir)
        users = StoreModel(
            "users",
            [field("id", primary_key=True), field("email"), field("name")],
            version=1,
            database=second,
        )

        assert await users.select_many() == []
        await users.insert({"id": "u2", "name": "Bo"})
        assert (await users.select("Bo", index="name"))["id"] == "u2"

    @pytest.mark.asyncio
    async def test_lower_version_raises_storage_open_error(self, data_dir):
        """The engine refusing to open surfaces as StorageOpenError."""
        first = self.make_database(data_dir)
        users = StoreModel("users", user_fields(), version=3, database=first)
        await users.insert({"id": "u1"})
        await first.close()

        second = self.make_database(data_dir)
        users = StoreModel("users", user_fields(), database=second)

        with pytest.raises(StorageOpenError) as exc:
            await users.select("u1")

        assert isinstance(exc.value.cause, VersionError)
        assert exc.value.database_name == "appdb"
        assert exc.value.version == 1
        assert exc.value.code == "STORAGE_OPEN_ERROR"

    @pytest.mark.asyncio
    async def test_no_stores_raises_storage_open_error(self, data_dir):
        """An empty registry cannot be opened."""
        with pytest.raises(StorageOpenError):
            await self.make_database(data_dir).get_handle()

    @pytest.mark.asyncio
    async def test_debug_reset_destroys_data(self, data_dir):
        """debug_reset starts every open from an empty database."""
        first = self.make_database(data_dir)
        users = StoreModel("users", user_fields(), database=first)
        await users.insert({"id": "u1"})
        await first.close()

        second = self.make_database(data_dir, debug_reset=True)
        users = StoreModel("users", user_fields(), database=second)

        assert await users.select("u1") is None
        await users.insert({"id": "u2"})
        assert await users.select("u2") == {"id": "u2"}

    @pytest.mark.asyncio
    async def test_validate_schema_only(self, data_dir):
        """Schemas compile but storage is never opened."""
        database = self.make_database(data_dir, validate_schema_only=True)
        users = StoreModel("users", user_fields(), database=database)

        assert database.registry.storage_version == 1
        with pytest.raises(StorageOpenError, match="validate_schema_only"):
            await users.insert({"id": "u1"})
        assert os.listdir(data_dir) == []

    @pytest.mark.asyncio
    async def test_destroy(self, data_dir):
        """destroy removes the database file."""
        database = self.make_database(data_dir)
        users = StoreModel("users", user_fields(), database=database)
        await users.insert({"id": "u1"})

        assert await database.destroy() is True
        assert os.listdir(data_dir) == []
        assert await users.select("u1") is None

    @pytest.mark.asyncio
    async def test_stores_with_overlapping_names_migrate(self, data_dir):
        """Store and field names that concatenate alike both get their indexes."""
        database = self.make_database(data_dir)
        first = StoreModel("a", [field("id", primary_key=True), field("b__c")], database=database)
        second = StoreModel("a__b", [field("id", primary_key=True), field("c")], database=database)

        await first.insert({"id": "1", "b__c": "x"})
        await second.insert({"id": "2", "c": "x"})

        assert (await first.select("x", index="b__c"))["id"] == "1"
        assert (await second.select("x", index="c"))["id"] == "2"


class TestGlobalDatabase:
    """Tests for the process-wide database."""

    @pytest.fixture(autouse=True)
    def isolated(self):
        reset_config()
        reset_registry()
        reset_database()
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir
        reset_config()
        reset_registry()
        reset_database()

    @pytest.mark.asyncio
    async def test_store_uses_process_defaults(self, isolated):
        """StoreModel without a database uses the global registry and config."""
        configure(database_name="globaldb", data_dir=isolated, wal_mode=False)

        users = StoreModel("users", user_fields())

        assert users.database is get_database()
        assert get_registry().get("users") is users.schema
        await users.insert({"id": "u1"})
        assert await users.select("u1") == {"id": "u1"}
        assert os.listdir(isolated) == ["globaldb.db"]

