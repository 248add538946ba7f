"""
Shared storage handle and migration for storemodel.

A Database ties together the process configuration, the schema registry
and a storage engine. Every StoreModel asks it for the handle before each
operation; the handle is opened lazily and reused while its version
matches the registry's storage version.

Open sequence:
    1. validate_schema_only set -> StorageOpenError, storage untouched
    2. debug_reset set -> destroy the database
    3. open at registry.storage_version
    4. if that exceeds the stored version, migrate: for every registered
       schema drop its table if present, recreate it with the compiled
       primary key, recreate every index in indexed_fields

Invariants:
    - Migration is destructive; no rows survive a version bump
    - At most one open is in flight per Database
    - Registration happens before the first open (caller obligation)
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Optional

from .config import StoreConfig, get_config
from .engine import (
    DatabaseHandle,
    EngineError,
    SqliteEngine,
    StorageEngine,
    UpgradeTransaction,
)
from .errors import StorageOpenError
from .schema import SchemaRegistry, get_registry

logger = logging.getLogger(__name__)

_global_database: Optional[Database] = None
_database_lock = threading.Lock()


class Database:
    """Lazily opened, shared storage handle for all registered record types.

    Attributes:
        config: Active configuration
        registry: Schemas to migrate on open
        engine: Storage engine the handle comes from

    Example:
        >>> database = Database(StoreConfig(data_dir="/tmp/data"))
        >>> users = StoreModel("users", [field("id", primary_key=True)], database=database)
        >>> await users.insert({"id": "a"})
        >>> await database.close()
    """

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        registry: Optional[SchemaRegistry] = None,
        engine: Optional[StorageEngine] = None,
    ) -> None:
        self.config = config or get_config()
        self.registry = registry if registry is not None else SchemaRegistry()
        self.engine = engine or SqliteEngine(
            self.config.data_dir,
            wal_mode=self.config.wal_mode,
            busy_timeout_ms=self.config.busy_timeout_ms,
        )
        self._handle: Optional[DatabaseHandle] = None
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self.config.database_name

    async def get_handle(self) -> DatabaseHandle:
        """Return the open handle, opening or reopening it if needed.

        Raises:
            StorageOpenError: If storage access is disabled or the engine
                refuses to destroy, open or migrate
        """
        if self.config.validate_schema_only:
            raise StorageOpenError(
                f"Storage access is disabled for database '{self.name}' "
                "(validate_schema_only is set)",
                database_name=self.name,
            )

        async with self._lock:
            version = self.registry.storage_version
            if self._handle is not None and self._handle.version == version:
                return self._handle

            if self._handle is not None:
                logger.info(
                    f"Storage version changed from {self._handle.version} to {version}, reopening"
                )
                await self._handle.close()
                self._handle = None

            self._handle = await self._open(version)
            return self._handle

    async def _open(self, version: int) -> DatabaseHandle:
        try:
            if self.config.debug_reset:
                logger.warning(f"Deleting existing database {self.name}")
                await self.engine.delete_database(self.name)

            handle = await self.engine.open_database(self.name, version, self._migrate)
        except EngineError as e:
            raise StorageOpenError(
                f"Unable to open database '{self.name}' at version {version}: {e}",
                database_name=self.name,
                version=version,
                cause=e,
            ) from e

        logger.info(
            f"Opened database {self.name}",
            extra={"database": self.name, "version": version, "stores": len(self.registry)},
        )
        return handle

    def _migrate(self, upgrade: UpgradeTransaction) -> None:
        """Recreate every registered table and its indexes."""
        logger.info(
            f"Migrating database {self.name} from version {upgrade.old_version} "
            f"to {upgrade.new_version} ({len(self.registry)} stores)"
        )
        existing = set(upgrade.table_names)
        for schema in self.registry:
            if schema.store_name in existing:
                # Recreate with the latest schema
                upgrade.drop_table(schema.store_name)
            table = upgrade.create_table(schema.store_name, schema.primary_key.key_path)
            for index_name in schema.indexed_fields:
                table.create_index(index_name, index_name)
            logger.debug(
                f"Recreated store {schema.store_name}",
                extra={"store": schema.store_name, "indexes": list(schema.indexed_fields)},
            )
        logger.info(
            f"Migration of {self.name} complete, fingerprint={self.registry.fingerprint}"
        )

    async def destroy(self) -> bool:
        """Close the handle and delete the database. All data is lost.

        Returns:
            True if the database existed
        """
        async with self._lock:
            if self._handle is not None:
                await self._handle.close()
                self._handle = None
            try:
                return await self.engine.delete_database(self.name)
            except EngineError as e:
                raise StorageOpenError(
                    f"Unable to delete database '{self.name}': {e}",
                    database_name=self.name,
                    cause=e,
                ) from e

    async def close(self) -> None:
        """Close the cached handle, if any."""
        async with self._lock:
            if self._handle is not None:
                await self._handle.close()
                self._handle = None


def get_database() -> Database:
    """Get the process-wide database.

    Created on first use from the process configuration and the global
    schema registry.
    """
    global _global_database
    with _database_lock:
        if _global_database is None:
            _global_database = Database(get_config(), get_registry())
        return _global_database


def reset_database() -> None:
    """Reset the process-wide database (for testing only)."""
    global _global_database
    with _database_lock:
        _global_database = None
