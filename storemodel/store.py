"""
Typed stores over the shared storage handle.

StoreModel is the entry point for application code: declaring one
compiles the record type's schema and registers it; its methods run
single-record and bulk reads and single-record writes, each inside its
own transaction.

Operation lifecycle:
    Idle -> HandleOpening -> TransactionOpen -> OperationRequested
         -> OperationSucceeded -> TransactionCommitted  (returns)
         -> OperationFailed    -> TransactionAborted    (raises)

Invariants:
    - Every write encodes through the codec; every read decodes through it
    - insert never overwrites; update always does
    - delete of a missing key is not an error
    - Engine failures surface as OperationError; nothing is retried

Example:
    >>> from storemodel import StoreModel, field, DateTransformer
    >>> tasks = StoreModel(
    ...     "tasks",
    ...     [
    ...         field("id", primary_key=True),
    ...         field("status"),
    ...         field("createdAt", transformer=DateTransformer()),
    ...     ],
    ... )
    >>> await tasks.insert({"id": "t1", "status": "todo", "createdAt": datetime.now()})
    >>> await tasks.select_many(query="todo", index="status", limit=10)
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Type, Union

from pydantic import BaseModel

from .database import Database, get_database
from .engine import DataError, EngineError, Index, KeyRange, NotFoundError, TransactionMode
from .errors import OperationError
from .schema import RecordTypeSchema, ValueCodec, compile_schema
from .schema.types import FieldDeclarations

logger = logging.getLogger(__name__)

Record = Union[Mapping[str, Any], BaseModel]
Query = Union[KeyRange, Any]


class StoreModel:
    """One record type, mapped to one table.

    Attributes:
        schema: Compiled layout for this record type
        codec: Transformer application for reads and writes
        record_type: Optional pydantic model records are validated into
        database: Shared database this store reads from and writes to
    """

    def __init__(
        self,
        store_name: str,
        fields: FieldDeclarations,
        *,
        version: int = 0,
        record_type: Optional[Type[BaseModel]] = None,
        database: Optional[Database] = None,
    ) -> None:
        """Compile and register a record type.

        Args:
            store_name: Table name, unique within the database
            fields: Ordered field declarations
            version: Bump when the key or index layout changes
            record_type: Pydantic model to return from reads
            database: Database to register with (process-wide if not provided)

        Raises:
            SchemaError: If the declarations are invalid or store_name is taken
        """
        self.schema: RecordTypeSchema = compile_schema(store_name, fields, version=version)
        self.codec = ValueCodec(self.schema)
        self.record_type = record_type
        self.database = database or get_database()
        self.database.registry.register(self.schema)
        logger.debug(
            f"{store_name} init complete. primary_key: {self.schema.primary_key.key_path}, "
            f"indexes: {list(self.schema.indexed_fields)}"
        )

    @property
    def store_name(self) -> str:
        return self.schema.store_name

    def _error(self, operation: str, cause: Exception) -> OperationError:
        logger.debug(
            f"{operation} on {self.store_name} failed: {cause}",
            extra={"store": self.store_name, "operation": operation},
        )
        return OperationError(
            f"{operation} on store '{self.store_name}' failed: {cause}",
            store_name=self.store_name,
            operation=operation,
            cause=cause,
        )

    def _encode(self, record: Record) -> dict[str, Any]:
        if isinstance(record, BaseModel):
            record = record.model_dump()
        return self.codec.to_storage(record)

    def _decode(self, value: Mapping[str, Any]) -> Any:
        decoded = self.codec.from_storage(value)
        if self.record_type is not None:
            return self.record_type.model_validate(decoded)
        return decoded

    def _check_index(self, operation: str, index: Optional[str]) -> None:
        if index is not None and index not in self.schema.indexed_fields:
            raise self._error(
                operation, NotFoundError(f"'{index}' is not an indexed field of {self.store_name}")
            )

    async def select(self, query: Query, index: Optional[str] = None) -> Optional[Any]:
        """Get at most one record.

        Args:
            query: Primary key value (tuple for composite keys), an index
                value when index is given, or a KeyRange
            index: Name of an indexed field to look up by

        Returns:
            The decoded record, or None if absent
        """
        self._check_index("select", index)
        handle = await self.database.get_handle()
        try:
            async with handle.transaction(self.store_name, TransactionMode.READ_ONLY) as tx:
                source: Index = tx.table(self.store_name)
                if index is not None:
                    source = source.index(index)
                value = await source.get(query)
                result = self._decode(value) if value is not None else None
                await tx.commit()
        except (EngineError, TypeError, ValueError) as e:
            raise self._error("select", e) from e
        return result

    async def select_many(
        self,
        query: Optional[Query] = None,
        limit: Optional[int] = None,
        index: Optional[str] = None,
    ) -> list[Any]:
        """Get records in key order.

        Args:
            query: Exact key or index value, or a KeyRange (all records if None)
            limit: Maximum number of records to return
            index: Name of an indexed field to query and order by

        Returns:
            Decoded records, empty if none match
        """
        self._check_index("select_many", index)
        handle = await self.database.get_handle()
        try:
            async with handle.transaction(self.store_name, TransactionMode.READ_ONLY) as tx:
                source: Index = tx.table(self.store_name)
                if index is not None:
                    source = source.index(index)
                values = await source.get_all(query, limit)
                result = [self._decode(v) for v in values]
                await tx.commit()
        except (EngineError, TypeError, ValueError) as e:
            raise self._error("select_many", e) from e
        return result

    async def insert(self, record: Record) -> None:
        """Add a record.

        Raises:
            OperationError: If a record with the same primary key exists
        """
        await self._write("insert", record)

    async def update(self, record: Record) -> None:
        """Create or fully replace the record at its primary key."""
        await self._write("update", record)

    async def _write(self, operation: str, record: Record) -> None:
        handle = await self.database.get_handle()
        try:
            value = self._encode(record)
            if self.schema.key_of(value) is None:
                raise DataError(
                    f"Record is missing primary key {self.schema.primary_key.key_path!r}"
                )
            async with handle.transaction(self.store_name, TransactionMode.READ_WRITE) as tx:
                table = tx.table(self.store_name)
                if operation == "insert":
                    await table.insert(value)
                else:
                    await table.put(value)
                await tx.commit()
        except (EngineError, TypeError, ValueError) as e:
            raise self._error(operation, e) from e

    async def delete(self, key: Query) -> None:
        """Remove the record at a primary key. Missing keys are ignored."""
        handle = await self.database.get_handle()
        try:
            async with handle.transaction(self.store_name, TransactionMode.READ_WRITE) as tx:
                await tx.table(self.store_name).delete(key)
                await tx.commit()
        except EngineError as e:
            raise self._error("delete", e) from e

    def __repr__(self) -> str:
        return f"StoreModel(store_name={self.store_name!r})"
