"""
Base contract and types for the storage engine abstraction.

This module defines the capabilities storemodel consumes from a
transactional, versioned key/value engine, along with key ranges,
transaction modes and engine errors.

Contract:
    - open_database(name, version, on_upgrade) opens a handle; when version
      exceeds the stored version, on_upgrade runs once, synchronously,
      before the open completes
    - delete_database(name) removes the database entirely
    - handle.transaction(tables, mode) scopes reads and writes
    - table.insert fails on an existing key; table.put overwrites
    - Structural changes (create/drop table, create index) are only
      available inside on_upgrade

Invariants:
    - A transaction ends exactly once, by commit or abort
    - An aborted transaction leaves no visible writes
    - Results of get_all are in key order

How to change safely:
    - Contract changes require updating all engine implementations
    - Add new methods with default implementations
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Sequence, Union

logger = logging.getLogger(__name__)


class EngineError(Exception):
    """Base exception for storage engine operations."""
    pass


class ConstraintError(EngineError):
    """A write violated a key constraint (e.g. insert of an existing key)."""
    pass


class VersionError(EngineError):
    """Requested version is invalid or lower than the stored version."""
    pass


class DataError(EngineError):
    """A key is missing from a value or is not a valid key."""
    pass


class NotFoundError(EngineError):
    """Table or index does not exist."""
    pass


class ReadOnlyError(EngineError):
    """Write attempted inside a read-only transaction."""
    pass


class TransactionInactiveError(EngineError):
    """Transaction was already committed or aborted."""
    pass


class TransactionMode(Enum):
    """Transaction access modes."""

    READ_ONLY = "readonly"
    READ_WRITE = "readwrite"


class TransactionState(Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    ABORTED = "aborted"


KeyPath = Union[str, Sequence[str]]


@dataclass(frozen=True)
class KeyRange:
    """A range of keys, bounded on one or both ends.

    ``None`` means unbounded on that end. Composite keys use tuple bounds.

    Example:
        >>> KeyRange.only("a")
        >>> KeyRange.bound(1, 10, upper_open=True)
        >>> KeyRange.lower_bound(("team", 5))
    """

    lower: Any = None
    upper: Any = None
    lower_open: bool = False
    upper_open: bool = False

    def __post_init__(self) -> None:
        # Composite bounds may be given as lists
        if isinstance(self.lower, list):
            object.__setattr__(self, "lower", tuple(self.lower))
        if isinstance(self.upper, list):
            object.__setattr__(self, "upper", tuple(self.upper))
        if self.lower is None and self.upper is None:
            raise DataError("KeyRange needs at least one bound")
        if self.lower is not None and self.upper is not None:
            if self.lower > self.upper:
                raise DataError(f"KeyRange lower {self.lower!r} is above upper {self.upper!r}")
            if self.lower == self.upper and (self.lower_open or self.upper_open):
                raise DataError("KeyRange with equal bounds cannot be open")

    @classmethod
    def only(cls, value: Any) -> KeyRange:
        return cls(lower=value, upper=value)

    @classmethod
    def lower_bound(cls, value: Any, open: bool = False) -> KeyRange:
        return cls(lower=value, lower_open=open)

    @classmethod
    def upper_bound(cls, value: Any, open: bool = False) -> KeyRange:
        return cls(upper=value, upper_open=open)

    @classmethod
    def bound(
        cls,
        lower: Any,
        upper: Any,
        lower_open: bool = False,
        upper_open: bool = False,
    ) -> KeyRange:
        return cls(lower=lower, upper=upper, lower_open=lower_open, upper_open=upper_open)


Query = Union[KeyRange, Any]


class Index(ABC):
    """Read access to records through one key path."""

    @abstractmethod
    async def get(self, query: Query) -> Optional[Any]:
        """Return the first value matching query, or None."""
        ...

    @abstractmethod
    async def get_all(self, query: Optional[Query] = None, limit: Optional[int] = None) -> list[Any]:
        """Return values matching query in key order, at most limit of them."""
        ...


class Table(Index):
    """A keyed collection of values; reads go through the primary key."""

    @abstractmethod
    def index(self, name: str) -> Index:
        """Get a secondary index by name.

        Raises:
            NotFoundError: If the index does not exist
        """
        ...

    @abstractmethod
    async def insert(self, value: dict[str, Any]) -> Any:
        """Add a value; returns its key.

        Raises:
            ConstraintError: If the key already exists
        """
        ...

    @abstractmethod
    async def put(self, value: dict[str, Any]) -> Any:
        """Add or replace a value; returns its key."""
        ...

    @abstractmethod
    async def delete(self, query: Query) -> None:
        """Remove values matching query. Missing keys are not an error."""
        ...


class Transaction(ABC):
    """A scoped unit of reads and writes over a set of tables.

    Usable as an async context manager: leaving the block with an
    exception aborts, leaving it normally commits if still active.
    """

    def __init__(self, table_names: Sequence[str], mode: TransactionMode) -> None:
        self.table_names = tuple(table_names)
        self.mode = mode
        self.state = TransactionState.ACTIVE

    @property
    def active(self) -> bool:
        return self.state is TransactionState.ACTIVE

    @abstractmethod
    def table(self, name: str) -> Table:
        """Get a table within this transaction's scope."""
        ...

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def abort(self) -> None:
        ...

    async def __aenter__(self) -> Transaction:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if not self.active:
            return
        if exc_type is not None:
            await self.abort()
        else:
            await self.commit()


class UpgradeTable(ABC):
    """Table handle available during an upgrade."""

    @abstractmethod
    def create_index(self, name: str, key_path: str) -> None:
        ...


class UpgradeTransaction(ABC):
    """Structural operations available inside the upgrade callback."""

    def __init__(self, old_version: int, new_version: int) -> None:
        self.old_version = old_version
        self.new_version = new_version

    @property
    @abstractmethod
    def table_names(self) -> list[str]:
        ...

    @abstractmethod
    def create_table(self, name: str, key_path: KeyPath) -> UpgradeTable:
        ...

    @abstractmethod
    def drop_table(self, name: str) -> None:
        ...


UpgradeCallback = Callable[[UpgradeTransaction], None]


class DatabaseHandle(ABC):
    """An open, versioned connection to one logical database."""

    def __init__(self, name: str, version: int) -> None:
        self.name = name
        self.version = version

    @abstractmethod
    def transaction(
        self,
        table_names: Union[str, Sequence[str]],
        mode: TransactionMode = TransactionMode.READ_ONLY,
    ) -> Transaction:
        """Begin a transaction over the given tables.

        Raises:
            NotFoundError: If a table does not exist
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class StorageEngine(ABC):
    """Factory for database handles."""

    @abstractmethod
    async def open_database(
        self,
        name: str,
        version: int,
        on_upgrade: Optional[UpgradeCallback] = None,
    ) -> DatabaseHandle:
        """Open name at version, upgrading if version exceeds the stored one.

        Raises:
            VersionError: If version is < 1 or below the stored version
            EngineError: If the database cannot be opened
        """
        ...

    @abstractmethod
    async def delete_database(self, name: str) -> bool:
        """Delete a database; returns False if it did not exist."""
        ...
