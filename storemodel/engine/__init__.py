"""
Storage engine abstraction for storemodel.

This module provides:
- The engine contract (StorageEngine, DatabaseHandle, Transaction, Table, Index)
- Key ranges and transaction modes
- Engine error types
- A SQLite implementation (SqliteEngine)
"""

from .base import (
    ConstraintError,
    DatabaseHandle,
    DataError,
    EngineError,
    Index,
    KeyRange,
    NotFoundError,
    ReadOnlyError,
    StorageEngine,
    Table,
    Transaction,
    TransactionInactiveError,
    TransactionMode,
    TransactionState,
    UpgradeCallback,
    UpgradeTable,
    UpgradeTransaction,
    VersionError,
)
from .sqlite import SqliteEngine

__all__ = [
    # Contract
    "StorageEngine",
    "DatabaseHandle",
    "Transaction",
    "TransactionMode",
    "TransactionState",
    "Table",
    "Index",
    "KeyRange",
    "UpgradeTransaction",
    "UpgradeTable",
    "UpgradeCallback",
    # Errors
    "EngineError",
    "ConstraintError",
    "VersionError",
    "DataError",
    "NotFoundError",
    "ReadOnlyError",
    "TransactionInactiveError",
    # Implementations
    "SqliteEngine",
]
