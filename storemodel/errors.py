"""
Error types for storemodel.

This module defines all exception types raised to application code:
- StoreModelError: Base exception
- SchemaError: Invalid record type declaration or registration
- StorageOpenError: The storage engine refused to open or migrate
- OperationError: A read or write failed inside the storage engine

Invariants:
    - All errors inherit from StoreModelError
    - Errors wrapping an engine failure chain it and expose it as ``cause``
    - Nothing is retried; every error reaches the immediate caller
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class StoreModelError(Exception):
    """Base exception for all storemodel errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "STOREMODEL_ERROR"
        self.details = details or {}


class SchemaError(StoreModelError):
    """Record type declaration is invalid.

    Raised when:
    - A field name that is indexed contains characters outside [A-Za-z0-9_]
    - No field is marked as primary key
    - A field name is declared twice
    - A store name is already registered
    """

    def __init__(
        self,
        message: str,
        store_name: Optional[str] = None,
        field_name: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="SCHEMA_ERROR",
            details={"store_name": store_name, "field_name": field_name},
        )
        self.store_name = store_name
        self.field_name = field_name


class StorageOpenError(StoreModelError):
    """The storage engine could not be opened or migrated."""

    def __init__(
        self,
        message: str,
        database_name: Optional[str] = None,
        version: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            message,
            code="STORAGE_OPEN_ERROR",
            details={
                "database_name": database_name,
                "version": version,
                "cause": str(cause) if cause is not None else None,
            },
        )
        self.database_name = database_name
        self.version = version
        self.cause = cause


class OperationError(StoreModelError):
    """A read or write failed.

    Raised when:
    - Insert hits an existing primary key
    - The record is missing its primary key
    - The engine reports an I/O or constraint failure
    - A lookup names a field that is not indexed

    The transaction the operation ran in is aborted.
    """

    def __init__(
        self,
        message: str,
        store_name: Optional[str] = None,
        operation: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            message,
            code="OPERATION_ERROR",
            details={
                "store_name": store_name,
                "operation": operation,
                "cause": str(cause) if cause is not None else None,
            },
        )
        self.store_name = store_name
        self.operation = operation
        self.cause = cause
