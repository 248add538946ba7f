"""
Schema Registry for storemodel.

The SchemaRegistry collects every compiled RecordTypeSchema in the process.
It provides:
- Append-only registration, keyed by store name
- Lookup by store name
- The aggregate storage version used to open the database
- Schema fingerprinting for log correlation

Invariants:
    - Registration is append-only; entries are never replaced or removed
    - store_name is unique across the registry
    - storage_version never decreases

How to change safely:
    - Register all record types before the first storage operation
    - Bump a record type's version whenever its key or index layout changes

Example:
    >>> registry = SchemaRegistry()
    >>> registry.register(compile_schema("users", (field("id", primary_key=True),)))
    >>> registry.storage_version
    1
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import Dict, Iterator, Optional

from ..errors import SchemaError
from .types import RecordTypeSchema

logger = logging.getLogger(__name__)

# Global registry instance
_global_registry: Optional[SchemaRegistry] = None
_registry_lock = threading.Lock()


class SchemaRegistry:
    """Process-wide collection of record type schemas.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Reads are lock-free

    Example:
        >>> registry = SchemaRegistry()
        >>> registry.register(users_schema)
        >>> registry.register(tasks_schema)
        >>> registry.get("users")
        RecordTypeSchema(store_name='users', ...)
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._schemas: Dict[str, RecordTypeSchema] = {}
        self._lock = threading.Lock()

    def register(self, schema: RecordTypeSchema) -> None:
        """Register a compiled schema.

        Args:
            schema: The schema to register

        Raises:
            SchemaError: If store_name is already registered
        """
        with self._lock:
            if schema.store_name in self._schemas:
                raise SchemaError(
                    f"Store name '{schema.store_name}' already registered",
                    store_name=schema.store_name,
                )
            self._schemas[schema.store_name] = schema
            logger.debug(
                f"Registered store: {schema.store_name} "
                f"(storage_version={self.storage_version})"
            )

    def get(self, store_name: str) -> Optional[RecordTypeSchema]:
        """Get a schema by store name, or None."""
        return self._schemas.get(store_name)

    def __contains__(self, store_name: object) -> bool:
        return store_name in self._schemas

    def __iter__(self) -> Iterator[RecordTypeSchema]:
        return iter(list(self._schemas.values()))

    def __len__(self) -> int:
        return len(self._schemas)

    @property
    def store_names(self) -> list[str]:
        return list(self._schemas)

    @property
    def storage_version(self) -> int:
        """Aggregate version: each schema contributes its version + 1.

        Computed on demand from the set of registered schemas, so the
        result does not depend on registration order.
        """
        return sum(schema.version + 1 for schema in self._schemas.values())

    @property
    def fingerprint(self) -> str:
        """SHA-256 of the canonical registry contents, 'sha256:<hex>'."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return f"sha256:{hashlib.sha256(canonical.encode('utf-8')).hexdigest()}"

    def to_dict(self) -> dict:
        """Convert registry to dictionary representation, sorted by store name."""
        return {
            "storage_version": self.storage_version,
            "stores": [self._schemas[name].to_dict() for name in sorted(self._schemas)],
        }


def get_registry() -> SchemaRegistry:
    """Get the global schema registry.

    Creates a new registry if none exists.
    """
    global _global_registry
    with _registry_lock:
        if _global_registry is None:
            _global_registry = SchemaRegistry()
        return _global_registry


def reset_registry() -> None:
    """Reset the global registry (for testing only).

    Warning: This is intended for test cleanup only.
    Never use in production code.
    """
    global _global_registry
    with _registry_lock:
        _global_registry = None
