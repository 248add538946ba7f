"""
Core type definitions for the storemodel schema system.

This module turns a record type's field declarations into the physical
layout used by the storage engine:
- FieldSpec: One declared field and its flags
- ScalarKey / CompositeKey: Shape of the primary key
- RecordTypeSchema: Compiled, immutable layout for one store
- compile_schema: Declarations -> RecordTypeSchema

Invariants:
    - Indexed field names match [A-Za-z0-9_]+
    - Every schema has a primary key (one field, or an ordered tuple of >= 2)
    - indexed_fields order is declaration order, composite key parts last
    - Compilation is pure: same declarations, same schema

How to change safely:
    - Reordering fields changes index creation order
    - Changing the primary key or index set requires a version bump on the
      record type, which triggers a destructive migration

Example:
    >>> from storemodel.schema.types import compile_schema, field
    >>> schema = compile_schema(
    ...     "tasks",
    ...     (
    ...         field("id", primary_key=True),
    ...         field("title"),
    ...         field("notes", prevent_index=True),
    ...     ),
    ... )
    >>> schema.primary_key
    ScalarKey(name='id')
    >>> schema.indexed_fields
    ('title',)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from typing import Any, Mapping, Optional, Sequence, Union

from ..errors import SchemaError
from .transformers import FieldTransformer

logger = logging.getLogger(__name__)

VALID_FIELD_NAME = re.compile(r"[A-Za-z0-9_]+")


@dataclass(frozen=True)
class FieldSpec:
    """Declaration of a single field within a record type.

    Attributes:
        name: Field name as it appears in records
        primary_key: Whether the field is (part of) the primary key
        prevent_index: Skip the secondary index for this field
        transformer: Optional codec applied on write and read

    Invariants:
        - name may only contain [A-Za-z0-9_] unless prevent_index is set
    """

    name: str
    primary_key: bool = False
    prevent_index: bool = False
    transformer: Optional[FieldTransformer] = None


def field(
    name: str,
    *,
    primary_key: bool = False,
    prevent_index: bool = False,
    transformer: Optional[FieldTransformer] = None,
) -> FieldSpec:
    """Convenience function to create a FieldSpec.

    Example:
        >>> field("id", primary_key=True)
        >>> field("createdAt", transformer=DateTransformer())
    """
    return FieldSpec(
        name=name,
        primary_key=primary_key,
        prevent_index=prevent_index,
        transformer=transformer,
    )


@dataclass(frozen=True)
class ScalarKey:
    """Primary key made of one field."""

    name: str

    @property
    def fields(self) -> tuple[str, ...]:
        return (self.name,)

    @property
    def key_path(self) -> str:
        return self.name


@dataclass(frozen=True)
class CompositeKey:
    """Primary key made of two or more fields, compared as a tuple."""

    names: tuple[str, ...]

    @property
    def fields(self) -> tuple[str, ...]:
        return self.names

    @property
    def key_path(self) -> tuple[str, ...]:
        return self.names


PrimaryKey = Union[ScalarKey, CompositeKey]


@dataclass(frozen=True)
class RecordTypeSchema:
    """Compiled storage layout for one record type.

    Attributes:
        store_name: Table name, unique per registry
        primary_key: ScalarKey or CompositeKey
        indexed_fields: Fields that get a secondary index, in creation order
        transformed_fields: Fields carrying a transformer
        fields: The declarations this schema was compiled from
        version: Declared version increment of this record type
    """

    store_name: str
    primary_key: PrimaryKey
    indexed_fields: tuple[str, ...]
    transformed_fields: tuple[str, ...]
    fields: tuple[FieldSpec, ...] = dataclass_field(default_factory=tuple)
    version: int = 0

    @property
    def is_composite(self) -> bool:
        return isinstance(self.primary_key, CompositeKey)

    def get_field(self, name: str) -> Optional[FieldSpec]:
        """Get a field declaration by name."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def key_of(self, record: Mapping[str, Any]) -> Any:
        """Extract the primary key value from a record.

        Returns a scalar for ScalarKey, a tuple for CompositeKey, or None
        if any key part is missing.
        """
        parts = [record.get(name) for name in self.primary_key.fields]
        if any(p is None for p in parts):
            return None
        if self.is_composite:
            return tuple(parts)
        return parts[0]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for logging and fingerprints."""
        key_path = self.primary_key.key_path
        return {
            "store_name": self.store_name,
            "primary_key": list(key_path) if isinstance(key_path, tuple) else key_path,
            "indexes": list(self.indexed_fields),
            "transformed": list(self.transformed_fields),
            "version": self.version,
        }


FieldDeclarations = Union[
    Sequence[FieldSpec],
    Mapping[str, Optional[Mapping[str, Any]]],
]


def _normalize_fields(fields: FieldDeclarations) -> tuple[FieldSpec, ...]:
    """Accept either FieldSpecs or a ``name -> options`` mapping."""
    if isinstance(fields, Mapping):
        return tuple(field(name, **(options or {})) for name, options in fields.items())
    return tuple(fields)


class _KeyAccumulator:
    """Builds the primary key while walking declarations in order."""

    def __init__(self) -> None:
        self._names: list[str] = []

    def add(self, name: str) -> None:
        self._names.append(name)

    def build(self) -> Optional[PrimaryKey]:
        if not self._names:
            return None
        if len(self._names) == 1:
            return ScalarKey(self._names[0])
        return CompositeKey(tuple(self._names))


def compile_schema(
    store_name: str,
    fields: FieldDeclarations,
    version: int = 0,
) -> RecordTypeSchema:
    """Compile field declarations into a RecordTypeSchema.

    Args:
        store_name: Name of the table backing this record type
        fields: Ordered FieldSpecs, or a mapping of name -> field options
        version: Version increment contributed to the storage version

    Returns:
        Immutable RecordTypeSchema

    Raises:
        SchemaError: On an invalid field name, a duplicate field, or a
            missing primary key
    """
    if not store_name:
        raise SchemaError("Store name cannot be empty")
    if version < 0:
        raise SchemaError(
            f"Version of store '{store_name}' must be >= 0, got {version}",
            store_name=store_name,
        )

    specs = _normalize_fields(fields)
    key = _KeyAccumulator()
    indexes: list[str] = []
    transformed: list[str] = []
    seen: set[str] = set()

    for spec in specs:
        if spec.name in seen:
            raise SchemaError(
                f"Duplicate field name '{spec.name}' in store '{store_name}'",
                store_name=store_name,
                field_name=spec.name,
            )
        seen.add(spec.name)

        if not spec.prevent_index and not VALID_FIELD_NAME.fullmatch(spec.name):
            raise SchemaError(
                f"Invalid field name: {spec.name}. Names being indexed may only include "
                "alphanumeric characters (A-Z, a-z, 0-9) and underscores (_)",
                store_name=store_name,
                field_name=spec.name,
            )

        if spec.primary_key:
            key.add(spec.name)
        if spec.transformer is not None:
            transformed.append(spec.name)
        if not (spec.prevent_index or spec.primary_key):
            indexes.append(spec.name)

    primary_key = key.build()
    if primary_key is None:
        raise SchemaError(
            f"No primary key defined on store '{store_name}'",
            store_name=store_name,
        )

    if isinstance(primary_key, CompositeKey):
        # Single-field lookups on composite key parts
        indexes.extend(primary_key.names)

    schema = RecordTypeSchema(
        store_name=store_name,
        primary_key=primary_key,
        indexed_fields=tuple(indexes),
        transformed_fields=tuple(transformed),
        fields=specs,
        version=version,
    )
    logger.debug(
        f"Compiled store {store_name}: primary_key={primary_key.key_path}, "
        f"indexes={list(schema.indexed_fields)}"
    )
    return schema
