"""
Schema module for storemodel.

This module provides:
- Field declarations and schema compilation (FieldSpec, compile_schema)
- Field transformers (FieldTransformer, DateTransformer)
- The value codec applied on every read and write
- The schema registry and aggregate storage version

Invariants:
    - Compiled schemas are immutable
    - The registry is append-only
    - All record types must be registered before the first storage open
"""

from .codec import ValueCodec
from .registry import SchemaRegistry, get_registry, reset_registry
from .transformers import DateTransformer, FieldTransformer
from .types import (
    CompositeKey,
    FieldSpec,
    PrimaryKey,
    RecordTypeSchema,
    ScalarKey,
    compile_schema,
    field,
)

__all__ = [
    # Types
    "FieldSpec",
    "field",
    "ScalarKey",
    "CompositeKey",
    "PrimaryKey",
    "RecordTypeSchema",
    "compile_schema",
    # Transformers
    "FieldTransformer",
    "DateTransformer",
    "ValueCodec",
    # Registry
    "SchemaRegistry",
    "get_registry",
    "reset_registry",
]
