"""
storemodel - Schema-driven typed stores over a versioned key/value engine.

This package derives storage layout from declared record types and
mediates every read and write through that declaration:
- Record types declare fields; primary key and indexes are derived
- All record types share one versioned database
- The database is (re)built when the aggregate version increases
- Field transformers convert values on the way in and out

Architecture:
    ┌────────────┐  compile   ┌──────────────┐  register  ┌────────────────┐
    │ StoreModel │──────────▶ │ RecordType   │──────────▶ │ SchemaRegistry │
    │            │            │ Schema       │            │ (version fold) │
    └─────┬──────┘            └──────────────┘            └───────┬────────┘
          │ CRUD via ValueCodec                                   │ migrate
          ▼                                                       ▼
    ┌────────────┐  open / transaction   ┌──────────────────────────────────┐
    │  Database  │─────────────────────▶ │ StorageEngine (SQLite)           │
    └────────────┘                       └──────────────────────────────────┘

Invariants:
    - All record types are registered before the first storage operation
    - A version bump drops and recreates every registered table
    - Each operation runs in its own transaction

How to change safely:
    - Bump a record type's version when its primary key or indexes change
    - Export data before bumping versions; migration does not preserve rows
"""

from ._version import __version__
from .config import StoreConfig, configure, get_config, reset_config
from .database import Database, get_database, reset_database
from .engine import KeyRange
from .errors import OperationError, SchemaError, StorageOpenError, StoreModelError
from .log import setup_logging
from .schema import (
    DateTransformer,
    FieldSpec,
    FieldTransformer,
    RecordTypeSchema,
    SchemaRegistry,
    compile_schema,
    field,
    get_registry,
)
from .store import StoreModel

__all__ = [
    "__version__",
    # Stores
    "StoreModel",
    "Database",
    "get_database",
    "reset_database",
    "KeyRange",
    # Schema
    "FieldSpec",
    "field",
    "FieldTransformer",
    "DateTransformer",
    "RecordTypeSchema",
    "SchemaRegistry",
    "compile_schema",
    "get_registry",
    # Config
    "StoreConfig",
    "configure",
    "get_config",
    "reset_config",
    "setup_logging",
    # Errors
    "StoreModelError",
    "SchemaError",
    "StorageOpenError",
    "OperationError",
]
