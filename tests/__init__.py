"""
storemodel Test Suite.

This package contains:
- unit/: Unit tests (schema compilation, codec, registry, config, engine)
- integration/: Integration tests (StoreModel against SQLite on disk)
"""
