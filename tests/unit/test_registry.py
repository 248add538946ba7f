"""
Unit tests for schema registry.

Tests cover:
- Schema registration and lookup
- Duplicate store name detection
- Aggregate storage version
- Fingerprint generation
- Global registry lifecycle
"""

import pytest

from storemodel.errors import SchemaError
from storemodel.schema.registry import SchemaRegistry, get_registry, reset_registry
from storemodel.schema.types import compile_schema, field


def make_schema(name, version=0):
    return compile_schema(name, (field("id", primary_key=True), field("label")), version=version)


class TestSchemaRegistry:
    """Tests for SchemaRegistry."""

    def test_register_schema(self):
        """Can register and look up a schema."""
        registry = SchemaRegistry()
        users = make_schema("users")

        registry.register(users)

        assert registry.get("users") is users
        assert "users" in registry
        assert len(registry) == 1
        assert list(registry) == [users]

    def test_get_unknown_returns_none(self):
        """Unknown store names are absent."""
        assert SchemaRegistry().get("nope") is None

    def test_duplicate_store_name_raises(self):
        """Registering a store name twice raises SchemaError."""
        registry = SchemaRegistry()
        registry.register(make_schema("users"))

        with pytest.raises(SchemaError, match="Store name 'users' already registered"):
            registry.register(make_schema("users", version=3))

        assert registry.get("users").version == 0

    def test_empty_registry_version_is_zero(self):
        """No schemas, no version."""
        assert SchemaRegistry().storage_version == 0

    def test_storage_version_accumulates(self):
        """Each schema contributes its version + 1."""
        registry = SchemaRegistry()
        registry.register(make_schema("a"))
        assert registry.storage_version == 1
        registry.register(make_schema("b", version=2))
        assert registry.storage_version == 4
        registry.register(make_schema("c", version=1))
        assert registry.storage_version == 6

    def test_storage_version_independent_of_order(self):
        """Registration order does not change the version."""
        first = SchemaRegistry()
        second = SchemaRegistry()
        schemas = [make_schema("a", 1), make_schema("b", 0), make_schema("c", 5)]

        for s in schemas:
            first.register(s)
        for s in reversed(schemas):
            second.register(s)

        assert first.storage_version == second.storage_version == 9
        assert first.fingerprint == second.fingerprint

    def test_fingerprint_changes_with_schema(self):
        """Fingerprint reflects the registered layout."""
        registry = SchemaRegistry()
        registry.register(make_schema("a"))
        before = registry.fingerprint
        registry.register(make_schema("b"))

        assert before.startswith("sha256:")
        assert registry.fingerprint != before

    def test_to_dict(self):
        """Registry serializes sorted by store name."""
        registry = SchemaRegistry()
        registry.register(make_schema("zeta"))
        registry.register(make_schema("alpha"))

        data = registry.to_dict()
        assert data["storage_version"] == 2
        assert [s["store_name"] for s in data["stores"]] == ["alpha", "zeta"]
        assert registry.store_names == ["zeta", "alpha"]


class TestGlobalRegistry:
    """Tests for the process-wide registry."""

    def setup_method(self):
        reset_registry()

    def teardown_method(self):
        reset_registry()

    def test_get_registry_is_singleton(self):
        """get_registry returns the same instance until reset."""
        registry = get_registry()
        assert get_registry() is registry

        reset_registry()
        assert get_registry() is not registry
