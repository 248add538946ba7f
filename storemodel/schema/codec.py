"""
Value codec: application records <-> storage-safe records.

Every write path calls to_storage before handing a record to the engine,
and every read path calls from_storage before returning to the caller.
Only fields listed in the schema's transformed_fields are touched; all
other fields pass through unchanged.

Invariants:
    - The caller's record is never mutated; a new dict is returned
    - Encoding and decoding are symmetric (both always run)
    - Absent fields stay absent
"""

from __future__ import annotations

from typing import Any, Dict, Mapping

from .types import RecordTypeSchema


class ValueCodec:
    """Applies per-field transformers for one record type.

    Example:
        >>> codec = ValueCodec(schema)
        >>> stored = codec.to_storage({"id": "a", "createdAt": datetime.now()})
        >>> codec.from_storage(stored)["createdAt"]
        datetime.datetime(...)
    """

    def __init__(self, schema: RecordTypeSchema) -> None:
        self.schema = schema
        self._transformers = {
            name: schema.get_field(name).transformer for name in schema.transformed_fields
        }

    def to_storage(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        """Encode a record for persistence."""
        result = dict(record)
        for name, transformer in self._transformers.items():
            if name in result:
                result[name] = transformer.encode(result[name])
        return result

    def from_storage(self, value: Mapping[str, Any]) -> Dict[str, Any]:
        """Decode a persisted record for the caller."""
        result = dict(value)
        for name, transformer in self._transformers.items():
            if name in result:
                result[name] = transformer.decode(result[name])
        return result
