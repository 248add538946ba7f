"""
Field transformers for storemodel.

A transformer converts one field between its application value and a
storage-safe scalar. Transformers are attached to fields at declaration
time and applied by the ValueCodec on every write and read.

Invariants:
    - decode(encode(value)) is observably equal to value
    - None passes through both directions unchanged

Example:
    >>> from storemodel.schema import field, DateTransformer
    >>> created_at = field("createdAt", transformer=DateTransformer())
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class FieldTransformer(Protocol):
    """Bidirectional conversion for a single field."""

    def encode(self, value: Any) -> Any:
        """Convert an application value to its storage form."""
        ...

    def decode(self, value: Any) -> Any:
        """Convert a stored value back to its application form."""
        ...


class DateTransformer:
    """Stores date-like values as canonical UTC ISO-8601 strings.

    Encoded form matches ``2024-01-01T00:00:00.000Z``: UTC, millisecond
    precision, ``Z`` suffix. Naive datetimes are taken to be UTC. Plain
    dates are stored as midnight UTC. ISO strings are accepted on encode
    and normalized, so callers may write either form.

    Decoding always yields a timezone-aware ``datetime`` in UTC.
    """

    def encode(self, value: Any) -> Any:
        if value is None:
            return None
        return _format(self._coerce(value))

    def decode(self, value: Any) -> Any:
        if value is None:
            return None
        return self._coerce(value)

    @staticmethod
    def _coerce(value: Any) -> datetime:
        if isinstance(value, datetime):
            dt = value
        elif isinstance(value, date):
            dt = datetime.combine(value, time.min)
        elif isinstance(value, str):
            dt = _parse(value)
        else:
            raise TypeError(f"Cannot convert {type(value).__name__} to a date value")

        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        dt = dt.astimezone(timezone.utc)
        # Storage keeps milliseconds only
        return dt.replace(microsecond=dt.microsecond // 1000 * 1000)

    def __repr__(self) -> str:
        return "DateTransformer()"


def _parse(text: str) -> datetime:
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as e:
        raise ValueError(f"Invalid date string '{text}': {e}") from e


def _format(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"
