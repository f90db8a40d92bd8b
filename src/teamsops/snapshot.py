"""Immutable point-in-time views of desired or observed state.

A Snapshot maps identity keys (UPNs, GUIDs, channel names) to attribute bags.
It is built once per reconciliation pass and never mutated afterwards; attribute
bags are frozen all the way down.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any


class DuplicateKeyError(Exception):
    """Raised when a snapshot source yields the same identity twice."""

    pass


def freeze(value: Any) -> Any:
    """Return a read-only copy of an attribute value.

    Mappings become MappingProxyType and lists, tuples and sets become tuples,
    recursively, so nested values such as a roles list cannot be mutated.
    """
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(freeze(item) for item in value)
    return value


def normalize_identity(key: str) -> str:
    """Return the comparison form of an identity key.

    UPNs and email addresses compare case-insensitively; GUIDs and other
    opaque keys compare exactly.
    """
    stripped = key.strip()
    if "@" in stripped:
        return stripped.lower()
    return stripped


class Snapshot:
    """Ordered, immutable set of (key, attributes) pairs from one source.

    Keys are compared in normalized form (see normalize_identity) but the
    first spelling seen is kept so emitted operations use the source's casing.

    Raises:
        DuplicateKeyError: If two entries share a normalized key.
        ValueError: If a key is empty.
    """

    __slots__ = ("_entries", "_originals", "_source", "_captured_at")

    def __init__(
        self,
        entries: Iterable[tuple[str, Mapping[str, Any]]] | Mapping[str, Mapping[str, Any]],
        source: str = "",
        captured_at: datetime | None = None,
    ) -> None:
        items = entries.items() if isinstance(entries, Mapping) else entries

        built: dict[str, Mapping[str, Any]] = {}
        originals: dict[str, str] = {}
        duplicates: list[str] = []

        for raw_key, attributes in items:
            if not isinstance(raw_key, str) or not raw_key.strip():
                raise ValueError(f"Snapshot keys must be non-empty strings: {raw_key!r}")
            key = normalize_identity(raw_key)
            if key in built:
                duplicates.append(raw_key)
                continue
            built[key] = freeze(attributes or {})
            originals[key] = raw_key.strip()

        if duplicates:
            label = f" in {source}" if source else ""
            raise DuplicateKeyError(f"Duplicate keys{label}: {sorted(set(duplicates))}")

        self._entries = MappingProxyType(built)
        self._originals = MappingProxyType(originals)
        self._source = source
        self._captured_at = captured_at or datetime.now(UTC)

    @classmethod
    def from_keys(cls, keys: Iterable[str], source: str = "") -> Snapshot:
        """Build a snapshot of bare keys with empty attribute bags."""
        return cls(((key, {}) for key in keys), source=source)

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping[str, Any]],
        key_field: str,
        source: str = "",
    ) -> Snapshot:
        """Build a snapshot from Graph-style records keyed by one field.

        Records missing the key field are a data-source bug and raise ValueError.
        """
        entries = []
        for record in records:
            key = record.get(key_field)
            if not key:
                raise ValueError(f"Record in {source or 'snapshot'} is missing '{key_field}'")
            entries.append((str(key), record))
        return cls(entries, source=source)

    @property
    def source(self) -> str:
        return self._source

    @property
    def captured_at(self) -> datetime:
        return self._captured_at

    def keys(self) -> list[str]:
        """Normalized keys in insertion order."""
        return list(self._entries)

    def original_key(self, key: str) -> str:
        """Return the source spelling for a key."""
        return self._originals[normalize_identity(key)]

    def attributes(self, key: str) -> Mapping[str, Any]:
        return self._entries[normalize_identity(key)]

    def get(self, key: str, default: Mapping[str, Any] | None = None) -> Mapping[str, Any] | None:
        return self._entries.get(normalize_identity(key), default)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and normalize_identity(key) in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"Snapshot(source={self._source!r}, size={len(self._entries)})"
