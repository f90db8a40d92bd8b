"""Desired-vs-observed diffing.

The engine compares two snapshots and emits the operations that would make
the observed side match the desired side:

    to_add    = desired.keys - observed.keys
    to_remove = observed.keys - desired.keys   (only with allow_removal)

Removal is opt-in: without it only additions are emitted. Keys present on
both sides emit nothing unless attribute comparison is requested.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .config import DEFAULT_MAX_REMOVALS_PER_RUN
from .operations import GraphOperation, OperationKind
from .snapshot import Snapshot, normalize_identity

logger = logging.getLogger(__name__)


class RemovalLimitExceeded(Exception):
    """Raised when a diff would remove more entries than allowed."""

    pass


@dataclass(frozen=True)
class ReconcileOptions:
    """Options for one diff pass.

    Attributes:
        allow_removal: Emit Remove for observed keys missing from desired.
        compare_attributes: Attribute names whose difference emits Update.
        protected_keys: Keys that are never removed.
        max_removals: Refuse the diff if it would remove more than this.
            None disables the limit.
        scope: Container the operations apply to (e.g. a team id).
    """

    allow_removal: bool = False
    compare_attributes: tuple[str, ...] = ()
    protected_keys: frozenset[str] = field(default_factory=frozenset)
    max_removals: int | None = DEFAULT_MAX_REMOVALS_PER_RUN
    scope: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "protected_keys",
            frozenset(normalize_identity(key) for key in self.protected_keys),
        )
        object.__setattr__(self, "compare_attributes", tuple(self.compare_attributes))
        if self.max_removals is not None and self.max_removals < 0:
            raise ValueError("max_removals cannot be negative")


@dataclass(frozen=True)
class DiffSummary:
    """Counts for one diff pass, for logs and plan output."""

    desired_count: int
    observed_count: int
    to_add: int
    to_update: int
    to_remove: int
    unchanged: int
    protected_skipped: int


class ReconciliationEngine:
    """Compute the operations that reconcile observed state to desired state."""

    def __init__(self) -> None:
        self._last_summary: DiffSummary | None = None

    @property
    def last_summary(self) -> DiffSummary | None:
        """Summary of the most recent diff() call."""
        return self._last_summary

    def diff(
        self,
        desired: Snapshot,
        observed: Snapshot,
        options: ReconcileOptions | None = None,
    ) -> list[GraphOperation]:
        """Diff two snapshots into operations.

        Adds come first in desired order, then updates, then removes in
        observed order. The same inputs always yield the same list.

        Raises:
            RemovalLimitExceeded: If removals exceed options.max_removals.
        """
        options = options or ReconcileOptions()

        adds: list[GraphOperation] = []
        updates: list[GraphOperation] = []
        removes: list[GraphOperation] = []
        unchanged = 0
        protected_skipped = 0

        for key in desired:
            desired_attrs = desired.attributes(key)
            if key not in observed:
                adds.append(
                    GraphOperation.add(desired.original_key(key), desired_attrs, options.scope)
                )
                continue

            observed_attrs = observed.attributes(key)
            if options.compare_attributes and self._attributes_differ(
                desired_attrs, observed_attrs, options.compare_attributes
            ):
                merged = {**observed_attrs, **desired_attrs}
                updates.append(
                    GraphOperation.update(desired.original_key(key), merged, options.scope)
                )
            else:
                unchanged += 1

        if options.allow_removal:
            for key in observed:
                if key in desired:
                    continue
                if key in options.protected_keys:
                    protected_skipped += 1
                    logger.info(
                        "Skipping removal of protected key",
                        extra={"key": observed.original_key(key), "scope": options.scope},
                    )
                    continue
                removes.append(
                    GraphOperation.remove(
                        observed.original_key(key), observed.attributes(key), options.scope
                    )
                )

        if options.max_removals is not None and len(removes) > options.max_removals:
            logger.error(
                "Removal limit exceeded",
                extra={
                    "scope": options.scope,
                    "removal_count": len(removes),
                    "limit": options.max_removals,
                },
            )
            raise RemovalLimitExceeded(
                f"Diff would remove {len(removes)} entries from {options.scope or 'target'}, "
                f"exceeding limit of {options.max_removals}. "
                f"This may indicate an empty or wrong source. Review the plan manually."
            )

        self._last_summary = DiffSummary(
            desired_count=len(desired),
            observed_count=len(observed),
            to_add=len(adds),
            to_update=len(updates),
            to_remove=len(removes),
            unchanged=unchanged,
            protected_skipped=protected_skipped,
        )
        logger.info(
            "Diff computed",
            extra={
                "scope": options.scope,
                "desired_source": desired.source,
                "observed_source": observed.source,
                "to_add": len(adds),
                "to_update": len(updates),
                "to_remove": len(removes),
                "unchanged": unchanged,
            },
        )
        return [*adds, *updates, *removes]

    @staticmethod
    def _attributes_differ(
        desired: Mapping[str, Any], observed: Mapping[str, Any], names: tuple[str, ...]
    ) -> bool:
        return any(desired.get(name) != observed.get(name) for name in names)


def operation_counts(operations: list[GraphOperation]) -> dict[OperationKind, int]:
    """Count operations by kind."""
    counts = {kind: 0 for kind in OperationKind}
    for operation in operations:
        counts[operation.kind] += 1
    return counts
