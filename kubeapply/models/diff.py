"""Structured diff data structures.

A DiffResultSet is the machine-readable contract handed to downstream tooling:
its ``to_dict()`` shape is stable across versions, so field names and nesting
must not change without a schema bump.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ChangeKind(StrEnum):
    """How a single resource differs between the two sides."""

    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"


class LineOp(StrEnum):
    """Operation tag of a single diff body line."""

    CONTEXT = "context"
    ADDED = "added"
    REMOVED = "removed"


@dataclass(frozen=True, order=True)
class ResourceKey:
    """Identifies one Kubernetes object within a diff.

    Field order defines the sort order: namespace, then kind, then name.
    Cluster-scoped resources have an empty namespace and therefore sort first.
    """

    namespace: str
    kind: str
    name: str

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.kind}/{self.name}"
        return f"{self.kind}/{self.name}"


@dataclass(frozen=True)
class DiffLine:
    """One body line of a hunk, with its +/-/space marker and any CR stripped."""

    op: LineOp
    text: str


@dataclass
class DiffHunk:
    """A contiguous ``@@`` block of body lines, kept in source order."""

    header: str
    lines: list[DiffLine] = field(default_factory=list)
    omitted: int = 0  # context lines dropped by short mode

    def to_dict(self) -> dict[str, Any]:
        return {
            "header": self.header,
            "omitted": self.omitted,
            "lines": [{"op": line.op.value, "text": line.text} for line in self.lines],
        }


@dataclass
class ChangeRecord:
    """The structured diff of a single resource."""

    key: ResourceKey
    change: ChangeKind
    hunks: list[DiffHunk] = field(default_factory=list)
    short: bool = False
    source: str = ""  # kubectl object file name the segment came from

    @property
    def num_added(self) -> int:
        return sum(1 for hunk in self.hunks for line in hunk.lines if line.op is LineOp.ADDED)

    @property
    def num_removed(self) -> int:
        return sum(1 for hunk in self.hunks for line in hunk.lines if line.op is LineOp.REMOVED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "namespace": self.key.namespace,
            "kind": self.key.kind,
            "name": self.key.name,
            "change": self.change.value,
            "short": self.short,
            "source": self.source,
            "num_added": self.num_added,
            "num_removed": self.num_removed,
            "hunks": [hunk.to_dict() for hunk in self.hunks],
        }


@dataclass
class DiffResultSet:
    """Ordered change records for one cluster run.

    ``to_dict()`` wraps the records in a ``{"results": [...]}`` envelope so the
    JSON output has the same top-level shape even when there are no records.
    """

    records: list[ChangeRecord] = field(default_factory=list)
    cluster: str = ""
    short: bool = False

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[ChangeRecord]:
        return iter(self.records)

    @property
    def has_changes(self) -> bool:
        return any(r.change is not ChangeKind.UNCHANGED for r in self.records)

    def to_dict(self) -> dict[str, Any]:
        return {"results": [record.to_dict() for record in self.records]}
