"""
Snapshot comparison (``budget_kernel.domain.snapshot_diff``).

Responsibility
--------------
Pure structural comparison of two serialized budget snapshots:

* a field-level diff of the budget's scalar fields, and
* a set diff of line items classified as added, removed, modified or
  unchanged.

Line items are matched by their business key (``code``), never by database
identity, because line items may be recreated with the same code across
versions.  The ``id`` field is therefore excluded from per-field diffs.

Architecture position
---------------------
**Kernel domain layer** -- pure.  Consumes the ``data`` payload produced by
``SnapshotService`` and returns frozen value objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

# Per-item keys that identify a row rather than describe it.
_IDENTITY_FIELDS = frozenset({"id"})


@dataclass(frozen=True)
class FieldChange:
    field: str
    old_value: Any
    new_value: Any


@dataclass(frozen=True)
class ModifiedLineItem:
    code: str
    changes: tuple[FieldChange, ...]


@dataclass(frozen=True)
class LineItemComparison:
    added: tuple[dict, ...]
    removed: tuple[dict, ...]
    modified: tuple[ModifiedLineItem, ...]
    unchanged: tuple[dict, ...]


@dataclass(frozen=True)
class ComparisonSummary:
    total_items_1: int
    total_items_2: int
    added: int
    removed: int
    modified: int
    unchanged: int


@dataclass(frozen=True)
class SnapshotComparison:
    """Structured diff between an earlier and a later snapshot."""

    snapshot_id_1: Any
    snapshot_id_2: Any
    budget_changes: tuple[FieldChange, ...]
    line_items: LineItemComparison
    summary: ComparisonSummary

    @property
    def has_changes(self) -> bool:
        return bool(
            self.budget_changes
            or self.line_items.added
            or self.line_items.removed
            or self.line_items.modified
        )


def diff_fields(
    old: Mapping[str, Any],
    new: Mapping[str, Any],
    exclude: frozenset[str] = frozenset(),
) -> tuple[FieldChange, ...]:
    """Return a FieldChange for every key whose value differs, sorted by key.

    A key missing from one side compares as None.
    """
    keys = sorted((set(old) | set(new)) - exclude)
    return tuple(
        FieldChange(field=k, old_value=old.get(k), new_value=new.get(k))
        for k in keys
        if old.get(k) != new.get(k)
    )


def compare_line_items(
    items_1: Sequence[Mapping[str, Any]],
    items_2: Sequence[Mapping[str, Any]],
) -> LineItemComparison:
    by_code_1 = {item["code"]: item for item in items_1}
    by_code_2 = {item["code"]: item for item in items_2}

    added = tuple(dict(by_code_2[c]) for c in sorted(by_code_2.keys() - by_code_1.keys()))
    removed = tuple(dict(by_code_1[c]) for c in sorted(by_code_1.keys() - by_code_2.keys()))

    modified: list[ModifiedLineItem] = []
    unchanged: list[dict] = []
    for code in sorted(by_code_1.keys() & by_code_2.keys()):
        changes = diff_fields(by_code_1[code], by_code_2[code], exclude=_IDENTITY_FIELDS)
        if changes:
            modified.append(ModifiedLineItem(code=code, changes=changes))
        else:
            unchanged.append(dict(by_code_2[code]))

    return LineItemComparison(
        added=added,
        removed=removed,
        modified=tuple(modified),
        unchanged=tuple(unchanged),
    )


def compare_snapshot_data(
    snapshot_id_1: Any,
    data_1: Mapping[str, Any],
    snapshot_id_2: Any,
    data_2: Mapping[str, Any],
) -> SnapshotComparison:
    """Compare two snapshot payloads of the shape ``{"budget": {...}, "line_items": [...]}``."""
    items_1 = data_1.get("line_items", [])
    items_2 = data_2.get("line_items", [])
    budget_changes = diff_fields(
        data_1.get("budget", {}), data_2.get("budget", {}), exclude=_IDENTITY_FIELDS
    )
    line_items = compare_line_items(items_1, items_2)
    return SnapshotComparison(
        snapshot_id_1=snapshot_id_1,
        snapshot_id_2=snapshot_id_2,
        budget_changes=budget_changes,
        line_items=line_items,
        summary=ComparisonSummary(
            total_items_1=len(items_1),
            total_items_2=len(items_2),
            added=len(line_items.added),
            removed=len(line_items.removed),
            modified=len(line_items.modified),
            unchanged=len(line_items.unchanged),
        ),
    )
