"""
Result shaping — aggregates classified records for reports and console output.
"""

from __future__ import annotations

from collections import Counter, OrderedDict
from typing import Any, Iterable, Sequence

from ..classifiers.base import NA, ClassifiedRecord, display


def count_by(records: Iterable[ClassifiedRecord], field: str = "") -> dict[str, int]:
    """Count records per category, or per value of a report field."""
    counter: Counter = Counter()
    for r in records:
        key = r.category if not field else r.fields.get(field, NA)
        counter[str(key)] += 1
    return dict(counter.most_common())


def group_by(
    records: Iterable[ClassifiedRecord],
    field: str,
) -> "OrderedDict[str, list[ClassifiedRecord]]":
    """Group records by a report field, keeping first-seen order."""
    groups: "OrderedDict[str, list[ClassifiedRecord]]" = OrderedDict()
    for r in records:
        groups.setdefault(str(r.fields.get(field, NA)), []).append(r)
    return groups


def breakdown(
    records: Sequence[ClassifiedRecord],
    field: str,
) -> list[dict[str, Any]]:
    """
    Category counts per value of field, e.g. compliance label per OS.
    One row per group: {field: value, <category>: count, ..., "Total": n}.
    """
    categories = list(count_by(records).keys())
    rows = []
    for value, members in group_by(records, field).items():
        counts = Counter(r.category for r in members)
        row: dict[str, Any] = {field: value}
        for category in categories:
            row[category] = counts.get(category, 0)
        row["Total"] = len(members)
        rows.append(row)
    return rows


def to_rows(records: Iterable[ClassifiedRecord]) -> list[dict[str, Any]]:
    """Flat printable rows; degraded records carry their issues."""
    rows = []
    for r in records:
        row = {k: display(v) for k, v in r.fields.items()}
        if r.issues:
            row["Issues"] = "; ".join(r.issues)
        rows.append(row)
    return rows


def row_fields(rows: Sequence[dict[str, Any]], columns: Sequence[str] = ()) -> list[str]:
    """
    CSV header: the declared columns first, then any other row keys
    (Issues on degraded rows) in first-seen order. An empty report still
    gets the declared columns.
    """
    seen: "OrderedDict[str, None]" = OrderedDict((column, None) for column in columns)
    for row in rows:
        for key in row:
            seen.setdefault(key, None)
    return list(seen.keys())


def summarize(records: Sequence[ClassifiedRecord], runs: Sequence[Any] = ()) -> dict[str, Any]:
    """Headline numbers for a classified batch and the runs that produced it."""
    return {
        "total": len(records),
        "by_category": count_by(records),
        "degraded": sum(1 for r in records if not r.ok),
        "partial_collection": any(getattr(run, "is_partial", False) for run in runs),
        "collection_runs": [run.to_dict() for run in runs if hasattr(run, "to_dict")],
    }
