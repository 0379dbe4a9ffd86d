"""
Base classifier — turns raw records into ClassifiedRecords.
Defines the ClassifiedRecord result type and the total classify_all() contract.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from ..models import RecordParseError

logger = logging.getLogger("intune_automation.classifiers")

# Sentinels for missing data in report fields
NA = "N/A"
UNKNOWN = "Unknown"
NEVER = "Never"


def display(value: Any, missing: str = NA) -> Any:
    """Render a value as a printable scalar for reports."""
    if value is None or value == "":
        return missing
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [str(v) for v in value if v not in (None, "")]
        return "; ".join(items) if items else missing
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


@dataclass(frozen=True)
class ClassifiedRecord:
    """
    A record annotated with a derived category.
    issues is empty when the record carried everything the rule needed;
    otherwise the category is the rule's safe fallback label.
    """
    record: Any
    category: str
    fields: Mapping[str, Any] = field(default_factory=dict)
    issues: tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    @property
    def ok(self) -> bool:
        return not self.issues

    def to_row(self) -> dict[str, Any]:
        return dict(self.fields)


class BaseClassifier(ABC):
    """
    Abstract base class for all classifiers.
    parse() is the validating boundary; classify() is a pure rule on the
    parsed record and never raises.
    """

    name: str = "base"
    category_field: str = "Category"
    fallback_category: str = UNKNOWN
    columns: tuple[str, ...] = ()

    def classify_all(self, items: Iterable[Any]) -> list[ClassifiedRecord]:
        """Classify every item; a bad item degrades instead of aborting the batch."""
        results = [self.classify_one(item) for item in items]
        degraded = sum(1 for r in results if not r.ok)
        counts = Counter(r.category for r in results)
        logger.info(
            f"[{self.name}] Classified {len(results)} records {dict(counts)}"
            + (f" — {degraded} degraded" if degraded else "")
        )
        return results

    def classify_one(self, item: Any) -> ClassifiedRecord:
        try:
            record = self.parse(item)
        except RecordParseError as e:
            logger.debug(f"[{self.name}] Degrading record: {e}")
            return self.degraded(item, str(e))
        return self.classify(record)

    @abstractmethod
    def parse(self, item: Any) -> Any:
        """Build a typed record; raise RecordParseError for unusable input."""
        raise NotImplementedError

    @abstractmethod
    def classify(self, record: Any) -> ClassifiedRecord:
        raise NotImplementedError

    def degraded(self, item: Any, issue: str) -> ClassifiedRecord:
        """Fallback record: every column N/A, category at the safe label."""
        fields = {column: NA for column in self.columns}
        fields[self.category_field] = self.fallback_category
        return ClassifiedRecord(
            record=item,
            category=self.fallback_category,
            fields=fields,
            issues=(issue,),
        )
