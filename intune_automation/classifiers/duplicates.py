"""
Duplicate Classifier
Groups app inventory entries by normalized name and explains why each
group of two or more is a duplicate set.
"""

from __future__ import annotations

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Iterable

from ..models import Application, RecordParseError
from .base import NA, BaseClassifier, ClassifiedRecord, display

logger = logging.getLogger("intune_automation.classifiers.duplicates")

DUPLICATE = "Duplicate"
UNIQUE = "Unique"

TAG_PUBLISHERS = "Different Publishers"
TAG_NAME_VARIATIONS = "Name Variations"
TAG_APP_TYPES = "Different App Types"
TAG_EXACT = "Exact Duplicates"

_BRACKETED = re.compile(r"\([^)]*\)|\[[^\]]*\]")
_ARCHITECTURE = re.compile(
    r"\b(?:x64|x86|x86_64|amd64|arm64|aarch64|64[- ]?bit|32[- ]?bit)\b",
    re.IGNORECASE,
)
_WHITESPACE = re.compile(r"\s+")
_TRAILING_PUNCT = re.compile(r"[\s\-_,;:]+$")


def normalize_app_name(name: Any) -> str:
    """
    'Adobe Reader (x64)' -> 'adobe reader'.
    Strips bracketed suffixes and architecture qualifiers, collapses
    whitespace, lower-cases. Non-strings normalize to ''.
    """
    if not isinstance(name, str):
        return ""
    text = _BRACKETED.sub(" ", name)
    text = _ARCHITECTURE.sub(" ", text)
    text = _WHITESPACE.sub(" ", text).strip()
    text = _TRAILING_PUNCT.sub("", text)
    return text.lower()


def duplicate_key(name: Any) -> str:
    """
    Grouping key for an app name. A name that is nothing but noise, such
    as '(Legacy)', keeps its own lower-cased text rather than going empty.
    """
    key = normalize_app_name(name)
    if key or not isinstance(name, str):
        return key
    return _WHITESPACE.sub(" ", name).strip().lower()


@dataclass
class DuplicateSet:
    key: str
    apps: list[Application] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.apps)


def _distinct(values: Iterable[Any], fold: bool = False) -> set:
    out = set()
    for v in values:
        if v is None or v == "":
            continue
        out.add(v.lower() if fold and isinstance(v, str) else v)
    return out


def duplicate_tags(apps: list[Application]) -> list[str]:
    """Why is this group a duplicate set? A group may carry several reasons."""
    tags = []
    if len(_distinct((a.publisher for a in apps), fold=True)) > 1:
        tags.append(TAG_PUBLISHERS)
    if len(_distinct(a.display_name for a in apps)) > 1:
        tags.append(TAG_NAME_VARIATIONS)
    if len(_distinct(a.app_type for a in apps)) > 1:
        tags.append(TAG_APP_TYPES)
    return tags or [TAG_EXACT]


def find_duplicate_sets(apps: Iterable[Application]) -> list[DuplicateSet]:
    """Group by normalized name in first-seen order; keep groups of two or more."""
    groups: "OrderedDict[str, list[Application]]" = OrderedDict()
    for app in apps:
        key = duplicate_key(app.display_name)
        if not key:
            continue
        groups.setdefault(key, []).append(app)
    return [
        DuplicateSet(key=key, apps=members, tags=duplicate_tags(members))
        for key, members in groups.items()
        if len(members) >= 2
    ]


class DuplicateClassifier(BaseClassifier):
    name = "duplicates"
    category_field = "DuplicateStatus"
    fallback_category = NA
    columns = (
        "AppId", "DisplayName", "Publisher", "AppType", "NormalizedName",
        "DuplicateStatus", "DuplicateGroupSize", "DuplicateReasons",
    )

    def __init__(self):
        self._sets: dict[str, DuplicateSet] = {}

    def classify_all(self, items: Iterable[Any]) -> list[ClassifiedRecord]:
        """Duplicate status depends on the whole inventory, so classify in two passes."""
        parsed: list[Any] = []
        for item in items:
            try:
                parsed.append(self.parse(item))
            except RecordParseError as e:
                parsed.append(self.degraded(item, str(e)))

        apps = [p for p in parsed if isinstance(p, Application)]
        self._sets = {s.key: s for s in find_duplicate_sets(apps)}
        results = [
            p if isinstance(p, ClassifiedRecord) else self.classify(p)
            for p in parsed
        ]
        logger.info(
            f"[{self.name}] {len(self._sets)} duplicate sets across {len(apps)} apps"
        )
        return results

    def parse(self, item: Any) -> Application:
        return Application.from_graph(item)

    def classify(self, record: Application) -> ClassifiedRecord:
        key = duplicate_key(record.display_name)
        dup = self._sets.get(key)
        issues = () if key else ("App has no display name",)
        return ClassifiedRecord(
            record=record,
            category=DUPLICATE if dup else UNIQUE,
            fields={
                "AppId": record.id,
                "DisplayName": display(record.display_name),
                "Publisher": display(record.publisher),
                "AppType": display(record.app_type),
                "NormalizedName": display(key),
                "DuplicateStatus": DUPLICATE if dup else UNIQUE,
                "DuplicateGroupSize": dup.size if dup else 1,
                "DuplicateReasons": display(dup.tags if dup else None),
            },
            issues=issues,
        )

    def duplicate_sets(self) -> list[DuplicateSet]:
        return list(self._sets.values())
