"""
Change Severity Classifier
Rates Intune audit events: failures and deletions are High, creates and
updates Medium, assignments and everything else Low.
"""

from __future__ import annotations

import logging
from typing import Any

from ..models import AuditEvent
from .base import NA, BaseClassifier, ClassifiedRecord, display

logger = logging.getLogger("intune_automation.classifiers.severity")

HIGH = "High"
MEDIUM = "Medium"
LOW = "Low"

FAILURE_RESULTS = {"failure", "failed", "fail", "error"}

# Checked in order; first match wins
ACTIVITY_RULES = (
    ("delete", HIGH),
    ("create", MEDIUM),
    ("update", MEDIUM),
    ("assign", LOW),
)


def is_failure(result: Any) -> bool:
    if result is False:
        return True
    if not isinstance(result, str):
        return False
    return result.strip().lower() in FAILURE_RESULTS


def classify_severity(activity_type: Any, result: Any = None) -> str:
    """A failed change is High whatever it was; otherwise rate by activity type."""
    if is_failure(result):
        return HIGH
    if not isinstance(activity_type, str):
        return LOW
    activity = activity_type.lower()
    for needle, severity in ACTIVITY_RULES:
        if needle in activity:
            return severity
    return LOW


class SeverityClassifier(BaseClassifier):
    name = "severity"
    category_field = "Severity"
    fallback_category = NA
    columns = (
        "EventId", "ActivityDateTime", "Activity", "ActivityType", "Result",
        "Actor", "Category", "Component", "Resources", "Severity",
    )

    def parse(self, item: Any) -> AuditEvent:
        return AuditEvent.from_graph(item)

    def classify(self, record: AuditEvent) -> ClassifiedRecord:
        severity = classify_severity(record.activity_type, record.activity_result)
        issues = () if record.activity_type else ("Event has no activity type",)
        return ClassifiedRecord(
            record=record,
            category=severity,
            fields={
                "EventId": record.id,
                "ActivityDateTime": display(record.activity_date_time),
                "Activity": display(record.activity),
                "ActivityType": display(record.activity_type),
                "Result": display(record.activity_result),
                "Actor": display(record.actor),
                "Category": display(record.category),
                "Component": display(record.component),
                "Resources": display(record.resources),
                "Severity": severity,
            },
            issues=issues,
        )
