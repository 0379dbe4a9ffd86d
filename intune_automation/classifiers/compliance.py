"""
Compliance Classifier
Aggregates a device's compliance policy evaluations into one label.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from ..collectors.devices import DeviceEvaluation
from ..models import ComplianceCounts, Device
from .base import NEVER, UNKNOWN, BaseClassifier, ClassifiedRecord, display

logger = logging.getLogger("intune_automation.classifiers.compliance")

COMPLIANT = "Compliant"
NON_COMPLIANT = "Non-Compliant"

# deviceCompliancePolicyState.state values, lower-cased
COMPLIANT_STATES = {"compliant"}
NON_COMPLIANT_STATES = {"noncompliant"}
ERROR_STATES = {"error", "conflict"}


def _count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        count = int(value)
    except (TypeError, ValueError):
        return 0
    return max(count, 0)


def classify_compliance(compliant: Any, non_compliant: Any, error: Any) -> str:
    """
    Decide a device's aggregate compliance label.
    Non-compliance and errors dominate; Unknown only without any evaluation.
    Malformed counts are treated as zero.
    """
    if _count(non_compliant) > 0 or _count(error) > 0:
        return NON_COMPLIANT
    if _count(compliant) > 0:
        return COMPLIANT
    return UNKNOWN


def count_policy_states(states: Iterable[Any]) -> ComplianceCounts:
    """Tally policy evaluation states; entries without a state count as other."""
    compliant = non_compliant = error = other = 0
    for state in states:
        value = state.get("state") if isinstance(state, dict) else None
        value = str(value).lower() if value is not None else ""
        if value in COMPLIANT_STATES:
            compliant += 1
        elif value in NON_COMPLIANT_STATES:
            non_compliant += 1
        elif value in ERROR_STATES:
            error += 1
        else:
            other += 1
    return ComplianceCounts(compliant, non_compliant, error, other)


class ComplianceClassifier(BaseClassifier):
    name = "compliance"
    category_field = "ComplianceStatus"
    columns = (
        "DeviceId", "DeviceName", "UserPrincipalName", "OperatingSystem",
        "OSVersion", "LastSync", "CompliantPolicies", "NonCompliantPolicies",
        "ErrorPolicies", "ComplianceStatus",
    )

    def parse(self, item: DeviceEvaluation) -> tuple[Device, ComplianceCounts, bool]:
        device = Device.from_graph(item.device)
        return device, count_policy_states(item.states), item.states_partial

    def classify(self, record: tuple[Device, ComplianceCounts, bool]) -> ClassifiedRecord:
        device, counts, partial = record
        label = classify_compliance(counts.compliant, counts.non_compliant, counts.error)
        issues = ("Policy states incomplete",) if partial else ()
        return ClassifiedRecord(
            record=device,
            category=label,
            fields={
                "DeviceId": device.id,
                "DeviceName": display(device.device_name),
                "UserPrincipalName": display(device.user_principal_name),
                "OperatingSystem": display(device.operating_system),
                "OSVersion": display(device.os_version),
                "LastSync": display(device.last_sync, missing=NEVER),
                "CompliantPolicies": counts.compliant,
                "NonCompliantPolicies": counts.non_compliant,
                "ErrorPolicies": counts.error,
                "ComplianceStatus": label,
            },
            issues=issues,
        )
