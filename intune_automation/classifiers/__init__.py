from .base import NA, NEVER, UNKNOWN, BaseClassifier, ClassifiedRecord, display
from .compliance import ComplianceClassifier, classify_compliance, count_policy_states
from .duplicates import DuplicateClassifier, find_duplicate_sets, normalize_app_name
from .severity import SeverityClassifier, classify_severity
from .activity import ActivityClassifier, classify_activity
from .install_state import InstallStateClassifier, classify_install_state

__all__ = [
    "NA",
    "NEVER",
    "UNKNOWN",
    "BaseClassifier",
    "ClassifiedRecord",
    "display",
    "ComplianceClassifier",
    "classify_compliance",
    "count_policy_states",
    "DuplicateClassifier",
    "find_duplicate_sets",
    "normalize_app_name",
    "SeverityClassifier",
    "classify_severity",
    "ActivityClassifier",
    "classify_activity",
    "InstallStateClassifier",
    "classify_install_state",
]
