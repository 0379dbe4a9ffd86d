"""
Install State Classifier
Maps per-device app install states onto report labels.
"""

from __future__ import annotations

from typing import Any

from ..models import AppInstallStatus, Application
from .base import NEVER, UNKNOWN, BaseClassifier, ClassifiedRecord, display

INSTALL_STATE_LABELS = {
    "installed": "Installed",
    "failed": "Failed",
    "uninstallfailed": "Failed",
    "notinstalled": "Not Installed",
    "pendinginstall": "Pending",
    "notapplicable": "Not Applicable",
    "excluded": "Not Applicable",
}


def classify_install_state(state: Any) -> str:
    if not isinstance(state, str):
        return UNKNOWN
    return INSTALL_STATE_LABELS.get(state.strip().lower(), UNKNOWN)


class InstallStateClassifier(BaseClassifier):
    name = "install_state"
    category_field = "InstallStatus"
    columns = (
        "AppId", "AppName", "DeviceName", "UserPrincipalName", "Platform",
        "InstallState", "InstallStateDetail", "LastSync", "InstallStatus",
    )

    def __init__(self, app: Application):
        self.app = app

    def parse(self, item: Any) -> AppInstallStatus:
        return AppInstallStatus.from_graph(item, self.app)

    def classify(self, record: AppInstallStatus) -> ClassifiedRecord:
        label = classify_install_state(record.install_state)
        return ClassifiedRecord(
            record=record,
            category=label,
            fields={
                "AppId": record.app_id,
                "AppName": display(record.app_name),
                "DeviceName": display(record.device_name),
                "UserPrincipalName": display(record.user_principal_name),
                "Platform": display(record.platform),
                "InstallState": display(record.install_state),
                "InstallStateDetail": display(record.install_state_detail),
                "LastSync": display(record.last_sync, missing=NEVER),
                "InstallStatus": label,
            },
        )
