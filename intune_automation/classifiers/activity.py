"""
Device Activity Classifier
Labels devices Active, Stale or Never from their last check-in.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from ..models import Device, parse_graph_datetime
from .base import NEVER, UNKNOWN, BaseClassifier, ClassifiedRecord, display

ACTIVE = "Active"
STALE = "Stale"


def classify_activity(last_sync: Any, now: datetime, stale_days: int) -> str:
    """Never when there is no usable sync time; Stale when older than stale_days."""
    synced = parse_graph_datetime(last_sync)
    if synced is None:
        return NEVER
    if now - synced > timedelta(days=stale_days):
        return STALE
    return ACTIVE


class ActivityClassifier(BaseClassifier):
    name = "activity"
    category_field = "ActivityStatus"
    fallback_category = UNKNOWN
    columns = (
        "DeviceId", "DeviceName", "UserPrincipalName", "OperatingSystem",
        "LastSync", "DaysSinceSync", "ActivityStatus",
    )

    def __init__(self, stale_days: int = 30, now: Optional[datetime] = None):
        self.stale_days = stale_days
        self.now = now or datetime.now(timezone.utc)

    def parse(self, item: Any) -> Device:
        return Device.from_graph(item)

    def classify(self, record: Device) -> ClassifiedRecord:
        status = classify_activity(record.last_sync, self.now, self.stale_days)
        days = (self.now - record.last_sync).days if record.last_sync else None
        return ClassifiedRecord(
            record=record,
            category=status,
            fields={
                "DeviceId": record.id,
                "DeviceName": display(record.device_name),
                "UserPrincipalName": display(record.user_principal_name),
                "OperatingSystem": display(record.operating_system),
                "LastSync": display(record.last_sync, missing=NEVER),
                "DaysSinceSync": display(days),
                "ActivityStatus": status,
            },
        )
