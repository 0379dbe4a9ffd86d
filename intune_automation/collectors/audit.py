"""
Audit Event Collector
Enumerates: Intune audit events (policy and configuration changes) in a look-back window.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from .base import BaseCollector, CollectionRun
from .devices import odata_literal

logger = logging.getLogger("intune_automation.collectors.audit")

AUDIT_EVENTS = "deviceManagement/auditEvents"


class AuditCollector(BaseCollector):
    name = "audit"
    description = "Intune audit events"

    async def collect_events(
        self,
        days: int,
        category: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CollectionRun:
        """Collect audit events newer than `days` days, optionally for one category."""
        now = now or datetime.now(timezone.utc)
        since = (now - timedelta(days=days)).strftime("%Y-%m-%dT%H:%M:%SZ")
        flt = f"activityDateTime gt {since}"
        if category:
            flt += f" and category eq {odata_literal(category)}"
        return await self.collect_all(AUDIT_EVENTS, params={"$filter": flt})
