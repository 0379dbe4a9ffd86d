"""
Mobile App Collector
Enumerates: Intune mobile app inventory and per-app device install status.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..models import Application
from .base import BaseCollector, CollectionRun

logger = logging.getLogger("intune_automation.collectors.apps")

MOBILE_APPS = "deviceAppManagement/mobileApps"

APP_SELECT = "id,displayName,publisher,createdDateTime,lastModifiedDateTime,isAssigned"


def name_matches(record: Any, needle: Optional[str]) -> bool:
    """Case-insensitive displayName substring match; no needle matches everything."""
    if not needle:
        return True
    if not isinstance(record, dict):
        return False
    name = record.get("displayName")
    return isinstance(name, str) and needle.lower() in name.lower()


class AppCollector(BaseCollector):
    name = "applications"
    description = "Intune mobile apps and install status"

    async def collect_apps(self, name_contains: Optional[str] = None) -> CollectionRun:
        """Collect the app inventory; name filtering happens client-side."""
        run = await self.collect_all(MOBILE_APPS, params={"$select": APP_SELECT})
        if name_contains:
            before = len(run.records)
            run.records = [r for r in run.records if name_matches(r, name_contains)]
            logger.info(
                f"[{self.name}] {len(run.records)}/{before} apps match '{name_contains}'"
            )
        return run

    async def collect_install_statuses(
        self,
        app: Application,
        install_state: Optional[str] = None,
    ) -> CollectionRun:
        """Collect per-device install status for one app (beta endpoint)."""
        run = await self.collect_all(f"{MOBILE_APPS}/{app.id}/deviceStatuses", beta=True)
        if install_state:
            wanted = install_state.lower()
            run.records = [
                r for r in run.records
                if isinstance(r, dict) and str(r.get("installState", "")).lower() == wanted
            ]
        return run
