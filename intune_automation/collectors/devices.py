"""
Managed Device Collector
Enumerates: managed devices, per-device compliance policy states, name lookups.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..graph.client import GraphAuthError
from .base import STATE_COMPLETED_PARTIAL, BaseCollector, CollectionRun, FatalCollectionError

logger = logging.getLogger("intune_automation.collectors.devices")

MANAGED_DEVICES = "deviceManagement/managedDevices"

DEVICE_SELECT = (
    "id,deviceName,managedDeviceOwnerType,operatingSystem,osVersion,"
    "complianceState,lastSyncDateTime,enrolledDateTime,model,manufacturer,"
    "serialNumber,userPrincipalName"
)


def odata_literal(value: str) -> str:
    """Quote a string for an OData $filter expression."""
    return "'" + value.replace("'", "''") + "'"


@dataclass
class DeviceEvaluation:
    """A raw device plus the policy states collected for it."""
    device: Any
    states: list[Any]
    states_run: Optional[CollectionRun] = None

    @property
    def states_partial(self) -> bool:
        return self.states_run is not None and self.states_run.is_partial


class DeviceCollector(BaseCollector):
    name = "devices"
    description = "Intune managed devices and compliance policy states"

    async def collect_devices(self, platform: Optional[str] = None) -> CollectionRun:
        """Collect the managed device inventory, optionally for one OS."""
        params = {"$select": DEVICE_SELECT, "$top": str(self.config.page_size)}
        if platform:
            params["$filter"] = f"operatingSystem eq {odata_literal(platform)}"
        return await self.collect_all(MANAGED_DEVICES, params=params)

    async def find_devices_by_name(self, device_name: str) -> CollectionRun:
        return await self.collect_all(
            MANAGED_DEVICES,
            params={
                "$select": DEVICE_SELECT,
                "$filter": f"deviceName eq {odata_literal(device_name)}",
            },
        )

    async def collect_policy_states(self, device_id: str) -> CollectionRun:
        return await self.collect_all(
            f"{MANAGED_DEVICES}/{device_id}/deviceCompliancePolicyStates",
        )

    async def evaluate_compliance(
        self,
        platform: Optional[str] = None,
    ) -> tuple[CollectionRun, list[DeviceEvaluation]]:
        """
        Collect devices, then the compliance policy states of each device.
        Devices without a usable id are passed through with no states so the
        classifier can degrade them.
        """
        devices_run = await self.collect_devices(platform)
        evaluations = []
        total = len(devices_run.records)
        for index, device in enumerate(devices_run.records, start=1):
            device_id = device.get("id") if isinstance(device, dict) else None
            if not device_id:
                evaluations.append(DeviceEvaluation(device=device, states=[]))
                continue
            try:
                states_run = await self.collect_policy_states(device_id)
            except FatalCollectionError as e:
                # A device removed mid-run answers 404; a missing permission stays fatal
                if isinstance(e.cause, GraphAuthError):
                    raise
                logger.warning(f"[{self.name}] No policy states for {device_id}: {e.cause}")
                states_run = CollectionRun(seed=e.seed, state=STATE_COMPLETED_PARTIAL, error=str(e.cause))
                self.runs.append(states_run)
            evaluations.append(DeviceEvaluation(
                device=device,
                states=states_run.records,
                states_run=states_run,
            ))
            if index % 100 == 0:
                logger.info(f"[{self.name}] Policy states collected for {index}/{total} devices")
        return devices_run, evaluations
