"""
Device lifecycle actions: sync, wipe, retire.
Each target gets its own POST and its own result; a failure on one device
never stops the rest of the batch and nothing is rolled back.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from ..collectors.base import RateLimitState
from ..config import CollectionConfig
from ..graph.client import GraphClient, RateLimitedError
from ..safety.guardian import SafetyViolation

logger = logging.getLogger("intune_automation.actions")

ACTION_SYNC = "sync"
ACTION_WIPE = "wipe"
ACTION_RETIRE = "retire"

# CLI action name -> Graph action segment
ACTION_ENDPOINTS = {
    ACTION_SYNC: "syncDevice",
    ACTION_WIPE: "wipe",
    ACTION_RETIRE: "retire",
}

STATUS_SUCCEEDED = "Succeeded"
STATUS_FAILED = "Failed"
STATUS_BLOCKED = "Blocked"

RESULT_COLUMNS = ("DeviceId", "DeviceName", "Action", "Status", "Detail", "Attempts", "Timestamp")


@dataclass
class DeviceTarget:
    device_id: str
    device_name: str = ""


@dataclass
class ActionResult:
    device_id: str
    device_name: str
    action: str
    status: str
    detail: str = ""
    attempts: int = 0
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    )

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCEEDED

    def to_row(self) -> dict:
        return {
            "DeviceId": self.device_id,
            "DeviceName": self.device_name or "N/A",
            "Action": self.action,
            "Status": self.status,
            "Detail": self.detail or "N/A",
            "Attempts": self.attempts,
            "Timestamp": self.timestamp,
        }


def wipe_body(keep_enrollment_data: bool = False, keep_user_data: bool = False) -> dict:
    return {
        "keepEnrollmentData": keep_enrollment_data,
        "keepUserData": keep_user_data,
    }


class DeviceActionRunner:
    """Runs one action against many devices, sequentially."""

    def __init__(self, graph: GraphClient, config: CollectionConfig):
        self.graph = graph
        self.config = config

    async def run(
        self,
        action: str,
        targets: Iterable[DeviceTarget],
        body: Optional[dict] = None,
    ) -> list[ActionResult]:
        if action not in ACTION_ENDPOINTS:
            raise ValueError(f"Unknown device action: {action}")
        results = []
        for index, target in enumerate(targets):
            if index:
                await asyncio.sleep(self.config.page_delay_seconds)
            result = await self._run_one(action, target, body)
            results.append(result)
            log = logger.info if result.succeeded else logger.warning
            log(
                f"{action} {target.device_name or target.device_id}: "
                f"{result.status}{' — ' + result.detail if result.detail else ''}"
            )
        return results

    async def _run_one(self, action: str, target: DeviceTarget, body: Optional[dict]) -> ActionResult:
        endpoint = f"deviceManagement/managedDevices/{target.device_id}/{ACTION_ENDPOINTS[action]}"
        rate_limit = RateLimitState()
        result = ActionResult(
            device_id=target.device_id,
            device_name=target.device_name,
            action=action,
            status=STATUS_FAILED,
        )
        while True:
            result.attempts += 1
            try:
                await self.graph.post_action(endpoint, body=body)
            except RateLimitedError as e:
                rate_limit.record_throttle()
                limit = self.config.max_throttle_retries
                if limit is not None and rate_limit.consecutive > limit:
                    result.detail = f"Throttled after {limit} retries: {e.message}"
                    return result
                logger.warning(
                    f"Throttled sending {action} to {target.device_id}; "
                    f"waiting {self.config.throttle_cooldown_seconds:.0f}s"
                )
                await asyncio.sleep(self.config.throttle_cooldown_seconds)
                rate_limit.record_wait(self.config.throttle_cooldown_seconds)
                continue
            except SafetyViolation as e:
                result.status = STATUS_BLOCKED
                result.detail = str(e)
                return result
            except Exception as e:
                result.detail = f"{type(e).__name__}: {e}"
                return result
            result.status = STATUS_SUCCEEDED
            return result


def summarize_results(results: list[ActionResult]) -> dict:
    return {
        "total": len(results),
        "succeeded": sum(1 for r in results if r.status == STATUS_SUCCEEDED),
        "failed": sum(1 for r in results if r.status == STATUS_FAILED),
        "blocked": sum(1 for r in results if r.status == STATUS_BLOCKED),
    }
