"""
Safety Guardian: gates every outbound Graph request.
Reads are always allowed. Writes are limited to the managed-device actions
this toolkit performs, and destructive actions need explicit permission.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("intune_automation.safety")

# ─── Allowed Write Endpoints ─────────────────────────────────────────────────

DEVICE_ACTION_PATTERN = re.compile(
    r"/deviceManagement/managedDevices/[^/]+/(?P<action>[A-Za-z]+)$"
)

# Action name -> destructive?
DEVICE_ACTIONS = {
    "syncDevice": False,
    "wipe": True,
    "retire": True,
}


class SafetyViolation(Exception):
    """Raised when a request falls outside the allowed operations."""
    pass


class SafetyGuardian:
    """
    Validates every outbound HTTP request before execution.
    Maintains an audit log of write operations and violations.
    """

    def __init__(self, allow_destructive: bool = False):
        self.allow_destructive = allow_destructive
        self.violations: list[dict] = []
        self.writes: list[dict] = []
        self.checks_performed: int = 0
        self.started_at: str = _utc_now()

    def validate_request(self, method: str, url: str, body: Optional[dict] = None) -> bool:
        """
        Validate a request.
        Returns True if allowed, raises SafetyViolation if not.
        """
        self.checks_performed += 1
        method_upper = method.upper()

        if method_upper in ("GET", "HEAD", "OPTIONS"):
            return True

        if method_upper != "POST":
            self._record_violation(method_upper, url, "Write HTTP method blocked")
            raise SafetyViolation(
                f"SAFETY VIOLATION: Write method blocked: {method_upper} {url}"
            )

        match = DEVICE_ACTION_PATTERN.search(url.split("?", 1)[0])
        action = match.group("action") if match else None
        if action not in DEVICE_ACTIONS:
            self._record_violation(method_upper, url, "POST outside device actions")
            raise SafetyViolation(
                f"SAFETY VIOLATION: Unsupported POST endpoint: {url}"
            )

        if DEVICE_ACTIONS[action] and not self.allow_destructive:
            self._record_violation(method_upper, url, f"Destructive action '{action}' not permitted")
            raise SafetyViolation(
                f"SAFETY VIOLATION: Destructive action '{action}' requires confirmation: {url}"
            )

        self.writes.append({
            "timestamp": _utc_now(),
            "method": method_upper,
            "url": url,
            "action": action,
        })
        logger.info(f"Device action permitted: {action} — {url}")
        return True

    @staticmethod
    def is_destructive(action: str) -> bool:
        return DEVICE_ACTIONS.get(action, True)

    def _record_violation(self, method: str, url: str, reason: str):
        """Record a safety violation for audit."""
        violation = {
            "timestamp": _utc_now(),
            "method": method,
            "url": url,
            "reason": reason,
        }
        self.violations.append(violation)
        logger.critical(f"SAFETY VIOLATION: {reason} — {method} {url}")

    def get_audit_record(self) -> dict:
        """Return the full safety audit record."""
        return {
            "safety_guardian": {
                "allow_destructive": self.allow_destructive,
                "started_at": self.started_at,
                "checks_performed": self.checks_performed,
                "writes_performed": len(self.writes),
                "writes": self.writes,
                "violations_detected": len(self.violations),
                "violations": self.violations,
                "status": "CLEAN" if not self.violations else "VIOLATIONS_DETECTED",
            }
        }


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
