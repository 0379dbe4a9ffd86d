"""
Typed domain records built from raw Graph JSON.
Every record is constructed through from_graph(), which validates the shape
and normalizes missing fields to None.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

# Intune reports "never" as the zero date rather than null
GRAPH_ZERO_DATE_PREFIX = "0001-01-01"


class RecordParseError(Exception):
    """Raised when a raw record cannot be turned into a domain record."""
    pass


def _require_mapping(raw: Any, kind: str) -> Mapping[str, Any]:
    if not isinstance(raw, Mapping):
        raise RecordParseError(f"{kind} record is {type(raw).__name__}, expected an object")
    return raw


def _text(raw: Mapping[str, Any], key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_graph_datetime(value: Any) -> Optional[datetime]:
    """Parse a Graph ISO-8601 timestamp; zero dates and junk become None."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value or value.startswith(GRAPH_ZERO_DATE_PREFIX):
        return None
    text = value.replace("Z", "+00:00")
    # Graph emits 1-7 fractional digits; fromisoformat wants exactly 3 or 6 before 3.11
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        rest = ""
        for i, ch in enumerate(tail):
            if not ch.isdigit():
                rest = tail[i:]
                break
            digits += ch
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}" if digits else f"{head}{rest}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def odata_type_name(raw: Mapping[str, Any]) -> Optional[str]:
    """'#microsoft.graph.win32LobApp' -> 'win32LobApp'."""
    value = raw.get("@odata.type")
    if not isinstance(value, str) or not value:
        return None
    return value.rsplit(".", 1)[-1]


@dataclass(frozen=True)
class Device:
    id: str
    device_name: Optional[str] = None
    user_principal_name: Optional[str] = None
    operating_system: Optional[str] = None
    os_version: Optional[str] = None
    compliance_state: Optional[str] = None
    last_sync: Optional[datetime] = None
    enrolled: Optional[datetime] = None
    serial_number: Optional[str] = None
    model: Optional[str] = None
    manufacturer: Optional[str] = None
    owner_type: Optional[str] = None

    @classmethod
    def from_graph(cls, raw: Any) -> "Device":
        raw = _require_mapping(raw, "Device")
        device_id = _text(raw, "id")
        if not device_id:
            raise RecordParseError("Device record has no id")
        return cls(
            id=device_id,
            device_name=_text(raw, "deviceName"),
            user_principal_name=_text(raw, "userPrincipalName"),
            operating_system=_text(raw, "operatingSystem"),
            os_version=_text(raw, "osVersion"),
            compliance_state=_text(raw, "complianceState"),
            last_sync=parse_graph_datetime(raw.get("lastSyncDateTime")),
            enrolled=parse_graph_datetime(raw.get("enrolledDateTime")),
            serial_number=_text(raw, "serialNumber"),
            model=_text(raw, "model"),
            manufacturer=_text(raw, "manufacturer"),
            owner_type=_text(raw, "managedDeviceOwnerType"),
        )


@dataclass(frozen=True)
class Application:
    id: str
    display_name: Optional[str] = None
    publisher: Optional[str] = None
    app_type: Optional[str] = None
    created: Optional[datetime] = None
    last_modified: Optional[datetime] = None
    is_assigned: Optional[bool] = None

    @classmethod
    def from_graph(cls, raw: Any) -> "Application":
        raw = _require_mapping(raw, "Application")
        app_id = _text(raw, "id")
        if not app_id:
            raise RecordParseError("Application record has no id")
        assigned = raw.get("isAssigned")
        return cls(
            id=app_id,
            display_name=_text(raw, "displayName"),
            publisher=_text(raw, "publisher"),
            app_type=odata_type_name(raw),
            created=parse_graph_datetime(raw.get("createdDateTime")),
            last_modified=parse_graph_datetime(raw.get("lastModifiedDateTime")),
            is_assigned=assigned if isinstance(assigned, bool) else None,
        )


@dataclass(frozen=True)
class AppInstallStatus:
    app_id: str
    app_name: Optional[str] = None
    device_id: Optional[str] = None
    device_name: Optional[str] = None
    user_principal_name: Optional[str] = None
    platform: Optional[str] = None
    install_state: Optional[str] = None
    install_state_detail: Optional[str] = None
    last_sync: Optional[datetime] = None

    @classmethod
    def from_graph(cls, raw: Any, app: Application) -> "AppInstallStatus":
        raw = _require_mapping(raw, "Install status")
        return cls(
            app_id=app.id,
            app_name=app.display_name,
            device_id=_text(raw, "deviceId"),
            device_name=_text(raw, "deviceName"),
            user_principal_name=_text(raw, "userPrincipalName"),
            platform=_text(raw, "osDescription") or _text(raw, "platform"),
            install_state=_text(raw, "installState"),
            install_state_detail=_text(raw, "installStateDetail"),
            last_sync=parse_graph_datetime(raw.get("lastSyncDateTime")),
        )


@dataclass(frozen=True)
class AuditEvent:
    id: str
    activity: Optional[str] = None
    activity_type: Optional[str] = None
    activity_result: Optional[str] = None
    activity_date_time: Optional[datetime] = None
    actor: Optional[str] = None
    component: Optional[str] = None
    category: Optional[str] = None
    resources: tuple[str, ...] = ()

    @classmethod
    def from_graph(cls, raw: Any) -> "AuditEvent":
        raw = _require_mapping(raw, "Audit event")
        event_id = _text(raw, "id")
        if not event_id:
            raise RecordParseError("Audit event has no id")
        actor = raw.get("actor")
        actor_name = None
        if isinstance(actor, Mapping):
            actor_name = (
                _text(actor, "userPrincipalName")
                or _text(actor, "applicationDisplayName")
                or _text(actor, "servicePrincipalName")
            )
        resources = raw.get("resources")
        names: list[str] = []
        if isinstance(resources, list):
            for r in resources:
                if isinstance(r, Mapping) and _text(r, "displayName"):
                    names.append(_text(r, "displayName"))
        return cls(
            id=event_id,
            activity=_text(raw, "activity") or _text(raw, "displayName"),
            activity_type=_text(raw, "activityType"),
            activity_result=_text(raw, "activityResult"),
            activity_date_time=parse_graph_datetime(raw.get("activityDateTime")),
            actor=actor_name,
            component=_text(raw, "componentName"),
            category=_text(raw, "category"),
            resources=tuple(names),
        )


@dataclass(frozen=True)
class ComplianceCounts:
    """Policy evaluation tallies for one device."""
    compliant: int = 0
    non_compliant: int = 0
    error: int = 0
    other: int = 0

    @property
    def total(self) -> int:
        return self.compliant + self.non_compliant + self.error + self.other
