"""
Configuration module for Intune Graph Automation.
Defines tunable parameters, Graph endpoints, execution context and output settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


# ─── Execution Context ──────────────────────────────────────────────────────

CONTEXT_LOCAL = "local"        # Operator workstation, interactive sign-in allowed
CONTEXT_RUNBOOK = "runbook"    # Unattended (Azure Automation), managed identity
EXECUTION_CONTEXTS = (CONTEXT_LOCAL, CONTEXT_RUNBOOK)


# ─── Tenant Authentication ───────────────────────────────────────────────────

@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Falls back to INTUNE_CERT_PASSWORD, then prompt

@dataclass
class DelegatedAuth:
    """Delegated (device code) authentication configuration."""
    tenant_id: str
    client_id: str
    scopes: list[str] = field(default_factory=lambda: [
        "DeviceManagementManagedDevices.PrivilegedOperations.All",
        "DeviceManagementManagedDevices.Read.All",
        "DeviceManagementApps.Read.All",
        "DeviceManagementConfiguration.Read.All",
    ])

@dataclass
class ManagedIdentityAuth:
    """Managed identity configuration. Empty client_id means system-assigned."""
    client_id: str = ""

@dataclass
class AuthConfig:
    """Authentication configuration. The mode follows the execution context unless set."""
    mode: str = ""  # "certificate", "delegated", "managed_identity"
    certificate: Optional[CertificateAuth] = None
    delegated: Optional[DelegatedAuth] = None
    managed_identity: Optional[ManagedIdentityAuth] = None

    def resolve_mode(self, context: str) -> str:
        """Pick the auth mode for an execution context when none is configured."""
        if self.mode:
            return self.mode
        if context == CONTEXT_RUNBOOK:
            return "managed_identity"
        if self.certificate:
            return "certificate"
        return "delegated"


# ─── Graph API Settings ─────────────────────────────────────────────────────

GRAPH_BASE_URL = "https://graph.microsoft.com"
GRAPH_API_VERSION = "v1.0"
GRAPH_BETA_VERSION = "beta"
GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]

# Rate limiting / throttling
THROTTLE_STATUS_CODES = (429, 503)
THROTTLE_COOLDOWN_SECONDS = 60.0  # Fixed wait after a throttle signal
PAGE_DELAY_SECONDS = 0.1          # Pause before every page after the first

# Pagination
DEFAULT_PAGE_SIZE = 999           # Maximum items per page ($top)
REQUEST_TIMEOUT_SECONDS = 60.0


# ─── Collection Settings ────────────────────────────────────────────────────

@dataclass
class CollectionConfig:
    """Controls for paginated collection and per-target actions."""
    page_delay_seconds: float = PAGE_DELAY_SECONDS
    throttle_cooldown_seconds: float = THROTTLE_COOLDOWN_SECONDS
    max_throttle_retries: Optional[int] = None   # None = retry throttled pages forever
    deadline_seconds: Optional[float] = None     # None = no run deadline
    page_size: int = DEFAULT_PAGE_SIZE
    stale_days: int = 30                         # Days without sync = stale device
    audit_days: int = 7                          # Audit look-back window


# ─── Output Configuration ───────────────────────────────────────────────────

@dataclass
class OutputConfig:
    """Output directory and format settings."""
    base_dir: str = ""
    formats: list[str] = field(default_factory=lambda: ["csv", "json"])

    def __post_init__(self):
        if not self.base_dir:
            self.base_dir = os.path.join(os.getcwd(), "intune_reports")

    @property
    def report_dir(self) -> Path:
        return Path(self.base_dir)


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class AutomationConfig:
    """Top-level configuration for every command."""
    context: str = CONTEXT_LOCAL
    auth: AuthConfig = field(default_factory=AuthConfig)
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str | Path) -> "AutomationConfig":
        """Load configuration from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        config = cls()
        context = data.get("context", CONTEXT_LOCAL)
        if context not in EXECUTION_CONTEXTS:
            raise ValueError(f"Unknown execution context: {context}")
        config.context = context
        if "auth" in data:
            auth_data = data["auth"]
            config.auth.mode = auth_data.get("mode", "")
            if "certificate" in auth_data:
                c = auth_data["certificate"]
                config.auth.certificate = CertificateAuth(
                    tenant_id=c["tenant_id"],
                    client_id=c["client_id"],
                    certificate_path=c.get("certificate_path", "./base64.txt"),
                    certificate_password=c.get("certificate_password", ""),
                )
            if "delegated" in auth_data:
                d = auth_data["delegated"]
                config.auth.delegated = DelegatedAuth(
                    tenant_id=d["tenant_id"],
                    client_id=d["client_id"],
                )
            if "managed_identity" in auth_data:
                config.auth.managed_identity = ManagedIdentityAuth(
                    client_id=auth_data["managed_identity"].get("client_id", ""),
                )
        if "collection" in data:
            for k, v in data["collection"].items():
                if hasattr(config.collection, k):
                    setattr(config.collection, k, v)
        if "output" in data:
            for k, v in data["output"].items():
                if hasattr(config.output, k):
                    setattr(config.output, k, v)
        config.verbose = data.get("verbose", False)
        return config


# ─── Required Graph API Permissions ─────────────────────────────────────────

REQUIRED_PERMISSIONS = {
    "DeviceManagementManagedDevices.Read.All": "Read managed device inventory and compliance states",
    "DeviceManagementManagedDevices.PrivilegedOperations.All": "Sync, wipe and retire managed devices",
    "DeviceManagementApps.Read.All": "Read mobile apps and install status",
    "DeviceManagementConfiguration.Read.All": "Read compliance policies",
    "DeviceManagementRBAC.Read.All": "Read Intune audit events",
}
