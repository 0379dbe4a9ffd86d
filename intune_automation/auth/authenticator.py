"""
Token acquisition for Intune automation.

Three ways in, picked by AuthConfig.resolve_mode():
  certificate       app-only, base64 PFX on disk (operator workstation or CI)
  delegated         device code sign-in (operator workstation only)
  managed_identity  the runbook's own identity (Azure Automation)
"""

from __future__ import annotations

import base64
import getpass
import logging
import os
from typing import Optional

import msal
import requests
from cryptography.hazmat.primitives.hashes import SHA1
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat, pkcs12

from ..config import CONTEXT_LOCAL, GRAPH_SCOPES, REQUIRED_PERMISSIONS, AuthConfig

logger = logging.getLogger("intune_automation.auth")

GRAPH_RESOURCE = "https://graph.microsoft.com"
LOGIN_AUTHORITY = "https://login.microsoftonline.com"
CERT_PASSWORD_ENV = "INTUNE_CERT_PASSWORD"


class AuthenticationError(Exception):
    """No token could be obtained; nothing can be collected."""
    pass


def load_pfx_credential(path: str, password: str) -> dict[str, str]:
    """
    Read a base64-encoded PFX and return an msal client_credential
    ({"thumbprint", "private_key"}).
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            pfx = base64.b64decode(fh.read().strip())
        key, cert, _chain = pkcs12.load_key_and_certificates(
            pfx, password.encode("utf-8") if password else None
        )
    except FileNotFoundError:
        raise AuthenticationError(f"Certificate file not found: {path}")
    except (ValueError, TypeError) as e:
        raise AuthenticationError(f"Failed to load certificate {path}: {e}")

    if key is None or cert is None:
        raise AuthenticationError(f"{path} holds no private key and certificate pair")

    thumbprint = cert.fingerprint(SHA1()).hex()
    logger.info(f"Certificate loaded, thumbprint {thumbprint}")
    return {
        "thumbprint": thumbprint,
        "private_key": key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()).decode("utf-8"),
    }


def _authority(tenant_id: str) -> str:
    return f"{LOGIN_AUTHORITY}/{tenant_id}"


class Authenticator:
    """Obtains one bearer token for Microsoft Graph."""

    def __init__(self, config: AuthConfig, context: str = CONTEXT_LOCAL):
        self.config = config
        self.context = context
        self._access_token: Optional[str] = None

    @property
    def mode(self) -> str:
        return self.config.resolve_mode(self.context)

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    def acquire_token(self) -> str:
        handlers = {
            "certificate": self._certificate,
            "delegated": self._device_code,
            "managed_identity": self._managed_identity,
        }
        handler = handlers.get(self.mode)
        if handler is None:
            raise AuthenticationError(f"Unknown auth mode: {self.mode}")
        return handler()

    def _certificate(self) -> str:
        cert = self.config.certificate
        if not cert:
            raise AuthenticationError("Certificate auth selected but no certificate configured")

        password = cert.certificate_password or os.environ.get(CERT_PASSWORD_ENV, "")
        if not password and self.context == CONTEXT_LOCAL:
            password = getpass.getpass(f"Password for {cert.certificate_path}: ")

        logger.info(f"Signing in as app {cert.client_id} with a certificate")
        app = msal.ConfidentialClientApplication(
            client_id=cert.client_id,
            authority=_authority(cert.tenant_id),
            client_credential=load_pfx_credential(cert.certificate_path, password),
        )
        return self._accept(app.acquire_token_for_client(scopes=GRAPH_SCOPES), "Certificate")

    def _device_code(self) -> str:
        delegated = self.config.delegated
        if not delegated:
            raise AuthenticationError("Device code sign-in selected but no tenant/client configured")
        if self.context != CONTEXT_LOCAL:
            raise AuthenticationError("Device code sign-in needs an interactive (local) context")

        app = msal.PublicClientApplication(
            client_id=delegated.client_id,
            authority=_authority(delegated.tenant_id),
        )
        flow = app.initiate_device_flow(scopes=delegated.scopes)
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Could not start device code sign-in: {flow.get('error_description', 'Unknown')}"
            )

        print(f"\n{'=' * 60}")
        print(f"  Sign in at {flow['verification_uri']} with code {flow['user_code']}")
        print(f"{'=' * 60}\n")
        return self._accept(app.acquire_token_by_device_flow(flow), "Device code")

    def _managed_identity(self) -> str:
        mi = self.config.managed_identity
        if mi and mi.client_id:
            identity = msal.UserAssignedManagedIdentity(client_id=mi.client_id)
        else:
            identity = msal.SystemAssignedManagedIdentity()

        logger.info("Signing in with the runbook's managed identity")
        client = msal.ManagedIdentityClient(identity, http_client=requests.Session())
        return self._accept(client.acquire_token_for_client(resource=GRAPH_RESOURCE), "Managed identity")

    def _accept(self, result: dict, label: str) -> str:
        token = result.get("access_token")
        if not token:
            reason = result.get("error_description") or result.get("error") or "Unknown"
            raise AuthenticationError(f"{label} sign-in failed: {reason}")
        self._access_token = token
        logger.info(f"{label} sign-in succeeded")
        return token

    @staticmethod
    def list_required_permissions() -> dict[str, str]:
        return REQUIRED_PERMISSIONS
