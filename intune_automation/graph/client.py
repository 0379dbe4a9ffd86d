"""
Async Graph API client: single-page fetches, throttle signalling and device actions.
Pagination and retry policy live in collectors.base.PaginatedCollector; this
client only executes one request and classifies the outcome.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..config import (
    GRAPH_BASE_URL,
    GRAPH_API_VERSION,
    GRAPH_BETA_VERSION,
    REQUEST_TIMEOUT_SECONDS,
    THROTTLE_STATUS_CODES,
)
from ..safety.guardian import SafetyGuardian, SafetyViolation
from .paging import PageRequest, PageResponse

logger = logging.getLogger("intune_automation.graph")


class GraphAPIError(Exception):
    """Raised when Graph API returns an error for a request."""
    def __init__(self, status_code: int, message: str, url: str):
        self.status_code = status_code
        self.url = url
        self.message = message
        super().__init__(f"Graph API Error {status_code} for {url}: {message}")


class RateLimitedError(GraphAPIError):
    """Server asked the caller to slow down (429, or 503 with throttling)."""
    def __init__(self, status_code: int, message: str, url: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(status_code, message, url)


class TransientGraphError(GraphAPIError):
    """Network failure or server-side error; not retried by the collector."""
    pass


class GraphAuthError(GraphAPIError):
    """401 or 403: the token is missing, expired or lacks a permission."""
    pass


class GraphClient:
    """
    Async Microsoft Graph API client.
    Features:
      - Safety-validated requests (device actions only for writes)
      - One request per call; fetch_page() is the page collaborator for
        PaginatedCollector
      - Error taxonomy: RateLimitedError, TransientGraphError, GraphAuthError
      - v1.0 and beta endpoint support
    """

    def __init__(self, access_token: str, guardian: SafetyGuardian):
        self.access_token = access_token
        self.guardian = guardian
        self._stats = {"total_requests": 0, "throttle_events": 0}
        self._http: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GraphClient":
        self._http = httpx.AsyncClient(
            timeout=httpx.Timeout(REQUEST_TIMEOUT_SECONDS, connect=30.0),
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Accept": "application/json",
            },
        )
        return self

    async def __aexit__(self, *exc_info) -> None:
        http, self._http = self._http, None
        if http is not None:
            await http.aclose()

    def build_url(self, endpoint: str, beta: bool = False) -> str:
        """Absolute URLs (nextLinks) pass through; relative ones get the versioned base."""
        if endpoint.startswith(("https://", "http://")):
            return endpoint
        version = GRAPH_BETA_VERSION if beta else GRAPH_API_VERSION
        return f"{GRAPH_BASE_URL}/{version}/{endpoint.lstrip('/')}"

    async def fetch_page(self, request: PageRequest) -> PageResponse:
        """
        Fetch a single page. Seed params are only sent on the first page;
        a cursor is requested exactly as the server returned it.
        """
        url = request.target
        self.guardian.validate_request("GET", url)
        params = request.params if request.is_seed else None
        data = await self._execute("GET", url, params=params)
        return PageResponse.from_payload(data)

    async def post_action(
        self,
        endpoint: str,
        body: Optional[dict] = None,
        beta: bool = False,
    ) -> dict:
        """Execute a device action POST. The guardian decides whether it is allowed."""
        url = self.build_url(endpoint, beta=beta)
        self.guardian.validate_request("POST", url, body)
        return await self._execute("POST", url, json_body=body or {})

    async def _execute(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> Any:
        """Execute one request and map the response onto the error taxonomy."""
        if self._http is None:
            raise RuntimeError("GraphClient not initialized. Use 'async with' context.")
        if method not in ("GET", "POST"):
            raise SafetyViolation(f"Unsupported method: {method}")

        try:
            response = await self._http.request(method, url, params=params, json=json_body)
        except httpx.TimeoutException as e:
            raise TransientGraphError(0, f"Timeout: {e}", url) from e
        except httpx.TransportError as e:
            raise TransientGraphError(0, f"{type(e).__name__}: {e}", url) from e
        self._stats["total_requests"] += 1

        status = response.status_code
        if status in (200, 201, 202):
            if not response.content or not response.content.strip():
                # Actions answer 204/202 with no body; some lists answer 200 empty
                return {}
            try:
                return response.json()
            except ValueError:
                logger.debug(f"{status} response with non-JSON body from {url}")
                return {}

        if status == 204:
            return {}

        message = _error_message(response)

        if status in THROTTLE_STATUS_CODES:
            self._stats["throttle_events"] += 1
            retry_after = _retry_after(response)
            logger.warning(f"Throttled ({status}) on {url} — Retry-After: {retry_after}")
            raise RateLimitedError(status, message, url, retry_after=retry_after)

        if status in (401, 403):
            logger.warning(f"{status} on {url} — {message}")
            raise GraphAuthError(status, message, url)

        if status >= 500:
            raise TransientGraphError(status, message, url)

        raise GraphAPIError(status, message, url)

    def get_stats(self) -> dict:
        return dict(self._stats)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json() if response.content else {}
    except ValueError:
        return response.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message", response.text[:200])
    return response.text[:200]


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None
