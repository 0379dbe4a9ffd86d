"""
Page request/response model for @odata.nextLink pagination.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

NEXT_LINK_KEY = "@odata.nextLink"


@dataclass(frozen=True)
class PageRequest:
    """
    Locator for one page of a Graph collection.

    A request with a cursor is only ever built by follow() from the response
    that produced the cursor. The cursor is used as the target URI verbatim.
    """
    uri: str
    cursor: Optional[str] = None
    params: Optional[dict[str, str]] = None

    @property
    def target(self) -> str:
        return self.cursor or self.uri

    @property
    def is_seed(self) -> bool:
        return self.cursor is None

    @classmethod
    def follow(cls, response: "PageResponse") -> "PageRequest":
        if not response.cursor:
            raise ValueError("Response carries no continuation cursor")
        # nextLink already encodes the seed query ($select, $filter, $top)
        return cls(uri=response.cursor, cursor=response.cursor)


@dataclass(frozen=True)
class PageResponse:
    records: list[Any] = field(default_factory=list)
    cursor: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return bool(self.cursor)

    @classmethod
    def from_payload(cls, payload: Any) -> "PageResponse":
        """Build a page from a Graph JSON body (collection or single object)."""
        if not isinstance(payload, dict):
            return cls()
        cursor = payload.get(NEXT_LINK_KEY) or None
        if "value" in payload and isinstance(payload["value"], list):
            return cls(records=list(payload["value"]), cursor=cursor)
        if not payload:
            return cls()
        return cls(records=[payload], cursor=cursor)
