"""Shared fixtures.

- ``sleeps`` replaces ``asyncio.sleep`` with a recorder so cool-downs and
  inter-page delays cost nothing and can be asserted on.
- ``ScriptedPages`` is a fake page-fetch collaborator: each target URI maps
  to a list of outcomes (a ``PageResponse`` or an exception) consumed in
  order, so a page can be throttled and then succeed.
"""

from __future__ import annotations

from typing import Any, Optional

import pytest

from intune_automation.graph.paging import PageRequest, PageResponse


def page(records: list[Any], cursor: Optional[str] = None) -> PageResponse:
    return PageResponse(records=list(records), cursor=cursor)


class ScriptedPages:
    def __init__(self, script: dict[str, list[Any]]):
        self.script = {target: list(outcomes) for target, outcomes in script.items()}
        self.calls: list[str] = []

    async def __call__(self, request: PageRequest) -> PageResponse:
        self.calls.append(request.target)
        outcomes = self.script[request.target]
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    recorded: list[float] = []

    async def fake_sleep(seconds: float, *_args: object, **_kwargs: object) -> None:
        recorded.append(seconds)

    monkeypatch.setattr("intune_automation.collectors.base.asyncio.sleep", fake_sleep)
    return recorded


@pytest.fixture
def seed() -> PageRequest:
    return PageRequest(uri="seed")
