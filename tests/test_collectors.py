"""Tests for the domain collectors' Graph queries, run against ``respx``."""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest
import respx

from intune_automation.collectors import AppCollector, AuditCollector
from intune_automation.config import CollectionConfig
from intune_automation.graph.client import GraphClient
from intune_automation.models import Application
from intune_automation.safety.guardian import SafetyGuardian

AUDIT = "https://graph.microsoft.com/v1.0/deviceManagement/auditEvents"
PORTAL_STATUS = "https://graph.microsoft.com/beta/deviceAppManagement/mobileApps/a1/deviceStatuses"
NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
async def graph():
    async with GraphClient(access_token="token", guardian=SafetyGuardian()) as client:
        yield client


class TestAuditCollector:
    @respx.mock
    async def test_window_filter(self, graph, sleeps) -> None:
        route = respx.get(AUDIT).mock(return_value=httpx.Response(200, json={"value": [{"id": "e1"}]}))
        run = await AuditCollector(graph, CollectionConfig()).collect_events(7, now=NOW)

        assert run.records == [{"id": "e1"}]
        params = route.calls.last.request.url.params
        assert params["$filter"] == "activityDateTime gt 2024-05-08T12:00:00Z"

    @respx.mock
    async def test_category_is_quoted(self, graph, sleeps) -> None:
        route = respx.get(AUDIT).mock(return_value=httpx.Response(200, json={"value": []}))
        await AuditCollector(graph, CollectionConfig()).collect_events(1, "O'Brien Config", now=NOW)

        assert route.calls.last.request.url.params["$filter"] == (
            "activityDateTime gt 2024-05-14T12:00:00Z and category eq 'O''Brien Config'"
        )


class TestAppCollector:
    STATUSES = {"value": [
        {"deviceName": "LAPTOP-1", "installState": "failed"},
        {"deviceName": "LAPTOP-2", "installState": "Installed"},
        {"deviceName": "LAPTOP-3"},
        "junk",
    ]}

    @respx.mock
    async def test_install_statuses_unfiltered(self, graph, sleeps) -> None:
        respx.get(PORTAL_STATUS).mock(return_value=httpx.Response(200, json=self.STATUSES))
        collector = AppCollector(graph, CollectionConfig())
        run = await collector.collect_install_statuses(Application(id="a1", display_name="Company Portal"))

        assert len(run.records) == 4
        assert collector.runs == [run]

    @respx.mock
    async def test_install_state_filter_ignores_case(self, graph, sleeps) -> None:
        respx.get(PORTAL_STATUS).mock(return_value=httpx.Response(200, json=self.STATUSES))
        run = await AppCollector(graph, CollectionConfig()).collect_install_statuses(
            Application(id="a1", display_name="Company Portal"), "installed"
        )
        assert [r["deviceName"] for r in run.records] == ["LAPTOP-2"]
