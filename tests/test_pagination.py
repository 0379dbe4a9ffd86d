"""Tests for the paginated collector: cursor following, throttling, partial runs."""

from __future__ import annotations

import asyncio

import pytest

from intune_automation.collectors.base import (
    STATE_COMPLETED,
    STATE_COMPLETED_PARTIAL,
    STATE_THROTTLED,
    CollectionRun,
    FatalCollectionError,
    PaginatedCollector,
    RateLimitState,
)
from intune_automation.config import CollectionConfig
from intune_automation.graph.client import (
    GraphAPIError,
    GraphAuthError,
    RateLimitedError,
    TransientGraphError,
)
from intune_automation.graph.paging import PageRequest, PageResponse

from .conftest import ScriptedPages, page


def throttled(target: str = "x") -> RateLimitedError:
    return RateLimitedError(429, "Too many requests", target, retry_after=5.0)


def five_pages(failure_on: int = 0, failure: Exception = None) -> ScriptedPages:
    script = {}
    for n in range(1, 6):
        target = "seed" if n == 1 else f"p{n}"
        cursor = f"p{n + 1}" if n < 5 else None
        outcome = page([{"id": n * 10 + 1}, {"id": n * 10 + 2}], cursor)
        script[target] = [failure if n == failure_on else outcome]
    return ScriptedPages(script)


# ---------------------------------------------------------------------------
# Page model
# ---------------------------------------------------------------------------

class TestPageModel:
    def test_collection_payload(self) -> None:
        resp = PageResponse.from_payload({"value": [{"id": 1}], "@odata.nextLink": "next"})
        assert resp.records == [{"id": 1}]
        assert resp.cursor == "next"
        assert resp.has_more

    def test_bare_object_is_a_single_record(self) -> None:
        resp = PageResponse.from_payload({"id": "abc", "displayName": "x"})
        assert resp.records == [{"id": "abc", "displayName": "x"}]
        assert not resp.has_more

    def test_empty_and_non_object_payloads(self) -> None:
        assert PageResponse.from_payload({}).records == []
        assert PageResponse.from_payload(None).records == []
        assert PageResponse.from_payload([1, 2]).records == []

    def test_follow_uses_cursor_verbatim(self) -> None:
        cursor = "https://graph.microsoft.com/v1.0/x?$skiptoken=a%2Bb%3D%3D"
        nxt = PageRequest.follow(PageResponse(records=[], cursor=cursor))
        assert nxt.target == cursor
        assert nxt.params is None
        assert not nxt.is_seed

    def test_follow_without_cursor_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            PageRequest.follow(PageResponse(records=[{"id": 1}]))

    def test_seed(self) -> None:
        seed = PageRequest(uri="https://graph/x", params={"$top": "999"})
        assert seed.is_seed
        assert seed.target == "https://graph/x"


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------

class TestCollect:
    async def test_documented_two_page_scenario(self, sleeps, seed) -> None:
        fetch = ScriptedPages({
            "seed": [page([{"id": 1}, {"id": 2}], "page2")],
            "page2": [page([{"id": 3}])],
        })
        run = await PaginatedCollector(fetch).collect(seed)

        assert run.records == [{"id": 1}, {"id": 2}, {"id": 3}]
        assert run.fetch_calls == 2
        assert fetch.calls == ["seed", "page2"]
        assert run.rate_limit.total == 0
        # only the inter-page delay, no cool-down
        assert sleeps == [0.1]
        assert run.state == STATE_COMPLETED

    async def test_all_pages_concatenated_in_order(self, sleeps, seed) -> None:
        fetch = five_pages()
        run = await PaginatedCollector(fetch).collect(seed)

        assert [r["id"] for r in run.records] == [11, 12, 21, 22, 31, 32, 41, 42, 51, 52]
        assert len(fetch.calls) == 5
        assert run.pages == 5
        assert run.record_count == 10
        assert run.state == STATE_COMPLETED
        assert not run.is_partial

    async def test_no_delay_before_first_page(self, sleeps, seed) -> None:
        fetch = ScriptedPages({"seed": [page([{"id": 1}])]})
        await PaginatedCollector(fetch).collect(seed)
        assert sleeps == []

    async def test_zero_records_is_a_completed_run(self, sleeps, seed) -> None:
        fetch = ScriptedPages({"seed": [page([])]})
        run = await PaginatedCollector(fetch).collect(seed)
        assert run.records == []
        assert run.state == STATE_COMPLETED
        assert run.error is None

    async def test_throttled_page_is_retried_without_advancing(self, sleeps, seed) -> None:
        fetch = ScriptedPages({
            "seed": [page([{"id": 1}, {"id": 2}], "p2")],
            "p2": [throttled("p2"), page([{"id": 3}], "p3")],
            "p3": [page([{"id": 4}])],
        })
        run = await PaginatedCollector(fetch).collect(seed)

        assert [r["id"] for r in run.records] == [1, 2, 3, 4]
        assert fetch.calls == ["seed", "p2", "p2", "p3"]
        assert sleeps == [0.1, 60.0, 0.1]
        assert run.rate_limit.total == 1
        assert run.rate_limit.consecutive == 0
        assert run.rate_limit.backoff_seconds == 60.0
        assert run.fetch_calls == 4
        assert run.pages == 3
        assert run.state == STATE_COMPLETED

    async def test_repeated_throttling_keeps_waiting(self, sleeps, seed) -> None:
        fetch = ScriptedPages({
            "seed": [throttled(), throttled(), throttled(), page([{"id": 1}])],
        })
        run = await PaginatedCollector(fetch, throttle_cooldown=30.0).collect(seed)

        assert run.records == [{"id": 1}]
        assert sleeps == [30.0, 30.0, 30.0]
        assert run.rate_limit.total == 3
        assert run.state == STATE_COMPLETED

    async def test_run_is_throttled_while_cooling_down(self, monkeypatch, seed) -> None:
        collector = PaginatedCollector(ScriptedPages({
            "seed": [throttled(), page([{"id": 1}])],
        }))
        states = []

        async def watching_sleep(_seconds: float) -> None:
            states.append(collector.last_run.state)

        monkeypatch.setattr("intune_automation.collectors.base.asyncio.sleep", watching_sleep)
        await collector.collect(seed)
        assert states == [STATE_THROTTLED]

    async def test_mid_run_error_keeps_earlier_pages(self, sleeps, seed) -> None:
        fetch = five_pages(failure_on=3, failure=TransientGraphError(500, "boom", "p3"))
        run = await PaginatedCollector(fetch).collect(seed)

        assert [r["id"] for r in run.records] == [11, 12, 21, 22]
        assert fetch.calls == ["seed", "p2", "p3"]
        assert run.state == STATE_COMPLETED_PARTIAL
        assert run.is_partial
        assert "boom" in run.error

    async def test_later_auth_error_is_only_partial(self, sleeps, seed) -> None:
        fetch = ScriptedPages({
            "seed": [page([{"id": 1}], "p2")],
            "p2": [GraphAuthError(401, "expired", "p2")],
        })
        run = await PaginatedCollector(fetch).collect(seed)
        assert run.records == [{"id": 1}]
        assert run.is_partial

    @pytest.mark.parametrize("error", [
        GraphAuthError(401, "Unauthorized", "seed"),
        GraphAuthError(403, "Forbidden", "seed"),
        GraphAPIError(400, "Bad filter", "seed"),
        GraphAPIError(404, "Not found", "seed"),
        TransientGraphError(0, "ConnectError", "seed"),
    ])
    async def test_seed_failure_that_prevents_progress_is_fatal(self, sleeps, seed, error) -> None:
        fetch = ScriptedPages({"seed": [error]})
        collector = PaginatedCollector(fetch)
        with pytest.raises(FatalCollectionError) as exc_info:
            await collector.collect(seed)
        assert exc_info.value.cause is error
        assert exc_info.value.seed is seed
        assert collector.last_run.state == STATE_COMPLETED_PARTIAL

    async def test_seed_server_error_is_partial_not_fatal(self, sleeps, seed) -> None:
        fetch = ScriptedPages({"seed": [TransientGraphError(502, "Bad gateway", "seed")]})
        run = await PaginatedCollector(fetch).collect(seed)
        assert run.records == []
        assert run.state == STATE_COMPLETED_PARTIAL

    async def test_throttle_retry_cap_ends_run_as_partial(self, sleeps, seed) -> None:
        fetch = ScriptedPages({
            "seed": [page([{"id": 1}], "p2")],
            "p2": [throttled("p2")],
        })
        run = await PaginatedCollector(fetch, max_throttle_retries=2).collect(seed)

        assert run.records == [{"id": 1}]
        assert fetch.calls == ["seed", "p2", "p2", "p2"]
        assert sleeps == [0.1, 60.0, 60.0]
        assert run.state == STATE_COMPLETED_PARTIAL
        assert "throttled" in run.error.lower()
        assert run.rate_limit.total == 3
        assert run.rate_limit.backoff_seconds == 120.0

    async def test_deadline_inside_cool_down_stops_without_waiting(self, sleeps, seed) -> None:
        fetch = ScriptedPages({
            "seed": [page([{"id": 1}], "p2")],
            "p2": [throttled("p2"), page([{"id": 2}])],
        })
        run = await PaginatedCollector(fetch, deadline_seconds=5).collect(seed)

        assert run.records == [{"id": 1}]
        assert sleeps == [0.1]
        assert run.rate_limit.total == 1
        assert run.rate_limit.backoff_seconds == 0.0
        assert run.state == STATE_COMPLETED_PARTIAL
        assert "Deadline" in run.error

    async def test_deadline_stops_run(self, sleeps, seed) -> None:
        fetch = ScriptedPages({"seed": [page([{"id": 1}])]})
        run = await PaginatedCollector(fetch, deadline_seconds=0).collect(seed)
        assert fetch.calls == []
        assert run.state == STATE_COMPLETED_PARTIAL
        assert "Deadline" in run.error

    async def test_cancellation_propagates(self, sleeps, seed) -> None:
        fetch = ScriptedPages({"seed": [asyncio.CancelledError()]})
        with pytest.raises(asyncio.CancelledError):
            await PaginatedCollector(fetch).collect(seed)

    async def test_from_config(self) -> None:
        config = CollectionConfig(page_delay_seconds=0.5, throttle_cooldown_seconds=5.0,
                                  max_throttle_retries=3, deadline_seconds=120.0)
        collector = PaginatedCollector.from_config(ScriptedPages({}), config)
        assert collector.page_delay == 0.5
        assert collector.throttle_cooldown == 5.0
        assert collector.max_throttle_retries == 3
        assert collector.deadline_seconds == 120.0


class TestStream:
    async def test_stream_is_lazy(self, sleeps, seed) -> None:
        fetch = ScriptedPages({
            "seed": [page([{"id": 1}, {"id": 2}], "p2")],
            "p2": [page([{"id": 3}])],
        })
        gen = PaginatedCollector(fetch).stream(seed)
        first = await gen.__anext__()
        assert first == {"id": 1}
        assert fetch.calls == ["seed"]
        await gen.aclose()

    async def test_stream_restarts_from_seed(self, sleeps, seed) -> None:
        fetch = ScriptedPages({
            "seed": [page([{"id": 1}], "p2")],
            "p2": [page([{"id": 2}])],
        })
        collector = PaginatedCollector(fetch)
        first = [r async for r in collector.stream(seed)]
        second = [r async for r in collector.stream(seed)]
        assert first == second == [{"id": 1}, {"id": 2}]
        assert fetch.calls == ["seed", "p2", "seed", "p2"]

    async def test_each_run_owns_its_rate_limit_state(self, sleeps, seed) -> None:
        fetch = ScriptedPages({"seed": [throttled(), page([{"id": 1}])]})
        collector = PaginatedCollector(fetch)
        first = await collector.collect(seed)
        second = await collector.collect(seed)
        assert first.rate_limit.total == 1
        assert second.rate_limit.total == 0
        assert first.rate_limit is not second.rate_limit


class TestRunBookkeeping:
    def test_rate_limit_state(self) -> None:
        state = RateLimitState()
        state.record_throttle()
        state.record_throttle()
        assert state.consecutive == 2
        state.record_success()
        assert state.consecutive == 0
        assert state.total == 2
        assert state.backoff_seconds == 0.0
        state.record_wait(60.0)
        assert state.backoff_seconds == 60.0

    def test_to_dict(self) -> None:
        run = CollectionRun(seed=PageRequest(uri="https://graph/x"))
        run.finish(STATE_COMPLETED_PARTIAL, "boom")
        data = run.to_dict()
        assert data["endpoint"] == "https://graph/x"
        assert data["state"] == STATE_COMPLETED_PARTIAL
        assert data["error"] == "boom"
        assert run.is_finished
