"""
Paginated collection engine and base collector.

PaginatedCollector walks a Graph collection page by page, following
@odata.nextLink until the server stops returning one. Throttled pages are
retried after a fixed cool-down without advancing the cursor; any other
failure ends the run with the records gathered so far.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional

from ..config import CollectionConfig, PAGE_DELAY_SECONDS, THROTTLE_COOLDOWN_SECONDS
from ..graph.client import (
    GraphAPIError,
    GraphAuthError,
    GraphClient,
    RateLimitedError,
    TransientGraphError,
)
from ..graph.paging import PageRequest, PageResponse

logger = logging.getLogger("intune_automation.collectors")

PageFetcher = Callable[[PageRequest], Awaitable[PageResponse]]

# Run states
STATE_IDLE = "idle"
STATE_FETCHING = "fetching"
STATE_THROTTLED = "throttled"
STATE_COMPLETED = "completed"
STATE_COMPLETED_PARTIAL = "completed_partial"

# Errors on the seed page that mean the request can never succeed
FATAL_SEED_STATUS_CODES = (400, 404)


class FatalCollectionError(Exception):
    """The seed request failed in a way that prevents any progress."""
    def __init__(self, seed: PageRequest, cause: Exception):
        self.seed = seed
        self.cause = cause
        super().__init__(f"Collection of {seed.uri} failed: {cause}")


@dataclass
class RateLimitState:
    """Throttle bookkeeping for one collection run."""
    consecutive: int = 0
    total: int = 0
    backoff_seconds: float = 0.0  # cool-down time actually waited

    def record_throttle(self):
        self.consecutive += 1
        self.total += 1

    def record_wait(self, seconds: float):
        self.backoff_seconds += seconds

    def record_success(self):
        self.consecutive = 0


@dataclass
class CollectionRun:
    """Outcome of one pass over a paginated collection."""
    seed: PageRequest
    state: str = STATE_IDLE
    records: list[Any] = field(default_factory=list)
    record_count: int = 0
    fetch_calls: int = 0
    pages: int = 0
    rate_limit: RateLimitState = field(default_factory=RateLimitState)
    error: Optional[str] = None
    started_at: Optional[float] = None
    completed_at: Optional[float] = None

    @property
    def is_partial(self) -> bool:
        return self.state == STATE_COMPLETED_PARTIAL

    @property
    def is_finished(self) -> bool:
        return self.state in (STATE_COMPLETED, STATE_COMPLETED_PARTIAL)

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.completed_at if self.completed_at is not None else time.monotonic()
        return round(end - self.started_at, 2)

    def finish(self, state: str, error: Optional[str] = None):
        self.state = state
        self.error = error
        self.completed_at = time.monotonic()

    def to_dict(self) -> dict:
        return {
            "endpoint": self.seed.uri,
            "state": self.state,
            "records": self.record_count,
            "pages": self.pages,
            "fetch_calls": self.fetch_calls,
            "throttle_events": self.rate_limit.total,
            "backoff_seconds": self.rate_limit.backoff_seconds,
            "duration_seconds": self.duration_seconds,
            "error": self.error,
        }


class PaginatedCollector:
    """
    Sequential @odata.nextLink walker.

    stream() is a lazy async generator of raw records; every call starts
    again from the seed. collect() drains it into a CollectionRun.
    Exactly one request is in flight at a time.
    """

    def __init__(
        self,
        fetch: PageFetcher,
        page_delay: float = PAGE_DELAY_SECONDS,
        throttle_cooldown: float = THROTTLE_COOLDOWN_SECONDS,
        max_throttle_retries: Optional[int] = None,
        deadline_seconds: Optional[float] = None,
    ):
        self.fetch = fetch
        self.page_delay = page_delay
        self.throttle_cooldown = throttle_cooldown
        self.max_throttle_retries = max_throttle_retries
        self.deadline_seconds = deadline_seconds
        self.last_run: Optional[CollectionRun] = None

    @classmethod
    def from_config(cls, fetch: PageFetcher, config: CollectionConfig) -> "PaginatedCollector":
        return cls(
            fetch,
            page_delay=config.page_delay_seconds,
            throttle_cooldown=config.throttle_cooldown_seconds,
            max_throttle_retries=config.max_throttle_retries,
            deadline_seconds=config.deadline_seconds,
        )

    async def collect(self, seed: PageRequest) -> CollectionRun:
        """Fetch every page behind seed into a single ordered list."""
        run = CollectionRun(seed=seed)
        async for record in self.stream(seed, run):
            run.records.append(record)
        return run

    async def stream(
        self,
        seed: PageRequest,
        run: Optional[CollectionRun] = None,
    ) -> AsyncGenerator[Any, None]:
        """
        Yield raw records page by page in server order.
        A page is yielded only after it was fetched in full.
        """
        if run is None:
            run = CollectionRun(seed=seed)
        self.last_run = run
        run.started_at = time.monotonic()
        run.state = STATE_FETCHING

        request = seed
        while True:
            if not request.is_seed:
                await asyncio.sleep(self.page_delay)

            page = await self._fetch_page(request, run)
            if page is None:
                return

            run.pages += 1
            run.record_count += len(page.records)
            for record in page.records:
                yield record

            if not page.has_more:
                run.finish(STATE_COMPLETED)
                logger.debug(
                    f"Collected {run.record_count} records from {seed.uri} "
                    f"in {run.pages} pages ({run.fetch_calls} calls)"
                )
                return
            request = PageRequest.follow(page)

    async def _fetch_page(self, request: PageRequest, run: CollectionRun) -> Optional[PageResponse]:
        """Fetch one page, waiting out throttling. None means the run has ended."""
        while True:
            if self._deadline_passed(run):
                self._stop(run, f"Deadline of {self.deadline_seconds}s exceeded")
                return None

            run.fetch_calls += 1
            try:
                page = await self.fetch(request)
            except RateLimitedError as e:
                run.state = STATE_THROTTLED
                run.rate_limit.record_throttle()
                if (
                    self.max_throttle_retries is not None
                    and run.rate_limit.consecutive > self.max_throttle_retries
                ):
                    self._stop(
                        run,
                        f"Still throttled after {self.max_throttle_retries} retries: {e}",
                    )
                    return None
                time_left = self._time_left(run)
                if time_left is not None and time_left < self.throttle_cooldown:
                    self._stop(
                        run,
                        f"Deadline of {self.deadline_seconds}s falls inside the "
                        f"{self.throttle_cooldown:.0f}s cool-down: {e}",
                    )
                    return None
                logger.warning(
                    f"Throttled on {request.target} "
                    f"(event {run.rate_limit.consecutive}); "
                    f"waiting {self.throttle_cooldown:.0f}s before retrying the same page"
                )
                await asyncio.sleep(self.throttle_cooldown)
                run.rate_limit.record_wait(self.throttle_cooldown)
                run.state = STATE_FETCHING
                continue
            except Exception as e:
                if run.pages == 0 and _is_fatal(e):
                    run.finish(STATE_COMPLETED_PARTIAL, str(e))
                    raise FatalCollectionError(run.seed, e) from e
                self._stop(run, f"{type(e).__name__}: {e}")
                return None

            run.rate_limit.record_success()
            return page

    def _time_left(self, run: CollectionRun) -> Optional[float]:
        """Seconds until the deadline; None without one."""
        if self.deadline_seconds is None or run.started_at is None:
            return None
        return self.deadline_seconds - (time.monotonic() - run.started_at)

    def _deadline_passed(self, run: CollectionRun) -> bool:
        time_left = self._time_left(run)
        return time_left is not None and time_left <= 0

    @staticmethod
    def _stop(run: CollectionRun, reason: str):
        run.finish(STATE_COMPLETED_PARTIAL, reason)
        logger.warning(
            f"Collection of {run.seed.uri} stopped after {run.pages} pages "
            f"({run.record_count} records kept): {reason}"
        )


def _is_fatal(error: Exception) -> bool:
    if isinstance(error, GraphAuthError):
        return True
    # status 0: no HTTP response at all (connect failure, timeout)
    if isinstance(error, TransientGraphError):
        return error.status_code == 0
    return (
        type(error) is GraphAPIError
        and error.status_code in FATAL_SEED_STATUS_CODES
    )


class BaseCollector:
    """
    Base class for domain collectors.

    Subclasses describe endpoints and query options; the base class provides:
      - Seed construction against v1.0 or beta
      - Paginated collection with the configured throttle policy
      - A log of every run for the report summary
    """

    name: str = "base"
    description: str = "Base collector"

    def __init__(self, graph: GraphClient, config: CollectionConfig):
        self.graph = graph
        self.config = config
        self.runs: list[CollectionRun] = []

    def seed(self, endpoint: str, params: Optional[dict] = None, beta: bool = False) -> PageRequest:
        return PageRequest(uri=self.graph.build_url(endpoint, beta=beta), params=params)

    def paginator(self) -> PaginatedCollector:
        return PaginatedCollector.from_config(self.graph.fetch_page, self.config)

    async def collect_all(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        beta: bool = False,
    ) -> CollectionRun:
        """Collect every record behind endpoint; partial runs are logged, not raised."""
        run = await self.paginator().collect(self.seed(endpoint, params, beta))
        self.runs.append(run)
        if run.is_partial:
            logger.warning(f"[{self.name}] Partial data from {endpoint}: {run.error}")
        else:
            logger.info(f"[{self.name}] {run.record_count} records from {endpoint}")
        return run
