"""
Crawl scheduling.

A double-ended work queue drained by ``max_concurrency`` asyncio
workers. New work joins the back, retries re-enter at the front after
a randomized exponential backoff. ``request_stop`` is the only
cancellation primitive: it closes admission and stops dispatching, and
whatever is already in flight finishes on its own.
"""

import asyncio
import logging
import random
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Iterable, List, Optional, Set
from urllib.parse import urlparse

from emlak.config import TimingConfig
from emlak.constants import DEFAULT_MAX_ATTEMPTS, EXPONENTIAL_BACKOFF_BASE
from emlak.errors import NonRetryableError, NoValidSeedsError
from emlak.models import CrawlRequest, CrawlStats, RequestRole
from emlak.state import CrawlState

logger = logging.getLogger(__name__)


RequestProcessor = Callable[[CrawlRequest], Awaitable[Any]]


def _is_valid_url(url: Any) -> bool:
    if not isinstance(url, str) or not url.strip():
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class CrawlScheduler:
    """Work queue with bounded retries, a request ceiling and a stop flag."""

    def __init__(
        self,
        state: CrawlState,
        process: Optional[RequestProcessor] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        timing: Optional[TimingConfig] = None,
        rng: Optional[random.Random] = None,
        idle_poll_secs: float = 0.5,
    ):
        """
        Initialize the scheduler.

        Args:
            state: Shared crawl state (stop flag, ceilings, failure ledger)
            process: Coroutine that executes one request; errors mean failure
            max_attempts: Maximum tries per request
            timing: Backoff bounds
            rng: Random generator for backoff jitter
            idle_poll_secs: Upper bound on how long an idle worker sleeps
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.state = state
        self.max_attempts = max_attempts
        self.timing = timing or TimingConfig()
        self.idle_poll_secs = idle_poll_secs
        self._process = process
        self._rng = rng or random.Random()

        self._queue: Deque[CrawlRequest] = deque()
        self._seen: Set[str] = set()
        self._cond = asyncio.Condition()
        self._in_flight = 0
        self._stats = CrawlStats()
        self._wake_task: Optional[asyncio.Task] = None

    def set_processor(self, process: RequestProcessor) -> None:
        self._process = process

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def pending(self) -> List[CrawlRequest]:
        """Snapshot of queued requests, front first."""
        return list(self._queue)

    def seed(self, seeds: Iterable[Any]) -> int:
        """
        Add the entry points of the crawl.

        Accepts CrawlRequest objects, mappings with a ``url`` key (and an
        optional ``label``/``role``) or bare URL strings. Invalid entries
        are skipped with a warning.

        Returns:
            Number of requests seeded

        Raises:
            NoValidSeedsError: if no valid entry point remains
        """
        added = 0
        for entry in seeds or []:
            request = self._coerce_seed(entry)
            if request is None:
                logger.warning(f"Skipping invalid start URL: {entry!r}")
                continue
            if request.url in self._seen:
                continue
            self._seen.add(request.url)
            self._queue.append(request)
            self.state.requests_admitted += 1
            added += 1

        if not added:
            raise NoValidSeedsError("No valid start URLs provided")

        logger.info(f"Seeded {added} start URL(s)")
        return added

    @staticmethod
    def _coerce_seed(entry: Any) -> Optional[CrawlRequest]:
        if isinstance(entry, CrawlRequest):
            return entry if _is_valid_url(entry.url) else None

        if isinstance(entry, dict):
            url = entry.get("url")
            label = entry.get("label") or entry.get("role") or (entry.get("userData") or {}).get("label")
            try:
                role = RequestRole(str(label).upper()) if label else RequestRole.CATEGORY
            except ValueError:
                return None
        else:
            url, role = entry, RequestRole.CATEGORY

        if not _is_valid_url(url):
            return None
        return CrawlRequest(url=url.strip(), role=role)

    async def enqueue(self, request: CrawlRequest) -> bool:
        """
        Admit follow-up work at the back of the queue.

        Returns:
            True if the request was queued
        """
        if self.state.stop_requested:
            logger.debug(f"Stop requested, not enqueueing {request.url}")
            return False

        if not _is_valid_url(request.url):
            logger.warning(f"Refusing invalid URL: {request.url!r}")
            return False

        async with self._cond:
            if request.url in self._seen:
                logger.debug(f"Already seen, skipping {request.url}")
                return False
            if self.state.requests_admitted >= self.state.max_requests:
                logger.warning(
                    f"Request ceiling ({self.state.max_requests}) reached, not enqueueing {request.url}"
                )
                return False

            self._seen.add(request.url)
            self._queue.append(request)
            self.state.requests_admitted += 1
            self._cond.notify()
        return True

    def request_stop(self, reason: str = "stop requested") -> bool:
        """Stop admission and dispatch. Idempotent; True on the first call."""
        first = self.state.request_stop(reason)
        if first:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return first
            self._wake_task = loop.create_task(self._wake_all())
        return first

    async def _wake_all(self) -> None:
        async with self._cond:
            self._cond.notify_all()

    async def run(self) -> CrawlStats:
        """
        Drain the queue with ``max_concurrency`` workers.

        Returns:
            CrawlStats for the run
        """
        if self._process is None:
            raise RuntimeError("No request processor set")

        self._stats = CrawlStats()
        concurrency = max(1, self.state.max_concurrency)
        logger.info(f"Starting crawl: {len(self._queue)} queued, {concurrency} workers")

        workers = [asyncio.create_task(self._worker(i)) for i in range(concurrency)]
        try:
            await asyncio.gather(*workers)
        finally:
            for worker in workers:
                if not worker.done():
                    worker.cancel()

        stats = self._stats
        stats.emitted = self.state.governor.emitted
        stats.failed = dict(self.state.failed_requests)
        stats.stopped_early = self.state.stop_requested
        stats.finished_at = datetime.now()

        logger.info(
            f"Crawl finished: {stats.emitted} records, "
            f"{stats.requests_succeeded}/{stats.requests_dispatched} requests succeeded, "
            f"{stats.retries} retries, {len(stats.failed)} failed"
        )
        if self._queue:
            logger.info(f"{len(self._queue)} queued request(s) left undispatched")
        return stats

    async def _worker(self, worker_id: int) -> None:
        while True:
            request = await self._next_request()
            if request is None:
                logger.debug(f"Worker {worker_id} exiting")
                return
            try:
                await self._execute(request)
            finally:
                async with self._cond:
                    self._in_flight -= 1
                    self._cond.notify_all()

    async def _next_request(self) -> Optional[CrawlRequest]:
        """Pop the next request, or None once the crawl is over."""
        async with self._cond:
            while True:
                if self.state.stop_requested:
                    return None
                if self._queue:
                    self._in_flight += 1
                    return self._queue.popleft()
                if self._in_flight == 0:
                    return None
                try:
                    await asyncio.wait_for(self._cond.wait(), timeout=self.idle_poll_secs)
                except asyncio.TimeoutError:
                    pass

    async def _execute(self, request: CrawlRequest) -> None:
        self._stats.requests_dispatched += 1
        logger.info(f"Processing [{request.label}] (attempt {request.attempt + 1}): {request.url}")
        try:
            await self._process(request)
        except Exception as e:
            await self._handle_error(request, e)
        else:
            self._stats.requests_succeeded += 1

    def _calculate_backoff_delay(self, retry_count: int) -> float:
        """Calculate exponential backoff delay with jitter.

        Args:
            retry_count: Number of retries already attempted (0-indexed)

        Returns:
            Delay in seconds before next retry
        """
        delay = self.timing.initial_backoff_secs * (EXPONENTIAL_BACKOFF_BASE ** retry_count)
        delay = min(delay, self.timing.max_backoff_secs)
        # ±25% jitter
        jitter = delay * self._rng.uniform(-0.25, 0.25)
        return max(0.0, delay + jitter)

    async def _handle_error(self, request: CrawlRequest, error: Exception) -> None:
        """Retry a failed request at the front of the queue, or record it as failed."""
        attempts = request.attempt + 1
        retryable = not isinstance(error, NonRetryableError)

        if not retryable or attempts >= self.max_attempts:
            self._record_failure(request, error, attempts)
            return

        if self.state.stop_requested:
            logger.info(f"Stop requested, dropping retry of {request.url}")
            return

        backoff_delay = self._calculate_backoff_delay(request.attempt)
        self._stats.retries += 1
        logger.info(
            f"Will retry ({attempts + 1}/{self.max_attempts}) after {backoff_delay:.1f}s: "
            f"{request.url} ({type(error).__name__}: {error})"
        )

        if backoff_delay > 0:
            await asyncio.sleep(backoff_delay)

        async with self._cond:
            if self.state.stop_requested:
                logger.info(f"Stop requested, dropping retry of {request.url}")
                return
            self._queue.appendleft(request.next_attempt(error))
            self._cond.notify()

    def _record_failure(self, request: CrawlRequest, error: Exception, attempts: int) -> None:
        self.state.record_failure(request.url, error, attempts, request.label)
        logger.warning(
            f"Request failed permanently after {attempts} attempt(s): {request.url} "
            f"({type(error).__name__}: {error})"
        )
