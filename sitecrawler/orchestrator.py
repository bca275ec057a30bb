from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from loguru import logger
from tortoise import timezone

from sitecrawler.errors import MalformedURLError
from sitecrawler.fetcher import Fetcher
from sitecrawler.monitoring.metrics_server import QUEUE_PENDING
from sitecrawler.parsing.html_extractor import ExtractionPolicy
from sitecrawler.storage.queue_manager import CrawlQueueManager
from sitecrawler.utils.url_utils import canonicalize, get_hostname, require_canonical, strip_www
from sitecrawler.worker import Worker


DEFAULT_WORKERS = 5
DEFAULT_MAX_DEPTH = 6
DEFAULT_LEASE_SECONDS = 1800.0


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINED = "drained"


class VisitedSet:
    """Canonical URLs handled during one run, safe to share between workers."""

    def __init__(self) -> None:
        self._urls: set[str] = set()
        self._lock = asyncio.Lock()

    async def add_if_absent(self, url: str) -> bool:
        """Record ``url``; False if some worker already recorded it."""
        async with self._lock:
            if url in self._urls:
                return False
            self._urls.add(url)
            return True

    def __contains__(self, url: object) -> bool:
        return url in self._urls

    def __len__(self) -> int:
        return len(self._urls)


@dataclass
class RunStats:
    processed: int = 0
    failed: int = 0
    normalize_failed: int = 0
    duplicates: int = 0
    links_enqueued: int = 0
    workers_crashed: int = 0


class RunContext:
    """
    Everything a run's workers share: the crawl scope, the visited set and
    the bookkeeping that decides when the pool has drained.

    A worker that finds the queue empty only exits once no other worker is
    claiming or processing, since in-flight items may still enqueue links.
    """

    def __init__(self, root_hostname: str, max_depth: int, started_at: datetime) -> None:
        self.root_hostname = root_hostname
        self.max_depth = max_depth
        self.started_at = started_at
        self.visited = VisitedSet()
        self.stats = RunStats()

        self._cond = asyncio.Condition()
        self._in_flight = 0
        self._generation = 0
        self._drained = False

    @property
    def drained(self) -> bool:
        return self._drained

    async def begin_claim(self) -> Optional[int]:
        """Register a claim attempt. Returns None once the run has drained."""
        async with self._cond:
            if self._drained:
                return None
            self._in_flight += 1
            return self._generation

    async def finish_item(self) -> None:
        async with self._cond:
            self._in_flight -= 1
            self._generation += 1
            self._cond.notify_all()

    async def abandon_claim(self) -> None:
        async with self._cond:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._cond.notify_all()

    async def wait_for_work(self, generation: int) -> bool:
        """
        Called after an empty claim. True means "claim again", False means
        the run has drained and the worker should exit.
        """
        async with self._cond:
            self._in_flight -= 1
            if self._drained:
                return False
            if self._generation != generation:
                return True
            if self._in_flight == 0:
                self._drained = True
                self._cond.notify_all()
                return False

            await self._cond.wait()
            return not self._drained


class CrawlOrchestrator:
    """
    Runs one crawl at a time over the persistent queue:
    ``IDLE -> RUNNING -> DRAINED``.
    """

    def __init__(
        self,
        queue: CrawlQueueManager,
        fetcher: Fetcher,
        *,
        workers: int = DEFAULT_WORKERS,
        max_depth: int = DEFAULT_MAX_DEPTH,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
        extraction_policy: Optional[ExtractionPolicy] = None,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")

        self.queue = queue
        self.fetcher = fetcher
        self.worker_count = workers
        self.max_depth = max_depth
        self.lease_seconds = lease_seconds
        self.extraction_policy = extraction_policy or ExtractionPolicy()
        self.state = RunState.IDLE
        self.context: Optional[RunContext] = None
        self._unusable_on_resume = 0

    async def _resolve_root(self, seed_url: Optional[str]) -> Optional[str]:
        if seed_url:
            try:
                canonical_seed = require_canonical(seed_url)
            except MalformedURLError:
                logger.error(f"Seed URL is not a usable http(s) URL: {seed_url!r}")
                return None
            await self.queue.enqueue(canonical_seed, depth=0)
            logger.info(f"Seed queued: {canonical_seed}")
            return strip_www(get_hostname(canonical_seed))

        # resume: take the scope from the oldest usable queued item
        while True:
            item = await self.queue.first_queued_item()
            if item is None:
                logger.info("No seed given and nothing usable queued; nothing to crawl.")
                return None

            hostname = get_hostname(canonicalize(item.url) or "")
            if hostname:
                return strip_www(hostname)

            await self.queue.mark_normalize_failed(item)
            self._unusable_on_resume += 1
            logger.warning(f"Cannot infer the crawl scope from queued URL {item.url!r}; marked failed")

    async def run(self, seed_url: Optional[str] = None, max_depth: Optional[int] = None) -> RunStats:
        if self.state is RunState.RUNNING:
            raise RuntimeError("A crawl run is already in progress")

        self.state = RunState.IDLE
        depth_limit = self.max_depth if max_depth is None else max_depth
        self._unusable_on_resume = 0

        requeued = await self.queue.requeue_stale(self.lease_seconds)
        if requeued:
            logger.info(f"Lease reconciliation returned {requeued} stale items to the queue")

        root_hostname = await self._resolve_root(seed_url)
        if root_hostname is None:
            self.state = RunState.DRAINED
            return RunStats(normalize_failed=self._unusable_on_resume)

        context = RunContext(root_hostname, depth_limit, timezone.now())
        context.stats.normalize_failed = self._unusable_on_resume
        self.context = context
        self.state = RunState.RUNNING
        QUEUE_PENDING.set(await self.queue.count_queued())

        logger.info(
            f"Crawl started for {root_hostname} "
            f"(workers={self.worker_count}, max_depth={depth_limit})"
        )

        workers = [
            Worker(self.queue, self.fetcher, context, worker_id, self.extraction_policy)
            for worker_id in range(self.worker_count)
        ]
        results = await asyncio.gather(
            *(worker.run() for worker in workers),
            return_exceptions=True,
        )

        for worker, result in zip(workers, results):
            if isinstance(result, Exception):
                context.stats.workers_crashed += 1
                logger.opt(exception=result).error(f"{worker.name} stopped on a queue error")

        self.state = RunState.DRAINED
        QUEUE_PENDING.set(await self.queue.count_queued())

        stats = context.stats
        logger.info(
            f"Crawl drained for {root_hostname}: processed={stats.processed} "
            f"failed={stats.failed} normalize_failed={stats.normalize_failed} "
            f"duplicates={stats.duplicates} visited={len(context.visited)}"
        )
        return stats
