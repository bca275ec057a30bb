from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

from loguru import logger

from sitecrawler.errors import FetchError
from sitecrawler.fetcher import Fetcher
from sitecrawler.monitoring.metrics_server import (
    CRAWLED_PAGES,
    SKIPPED_LINKS,
    WORKER_ACTIVE,
    WORKER_FAILED,
    WORKER_PROCESSED,
)
from sitecrawler.parsing.html_extractor import ExtractionPolicy, extract_page
from sitecrawler.storage.models.page_model import Page
from sitecrawler.storage.models.queue_model import QueueItem, QueueStatus
from sitecrawler.storage.queue_manager import CrawlQueueManager
from sitecrawler.utils.filters import is_crawlable
from sitecrawler.utils.url_utils import canonicalize, get_hostname, is_in_scope

if TYPE_CHECKING:
    from sitecrawler.orchestrator import RunContext


class Worker:
    def __init__(
        self,
        queue: CrawlQueueManager,
        fetcher: Fetcher,
        context: "RunContext",
        worker_id: int,
        extraction_policy: Optional[ExtractionPolicy] = None,
    ):
        self.queue = queue
        self.fetcher = fetcher
        self.context = context
        self.worker_id = worker_id
        self.name = f"Worker-{worker_id}"
        self.extraction_policy = extraction_policy or ExtractionPolicy()

    # --------------------------
    #  Link discovery
    # --------------------------
    def scoped_links(self, links: List[str], page_url: str) -> List[str]:
        """Canonical, in-scope, crawlable forms of ``links``."""
        accepted: List[str] = []
        seen: set[str] = set()

        for link in links:
            canonical = canonicalize(link, page_url)
            if canonical is None:
                SKIPPED_LINKS.labels(reason="malformed").inc()
                continue
            if not is_in_scope(get_hostname(canonical), self.context.root_hostname):
                SKIPPED_LINKS.labels(reason="out_of_scope").inc()
                continue
            if not is_crawlable(canonical):
                SKIPPED_LINKS.labels(reason="asset").inc()
                continue
            if canonical == page_url or canonical in seen:
                continue
            seen.add(canonical)
            accepted.append(canonical)

        return accepted

    # --------------------------
    #  Failure bookkeeping
    # --------------------------
    async def _record_failure(self, item: QueueItem, url: str, exc: Exception) -> None:
        status = await self.queue.mark_failed(item, exc)
        self.context.stats.failed += 1
        WORKER_FAILED.labels(worker_id=str(self.worker_id)).inc()

        if status is QueueStatus.FAILED:
            logger.error(
                f"[{self.name}] Giving up on {url} after {item.attempts} attempts: {exc}"
            )
        else:
            logger.warning(
                f"[{self.name}] Failed {url} (attempt {item.attempts}), "
                f"left for a later run: {exc}"
            )

    # --------------------------
    #  Main processing
    # --------------------------
    async def process_item(self, item: QueueItem) -> None:
        worker_label = str(self.worker_id)
        stats = self.context.stats

        url = canonicalize(item.url)
        if url is None:
            await self.queue.mark_normalize_failed(item)
            stats.normalize_failed += 1
            WORKER_FAILED.labels(worker_id=worker_label).inc()
            logger.warning(f"[{self.name}] Cannot normalize queued URL {item.url!r}")
            return

        if not await self.context.visited.add_if_absent(url):
            await self.queue.mark_done(item)
            stats.duplicates += 1
            logger.debug(f"[{self.name}] Already handled this run: {url}")
            return

        logger.info(f"[{self.name}] Crawling: {url} depth: {item.depth}")

        try:
            html = await self.fetcher.fetch(url)
        except FetchError as exc:
            await self._record_failure(item, url, exc)
            return

        try:
            page = extract_page(html, base_url=url, policy=self.extraction_policy)
            await Page.upsert(
                url,
                title=page.title,
                description=page.description,
                content=page.content,
            )
            CRAWLED_PAGES.inc()

            link_count = 0
            if item.depth < self.context.max_depth:
                links = self.scoped_links(page.links, url)
                link_count = await self.queue.enqueue_many(links, depth=item.depth + 1)
                stats.links_enqueued += link_count
        except Exception as exc:
            logger.exception(f"[{self.name}] Error processing {url}")
            await self._record_failure(item, url, exc)
            return

        await self.queue.mark_done(item)
        stats.processed += 1
        WORKER_PROCESSED.labels(worker_id=worker_label).inc()
        logger.info(
            f"[{self.name}] Archived: {url} (content={'yes' if page.content else 'no'}, links={link_count})"
        )

    # --------------------------
    #  Worker loop
    # --------------------------
    async def _claim_next(self) -> Optional[QueueItem]:
        while True:
            generation = await self.context.begin_claim()
            if generation is None:
                return None

            try:
                batch = await self.queue.claim_batch(1, claimed_before=self.context.started_at)
            except Exception:
                await self.context.abandon_claim()
                raise

            if batch:
                return batch[0]

            if not await self.context.wait_for_work(generation):
                return None

    async def run(self) -> None:
        worker_label = str(self.worker_id)
        WORKER_ACTIVE.labels(worker_id=worker_label).set(1.0)

        logger.info(f"{self.name} started.")

        try:
            while True:
                item = await self._claim_next()
                if item is None:
                    logger.info(f"{self.name} found no claimable work; stopping.")
                    break

                try:
                    await self.process_item(item)
                finally:
                    await self.context.finish_item()
        finally:
            WORKER_ACTIVE.labels(worker_id=worker_label).set(0.0)
