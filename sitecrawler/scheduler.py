import asyncio
from typing import Optional

from loguru import logger

from sitecrawler.orchestrator import CrawlOrchestrator, RunStats


class Scheduler:
    """Trigger a crawl run now and then again every ``interval_seconds``."""

    def __init__(
        self,
        orchestrator: CrawlOrchestrator,
        seed_url: Optional[str],
        max_depth: Optional[int] = None,
        interval_seconds: float = 180.0,
    ):
        self.orchestrator = orchestrator
        self.seed_url = seed_url
        self.max_depth = max_depth
        self.interval_seconds = interval_seconds
        self.runs = 0

    async def run_once(self) -> Optional[RunStats]:
        self.runs += 1
        try:
            stats = await self.orchestrator.run(self.seed_url, self.max_depth)
        except Exception:
            logger.exception(f"Crawl run #{self.runs} failed")
            return None

        logger.info(f"Crawl run #{self.runs} finished")
        return stats

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        stop_event = stop_event or asyncio.Event()
        logger.info(f"Scheduler started (interval={self.interval_seconds}s)...")

        while not stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

        logger.info("Scheduler stopped.")
