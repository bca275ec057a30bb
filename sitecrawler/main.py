import argparse
import asyncio
import signal
import sys
from typing import Optional, Sequence

from loguru import logger
from pydantic import ValidationError

from sitecrawler.fetcher import Fetcher
from sitecrawler.monitoring.metrics_server import start_metrics_server
from sitecrawler.orchestrator import CrawlOrchestrator
from sitecrawler.scheduler import Scheduler
from sitecrawler.storage.postgres.postgres_init import close_db, init_db
from sitecrawler.storage.queue_manager import CrawlQueueManager
from sitecrawler.utils.config_loader import Config, load_config
from sitecrawler.utils.db_utils import mask_dsn
from sitecrawler.utils.logger import setup_logger


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sitecrawler",
        description="Crawl and archive the pages of a single site.",
    )
    parser.add_argument(
        "--seed",
        help="Seed URL. Omit to resume the scope of whatever is still queued.",
    )
    parser.add_argument("--max-depth", type=int, help="Maximum link depth from the seed")
    parser.add_argument("--workers", type=int, help="Number of concurrent workers")
    parser.add_argument(
        "--interval",
        type=float,
        help="Seconds between crawl runs (0 runs once)",
    )
    parser.add_argument("--once", action="store_true", help="Run a single crawl and exit")
    parser.add_argument("--config", help="Path to a YAML config file")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, ...)")
    return parser.parse_args(argv)


def build_orchestrator(config: Config, fetcher: Fetcher) -> CrawlOrchestrator:
    queue = CrawlQueueManager(
        max_attempts=config.max_attempts,
        slug_markers=config.article_slug_markers,
    )
    return CrawlOrchestrator(
        queue,
        fetcher,
        workers=config.workers,
        max_depth=config.max_depth,
        lease_seconds=config.lease_seconds,
        extraction_policy=config.extraction_policy(),
    )


async def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = load_config(
            args.config,
            seed_url=args.seed,
            max_depth=args.max_depth,
            workers=args.workers,
            crawl_interval=args.interval,
            log_level=args.log_level,
        )
    except ValidationError as exc:
        logger.error(f"Invalid configuration: {exc}")
        return 1

    setup_logger(config.log_level, config.log_path)
    logger.info("Starting site crawler...")

    # ---- Database ----
    try:
        await init_db(config.database_url)
    except Exception:
        logger.exception(f"Database initialization failed for {mask_dsn(config.database_url)}")
        return 1

    # ---- Metrics Server ----
    metrics_runner = None
    if config.metrics_port:
        try:
            metrics_runner, _ = await start_metrics_server(port=config.metrics_port)
        except OSError:
            logger.exception(f"Could not start metrics server on port {config.metrics_port}")
            await close_db()
            return 1

    fetcher = Fetcher(
        user_agent=config.crawler_user_agent,
        accept_language=config.accept_language,
        timeout=config.request_timeout,
        politeness_delay=config.politeness_delay,
        max_retries=config.max_retries,
        backoff_base=config.backoff_base,
    )

    try:
        async with fetcher:
            scheduler = Scheduler(
                build_orchestrator(config, fetcher),
                config.seed_url,
                max_depth=config.max_depth,
                interval_seconds=config.crawl_interval,
            )

            if args.once or config.crawl_interval <= 0:
                await scheduler.run_once()
                return 0

            shutdown_event = asyncio.Event()
            scheduler_task = asyncio.create_task(scheduler.run(shutdown_event))

            def _request_shutdown() -> None:
                logger.info("Shutdown requested; stopping crawler...")
                shutdown_event.set()
                scheduler_task.cancel()

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, _request_shutdown)

            try:
                await scheduler_task
            except asyncio.CancelledError:
                pass
            return 0
    finally:
        if metrics_runner is not None:
            await metrics_runner.shutdown()
            await metrics_runner.cleanup()
        await close_db()


def cli() -> None:
    try:
        import uvloop
        uvloop.install()
    except ImportError:
        logger.warning("uvloop not available, using default asyncio loop.")

    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
