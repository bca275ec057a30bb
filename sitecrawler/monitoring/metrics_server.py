from aiohttp import web
from loguru import logger
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    generate_latest,
    Counter,
    Gauge,
    Histogram,
)

# -------------------------
# Worker-Level Metrics
# -------------------------

WORKER_PROCESSED = Counter(
    "sitecrawler_worker_processed_total",
    "Queue items finished (done) by a worker",
    ["worker_id"],
)

WORKER_FAILED = Counter(
    "sitecrawler_worker_failed_total",
    "Queue items a worker recorded as failed",
    ["worker_id"],
)

WORKER_ACTIVE = Gauge(
    "sitecrawler_worker_active",
    "Worker active state",
    ["worker_id"],
)

# -------------------------
# Request Metrics
# -------------------------

REQUEST_COUNT = Counter(
    "sitecrawler_requests_total",
    "HTTP requests by outcome",
    ["outcome"],
)

FETCH_RETRIES = Counter(
    "sitecrawler_fetch_retries_total",
    "Fetch retries by failure class",
    ["reason"],
)

REQUEST_LATENCY = Histogram(
    "sitecrawler_request_latency_seconds",
    "Time to fetch a page",
)

CRAWLED_PAGES = Counter(
    "sitecrawler_crawled_pages_total",
    "Pages archived",
)

SKIPPED_LINKS = Counter(
    "sitecrawler_skipped_links_total",
    "Discovered links that were not enqueued",
    ["reason"],
)

# -------------------------
# Queue Metrics
# -------------------------

QUEUE_PENDING = Gauge(
    "sitecrawler_queue_pending",
    "Number of URLs waiting in queue"
)


# -------------------------
# HTTP endpoints
# -------------------------

async def metrics_handler(request):
    # aiohttp rejects a content_type that carries a charset
    return web.Response(
        body=generate_latest(),
        content_type=CONTENT_TYPE_LATEST.split(";")[0],
    )


async def health_handler(request):
    return web.json_response({"status": "ok"})


def build_metrics_app() -> web.Application:
    app = web.Application()
    app.router.add_get("/metrics", metrics_handler)
    app.router.add_get("/healthz", health_handler)
    return app


async def start_metrics_server(port=8000, host="0.0.0.0"):
    runner = web.AppRunner(build_metrics_app())
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"Metrics exposed on http://{host}:{port}/metrics")

    return runner, site
