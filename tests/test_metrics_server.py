import pytest

from sitecrawler.monitoring.metrics_server import (
    QUEUE_PENDING,
    build_metrics_app,
    health_handler,
    metrics_handler,
)


@pytest.mark.anyio
async def test_metrics_handler_exposes_crawler_metrics():
    QUEUE_PENDING.set(7)

    response = await metrics_handler(None)

    assert response.content_type == "text/plain"
    assert b"sitecrawler_queue_pending 7.0" in response.body


@pytest.mark.anyio
async def test_health_handler_reports_ok():
    response = await health_handler(None)

    assert response.status == 200
    assert response.text == '{"status": "ok"}'


def test_metrics_app_routes():
    paths = {route.resource.canonical for route in build_metrics_app().router.routes()}

    assert {"/metrics", "/healthz"} <= paths
