"""HTTP endpoints of the debug server.

The module exposes :func:`create_app` used by tests and
:func:`start_http_server` which launches an ``aiohttp`` web server in the
background. ``/status`` returns a JSON snapshot of the connection counters,
``/metrics`` returns Prometheus text format metrics and ``/health`` reports
basic service status. Every other request gets the static status page.
"""

from __future__ import annotations

import logging
from pathlib import Path

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..core.config import Address
from ..core.connections import ConnectionState
from .collector import MetricsCollector

logger = logging.getLogger(__name__)

STATIC_PAGE = Path(__file__).resolve().parents[1] / "static" / "index.html"

state_key = web.AppKey("state", ConnectionState)
collector_key = web.AppKey("collector", MetricsCollector)
page_key = web.AppKey("page", str)


async def _status_handler(request: web.Request) -> web.StreamResponse:
    stats = request.app[state_key].snapshot()
    return web.json_response(stats.to_dict())


async def _metrics_handler(request: web.Request) -> web.StreamResponse:
    data = generate_latest(request.app[collector_key].registry)
    return web.Response(body=data, headers={"Content-Type": CONTENT_TYPE_LATEST})


async def _health_handler(request: web.Request) -> web.StreamResponse:
    return web.json_response({"status": "green"})


async def _page_handler(request: web.Request) -> web.StreamResponse:
    return web.Response(text=request.app[page_key], content_type="text/html")


def create_app(state: ConnectionState, collector: MetricsCollector) -> web.Application:
    """Create an ``aiohttp`` application exposing the debug endpoints."""

    app = web.Application()
    app[state_key] = state
    app[collector_key] = collector
    app[page_key] = STATIC_PAGE.read_text(encoding="utf-8")
    app.router.add_get("/status", _status_handler)
    app.router.add_get("/metrics", _metrics_handler)
    app.router.add_get("/health", _health_handler)
    app.router.add_route("*", "/{tail:.*}", _page_handler)
    return app


async def start_http_server(
    state: ConnectionState, collector: MetricsCollector, address: Address
) -> web.AppRunner:
    """Start the debug HTTP server on ``address``.

    Returns the underlying :class:`~aiohttp.web.AppRunner` so that callers can
    shut down the service again during tests.
    """

    app = create_app(state, collector)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, address.host, address.port)
    try:
        await site.start()
    except OSError:
        await runner.cleanup()
        raise
    logger.info("📊 Debug server running on http://%s", address)
    return runner


__all__ = ["create_app", "start_http_server"]
