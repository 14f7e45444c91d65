"""Prometheus metrics and the debug HTTP server."""

from .collector import MetricsCollector
from .http_api import create_app, start_http_server

__all__ = ["MetricsCollector", "create_app", "start_http_server"]
