"""Prometheus metrics for the relay.

:class:`MetricsCollector` owns a private registry. Connection counts are not
duplicated into gauges; they are read from the shared
:class:`~tcp_relay.core.connections.ConnectionState` at scrape time so the
exposition always agrees with ``/status``. Byte and failure counters are
plain Prometheus counters updated by the forwarding engine.
"""

from __future__ import annotations

from typing import Iterator

from prometheus_client import CollectorRegistry, Counter
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from ..core.connections import ConnectionState

DOWNSTREAM_TO_UPSTREAM = "downstream_to_upstream"
UPSTREAM_TO_DOWNSTREAM = "upstream_to_downstream"


class _StateCollector:
    def __init__(self, state: ConnectionState) -> None:
        self._state = state

    def collect(self) -> Iterator[Metric]:
        stats = self._state.snapshot()
        yield GaugeMetricFamily(
            "relay_active_connections",
            "Number of connections currently being relayed",
            value=stats.active,
        )
        yield CounterMetricFamily(
            "relay_completed_connections",
            "Number of connections that finished relaying",
            value=stats.completed,
        )
        yield GaugeMetricFamily(
            "relay_peer_addresses",
            "Number of distinct downstream peer addresses seen",
            value=len(stats.peers),
        )


class MetricsCollector:
    """Central metrics registry used by the relay and the debug server."""

    def __init__(self, state: ConnectionState) -> None:
        self.registry = CollectorRegistry()
        self.registry.register(_StateCollector(state))

        # Counters
        self.bytes_total = Counter(
            "relay_bytes_total",
            "Number of bytes copied between downstream and upstream",
            ["direction"],
            registry=self.registry,
        )
        self.upstream_connect_failures_total = Counter(
            "relay_upstream_connect_failures_total",
            "Number of failed connection attempts to the upstream",
            registry=self.registry,
        )
        self.errors_total = Counter(
            "relay_errors_total",
            "Number of relays that ended with an I/O error",
            registry=self.registry,
        )
        self.accept_errors_total = Counter(
            "relay_accept_errors_total",
            "Number of failed accept calls on the listening socket",
            registry=self.registry,
        )

        # Pre-create both label sets so they show up before the first byte.
        for direction in (DOWNSTREAM_TO_UPSTREAM, UPSTREAM_TO_DOWNSTREAM):
            self.bytes_total.labels(direction=direction)


__all__ = [
    "MetricsCollector",
    "DOWNSTREAM_TO_UPSTREAM",
    "UPSTREAM_TO_DOWNSTREAM",
]
