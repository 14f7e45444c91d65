import asyncio
import sys
from contextlib import suppress
from pathlib import Path

import pytest
import pytest_asyncio

# Ensure project root is importable
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tcp_relay.core.config import Address  # noqa: E402
from tcp_relay.core.connections import ConnectionState  # noqa: E402
from tcp_relay.metrics.collector import MetricsCollector  # noqa: E402
from tcp_relay.transport.server import RelayServer  # noqa: E402


async def _echo(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    try:
        while True:
            data = await reader.read(1024)
            if not data:
                break
            writer.write(data)
            await writer.drain()
    finally:
        writer.close()


@pytest.fixture
def state() -> ConnectionState:
    return ConnectionState()


@pytest.fixture
def collector(state) -> MetricsCollector:
    return MetricsCollector(state)


@pytest_asyncio.fixture
async def echo_server():
    """Upstream that echoes every byte and closes once it reads EOF."""

    server = await asyncio.start_server(_echo, "127.0.0.1", 0)
    host, port = server.sockets[0].getsockname()[:2]
    yield Address(host, port)
    server.close()


@pytest_asyncio.fixture
async def start_relay(state, collector):
    """Factory starting a :class:`RelayServer` on an ephemeral port."""

    started = []

    async def _start(upstream: Address, **kwargs) -> RelayServer:
        server = RelayServer(
            Address("127.0.0.1", 0), upstream, state, metrics=collector, **kwargs
        )
        await server.start()
        task = asyncio.create_task(server.serve_forever())
        started.append((server, task))
        return server

    yield _start

    for server, task in started:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        for relay_task in list(server._tasks):
            relay_task.cancel()
            with suppress(asyncio.CancelledError):
                await relay_task


@pytest_asyncio.fixture
async def relay_server(start_relay, echo_server) -> RelayServer:
    return await start_relay(echo_server)


@pytest.fixture
def eventually():
    """Poll ``predicate`` until it holds or ``timeout`` expires."""

    async def _wait(predicate, timeout: float = 5.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met within %.1fs" % timeout)
            await asyncio.sleep(0.01)

    return _wait
