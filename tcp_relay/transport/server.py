from __future__ import annotations

import asyncio
import errno
import logging
import os
import socket
from contextlib import suppress
from typing import Optional, Set

from ..core.config import Address
from ..core.connections import ConnectionState, PeerAddress, format_peer
from ..core.exceptions import (
    AcceptError,
    BindError,
    ProxyError,
    RelayError,
    UpstreamConnectError,
)
from ..metrics.collector import (
    DOWNSTREAM_TO_UPSTREAM,
    UPSTREAM_TO_DOWNSTREAM,
    MetricsCollector,
)

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 8192
DEFAULT_ACCEPT_RETRY_DELAY = 1.0

# accept() failures from descriptor or memory exhaustion are retried after a pause
ACCEPT_RETRY_ERRNOS = frozenset({errno.EMFILE, errno.ENFILE, errno.ENOBUFS, errno.ENOMEM})


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    with suppress(OSError):
        await writer.wait_closed()


def _shutdown_write(writer: asyncio.StreamWriter) -> None:
    if writer.is_closing():
        return
    if writer.can_write_eof():
        writer.write_eof()


async def _pipe(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    buffer_size: int,
    counter=None,
) -> int:
    """Copy ``reader`` into ``writer`` until EOF, then half-close ``writer``."""
    copied = 0
    try:
        while True:
            data = await reader.read(buffer_size)
            if not data:
                break
            writer.write(data)
            await writer.drain()
            copied += len(data)
            if counter is not None:
                counter.inc(len(data))
    except OSError:
        # half-close on errors too
        with suppress(OSError):
            _shutdown_write(writer)
        raise
    _shutdown_write(writer)
    return copied


async def forward(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    upstream_addr: Address,
    state: ConnectionState,
    downstream_addr: PeerAddress,
    *,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    metrics: Optional[MetricsCollector] = None,
) -> None:
    """Relay one downstream connection to ``upstream_addr``.

    The connection is counted in ``state`` only once the upstream connect
    succeeded, and is always moved to completed when relaying ends. Both
    directions run concurrently and are both awaited; a failing direction
    does not cancel the other one.

    Raises :class:`UpstreamConnectError` if the upstream cannot be reached
    and :class:`RelayError` if either direction failed with an I/O error.
    """

    try:
        up_reader, up_writer = await asyncio.open_connection(
            upstream_addr.host, upstream_addr.port
        )
    except OSError as exc:
        if metrics is not None:
            metrics.upstream_connect_failures_total.inc()
        await _close(writer)
        raise UpstreamConnectError(
            f"failed to connect to upstream {upstream_addr}: {exc}"
        ) from exc

    state.connection_opened(downstream_addr)
    try:
        results = await asyncio.gather(
            _pipe(reader, up_writer, buffer_size, _bytes_counter(metrics, DOWNSTREAM_TO_UPSTREAM)),
            _pipe(up_reader, writer, buffer_size, _bytes_counter(metrics, UPSTREAM_TO_DOWNSTREAM)),
            return_exceptions=True,
        )
    finally:
        state.connection_closed()
        await _close(up_writer)
        await _close(writer)

    errors = [result for result in results if isinstance(result, BaseException)]
    if errors:
        if metrics is not None:
            metrics.errors_total.inc()
        raise RelayError(
            f"relay between {format_peer(downstream_addr)} and {upstream_addr} failed: {errors[0]!r}"
        ) from errors[0]

    logger.debug(
        "relayed %s: %d bytes up, %d bytes down",
        format_peer(downstream_addr), results[0], results[1],
    )


def _bytes_counter(metrics: Optional[MetricsCollector], direction: str):
    if metrics is None:
        return None
    return metrics.bytes_total.labels(direction=direction)


class RelayServer:
    """Accept loop of the relay.

    ``start()`` binds the listening socket, ``serve_forever()`` accepts
    connections and hands each one to its own task running :func:`forward`.
    """

    def __init__(
        self,
        listen_addr: Address,
        upstream_addr: Address,
        state: ConnectionState,
        *,
        metrics: Optional[MetricsCollector] = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        accept_retry_delay: float = DEFAULT_ACCEPT_RETRY_DELAY,
        backlog: int = 100,
    ) -> None:
        self.listen_addr = listen_addr
        self.upstream_addr = upstream_addr
        self.state = state
        self.metrics = metrics
        self.buffer_size = buffer_size
        self.accept_retry_delay = accept_retry_delay
        self.backlog = backlog
        self._sock: Optional[socket.socket] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def address(self) -> Address:
        if self._sock is None:
            raise RuntimeError("server is not bound")
        host, port = self._sock.getsockname()[:2]
        return Address(host, port)

    @property
    def is_serving(self) -> bool:
        return self._sock is not None

    async def start(self) -> Address:
        """Bind the listening socket and return the bound address."""

        if self._sock is not None:
            return self.address

        loop = asyncio.get_running_loop()
        host, port = self.listen_addr
        try:
            infos = await loop.getaddrinfo(
                host, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
            )
        except OSError as exc:
            raise BindError(f"cannot resolve listen address {self.listen_addr}: {exc}") from exc

        family, type_, proto, _, sockaddr = infos[0]
        sock = socket.socket(family, type_, proto)
        try:
            if os.name == "posix":
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(sockaddr)
            sock.listen(self.backlog)
            sock.setblocking(False)
        except OSError as exc:
            sock.close()
            raise BindError(f"cannot bind {self.listen_addr}: {exc}") from exc

        self._sock = sock
        logger.info("relay listening on %s, forwarding to %s", self.address, self.upstream_addr)
        return self.address

    async def serve_forever(self) -> None:
        """Accept connections until cancelled or an :class:`AcceptError`."""

        if self._sock is None:
            await self.start()

        loop = asyncio.get_running_loop()
        try:
            while True:
                try:
                    conn, address = await loop.sock_accept(self._sock)
                except OSError as exc:
                    delay = self._accept_failed(exc)
                    if delay:
                        await asyncio.sleep(delay)
                    continue
                self._dispatch(conn, (address[0], address[1]))
        finally:
            self.close()

    def close(self) -> None:
        """Stop listening. Connections already being relayed keep running."""
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def _accept_failed(self, exc: OSError) -> float:
        """Return how long to pause before the next accept, or raise."""

        if isinstance(exc, (ConnectionAbortedError, InterruptedError, BlockingIOError)):
            logger.debug("peer went away before accept completed: %s", exc)
            return 0.0
        if self.metrics is not None:
            self.metrics.accept_errors_total.inc()
        if exc.errno in ACCEPT_RETRY_ERRNOS:
            logger.error(
                "accept failed on %s (%s); retrying in %.1fs",
                self.listen_addr, exc, self.accept_retry_delay,
            )
            return self.accept_retry_delay
        logger.error("accept failed on %s: %s", self.listen_addr, exc)
        raise AcceptError(f"accept failed on {self.listen_addr}: {exc}") from exc

    def _dispatch(self, conn: socket.socket, peer: PeerAddress) -> None:
        task = asyncio.create_task(self._handle_connection(conn, peer))
        # the loop only keeps weak references to tasks
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle_connection(self, conn: socket.socket, peer: PeerAddress) -> None:
        name = format_peer(peer)
        logger.info("accepted connection from %s", name)
        try:
            reader, writer = await asyncio.open_connection(sock=conn)
        except OSError as exc:
            conn.close()
            logger.warning("failed to set up connection from %s; error=%s", name, exc)
            return

        try:
            await forward(
                reader,
                writer,
                self.upstream_addr,
                self.state,
                peer,
                buffer_size=self.buffer_size,
                metrics=self.metrics,
            )
        except ProxyError as exc:
            logger.warning("failed to forward %s; error=%s", name, exc)
        except Exception:
            logger.exception("unexpected error while forwarding %s", name)
        else:
            logger.info("connection from %s completed", name)


async def listen(
    listen_addr: Address,
    upstream_addr: Address,
    state: ConnectionState,
    **kwargs,
) -> None:
    """Bind ``listen_addr`` and relay every connection to ``upstream_addr``.

    Only returns by raising: :class:`BindError` at startup or
    :class:`AcceptError` if accepting fails for good.
    """

    server = RelayServer(listen_addr, upstream_addr, state, **kwargs)
    await server.serve_forever()


__all__ = ["RelayServer", "forward", "listen"]
