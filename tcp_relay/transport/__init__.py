"""Forwarding engine: accept loop and per-connection duplex relay."""

from .server import RelayServer, forward, listen

__all__ = ["RelayServer", "forward", "listen"]
