"""Byte-transparent TCP relay with a debug status server."""

from .core.config import Address, Config
from .core.connections import ConnectionState, ConnectionStats
from .transport.server import RelayServer, forward, listen

__version__ = "0.1.0"

__all__ = [
    "Address",
    "Config",
    "ConnectionState",
    "ConnectionStats",
    "RelayServer",
    "forward",
    "listen",
]
