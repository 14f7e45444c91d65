"""Core utilities for the TCP relay."""

from .config import Address, Config, load_env, parse_address
from .connections import ConnectionState, ConnectionStats
from .exceptions import (
    AcceptError,
    BindError,
    ConfigError,
    ProxyError,
    RelayError,
    UpstreamConnectError,
)

__all__ = [
    "Address",
    "Config",
    "load_env",
    "parse_address",
    "ConnectionState",
    "ConnectionStats",
    "AcceptError",
    "BindError",
    "ConfigError",
    "ProxyError",
    "RelayError",
    "UpstreamConnectError",
]
