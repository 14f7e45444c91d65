"""Runtime configuration helpers."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple, Optional

from dotenv import load_dotenv

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

# Central default values. Listen and upstream addresses have no default and
# must be supplied through the environment, a ``.env`` file or the CLI.
DEFAULT_ENV: dict[str, str] = {
    "RELAY_DEBUG_ADDR": "127.0.0.1:2222",
    "RELAY_BUFFER_SIZE": "8192",
    "RELAY_ACCEPT_RETRY_DELAY": "1.0",
    "LOGLEVEL": "INFO",
}


class Address(NamedTuple):
    host: str
    port: int

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def parse_address(value: str) -> Address:
    """Parse ``host:port`` or ``[v6-host]:port`` into an :class:`Address`."""

    raw = (value or "").strip()
    host, sep, port_text = raw.rpartition(":")
    if not sep or not host or not port_text:
        raise ConfigError(f"invalid address {value!r}: expected host:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ConfigError(f"invalid address {value!r}: IPv6 hosts need brackets")
    if not host:
        raise ConfigError(f"invalid address {value!r}: empty host")
    try:
        port = int(port_text)
    except ValueError:
        raise ConfigError(f"invalid address {value!r}: port is not a number") from None
    if not 0 <= port <= 65535:
        raise ConfigError(f"invalid address {value!r}: port out of range")
    return Address(host, port)


def load_env(path: Optional[str | Path] = None) -> None:
    """Load environment variables and apply defaults.

    Parameters
    ----------
    path:
        Optional path to a ``.env`` file. If ``None`` the ``.env`` in the
        working directory is used when present.
    """

    env_path = Path(path) if path else Path(".env")
    if env_path.exists():
        load_dotenv(env_path, override=False)

    for key, value in DEFAULT_ENV.items():
        os.environ.setdefault(key, value)


def _required_address(name: str) -> Address:
    value = os.getenv(name)
    if not value:
        raise ConfigError(f"{name} is not set")
    return parse_address(value)


def _number(name: str, kind: type, minimum: float):
    raw = os.getenv(name, DEFAULT_ENV[name])
    try:
        value = kind(raw)
    except ValueError:
        raise ConfigError(f"{name}={raw!r} is not a valid {kind.__name__}") from None
    if value < minimum:
        raise ConfigError(f"{name}={raw!r} must be >= {minimum}")
    return value


@dataclass
class Config:
    """Relay configuration loaded from environment."""

    listen_addr: Address
    upstream_addr: Address
    debug_addr: Address
    buffer_size: int
    accept_retry_delay: float
    log_level: str

    @classmethod
    def from_env(cls) -> "Config":
        """Construct configuration using the current environment."""

        load_env()

        return cls(
            listen_addr=_required_address("RELAY_LISTEN_ADDR"),
            upstream_addr=_required_address("RELAY_UPSTREAM_ADDR"),
            debug_addr=parse_address(
                os.getenv("RELAY_DEBUG_ADDR", DEFAULT_ENV["RELAY_DEBUG_ADDR"])
            ),
            buffer_size=_number("RELAY_BUFFER_SIZE", int, 1),
            accept_retry_delay=_number("RELAY_ACCEPT_RETRY_DELAY", float, 0),
            log_level=os.getenv("LOGLEVEL", DEFAULT_ENV["LOGLEVEL"]).upper(),
        )


__all__ = ["Address", "Config", "DEFAULT_ENV", "load_env", "parse_address"]
