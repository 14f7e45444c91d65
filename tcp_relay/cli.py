#!/usr/bin/env python3
# Command line entry point: `tcp-relay -l HOST:PORT -u HOST:PORT [-d HOST:PORT]`
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

from .core.config import Config
from .core.connections import ConnectionState
from .core.exceptions import AcceptError, BindError, ConfigError
from .metrics.collector import MetricsCollector
from .metrics.http_api import start_http_server
from .transport.server import RelayServer

__all__ = ["main"]

log = logging.getLogger("tcp_relay")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# flag dest -> environment variable it overrides
_ENV_OVERRIDES = {
    "listen_addr": "RELAY_LISTEN_ADDR",
    "upstream_addr": "RELAY_UPSTREAM_ADDR",
    "debug_addr": "RELAY_DEBUG_ADDR",
    "log_level": "LOGLEVEL",
}


def _parse_args(argv):
    p = argparse.ArgumentParser(prog="tcp-relay", description="A simple TCP proxy")
    p.add_argument("-l", "--listen-addr", help="Address to listen on (RELAY_LISTEN_ADDR)")
    p.add_argument("-u", "--upstream-addr", help="Address to forward to (RELAY_UPSTREAM_ADDR)")
    p.add_argument("-d", "--debug-addr",
                   help="Address of the debug HTTP server (RELAY_DEBUG_ADDR, default 127.0.0.1:2222)")
    p.add_argument("--log-level", help="Log level (LOGLEVEL, default INFO)")
    return p.parse_args(argv[1:])


def _apply_overrides(args) -> None:
    for dest, env_name in _ENV_OVERRIDES.items():
        value = getattr(args, dest, None)
        if value:
            os.environ[env_name] = value


def _setup_logging(level_name: str) -> None:
    level = getattr(logging, str(level_name).strip().upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)


async def _serve(cfg: Config) -> None:
    state = ConnectionState()
    collector = MetricsCollector(state)
    try:
        runner = await start_http_server(state, collector, cfg.debug_addr)
    except OSError as exc:
        raise BindError(f"cannot bind debug address {cfg.debug_addr}: {exc}") from exc

    server = RelayServer(
        cfg.listen_addr,
        cfg.upstream_addr,
        state,
        metrics=collector,
        buffer_size=cfg.buffer_size,
        accept_retry_delay=cfg.accept_retry_delay,
    )
    try:
        await server.serve_forever()
    finally:
        await runner.cleanup()


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv or sys.argv)
    _apply_overrides(args)
    _setup_logging(os.getenv("LOGLEVEL", "INFO"))

    try:
        cfg = Config.from_env()
    except ConfigError as exc:
        log.error("invalid configuration: %s", exc)
        return 1
    _setup_logging(cfg.log_level)

    try:
        asyncio.run(_serve(cfg))
    except (BindError, AcceptError) as exc:
        log.error("relay stopped: %s", exc)
        return 1
    except KeyboardInterrupt:
        log.info("relay stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
