"""Connection bookkeeping shared by the accept loop and every relay task."""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import FrozenSet, Set, Tuple

PeerAddress = Tuple[str, int]


@dataclass(frozen=True)
class ConnectionStats:
    active: int = 0
    completed: int = 0
    peers: FrozenSet[PeerAddress] = frozenset()

    def to_dict(self) -> dict:
        return {
            "active_connections": self.active,
            "completed_connections": self.completed,
            "peer_addresses": sorted(format_peer(peer) for peer in self.peers),
        }


def format_peer(peer: PeerAddress) -> str:
    host, port = peer
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


@dataclass
class ConnectionState:
    """Live counters for relayed connections.

    One instance is created per process and handed to every component that
    needs it. All access goes through ``_lock``, which is only held for the
    duration of a single update or snapshot and never across an ``await``.
    """

    active_connections: int = 0
    completed_connections: int = 0
    peer_addresses: Set[PeerAddress] = field(default_factory=set)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def connection_opened(self, peer: PeerAddress) -> None:
        """Count a connection whose upstream connect succeeded."""
        with self._lock:
            self.active_connections += 1
            self.peer_addresses.add(peer)

    def connection_closed(self) -> None:
        """Move one connection from active to completed."""
        with self._lock:
            if self.active_connections <= 0:
                raise RuntimeError("connection_closed() without a matching connection_opened()")
            self.active_connections -= 1
            self.completed_connections += 1

    def snapshot(self) -> ConnectionStats:
        with self._lock:
            return ConnectionStats(
                active=self.active_connections,
                completed=self.completed_connections,
                peers=frozenset(self.peer_addresses),
            )


__all__ = ["ConnectionState", "ConnectionStats", "PeerAddress", "format_peer"]
