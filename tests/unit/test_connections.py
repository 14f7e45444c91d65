import threading

import pytest

from tcp_relay.core.connections import ConnectionState, ConnectionStats, format_peer


def test_initial_state_is_empty():
    state = ConnectionState()
    assert state.snapshot() == ConnectionStats(active=0, completed=0, peers=frozenset())


def test_open_and_close_move_counters():
    state = ConnectionState()
    state.connection_opened(("127.0.0.1", 5000))
    state.connection_opened(("127.0.0.1", 5001))
    assert state.active_connections == 2

    state.connection_closed()
    stats = state.snapshot()
    assert stats.active == 1
    assert stats.completed == 1
    assert stats.peers == {("127.0.0.1", 5000), ("127.0.0.1", 5001)}


def test_peer_tracking_is_idempotent():
    state = ConnectionState()
    state.connection_opened(("10.0.0.1", 4242))
    state.connection_closed()
    state.connection_opened(("10.0.0.1", 4242))
    assert len(state.snapshot().peers) == 1
    assert state.snapshot().active == 1


def test_peers_survive_completion():
    state = ConnectionState()
    state.connection_opened(("10.0.0.1", 4242))
    state.connection_closed()
    assert state.snapshot().peers == {("10.0.0.1", 4242)}


def test_close_without_open_raises():
    state = ConnectionState()
    with pytest.raises(RuntimeError):
        state.connection_closed()
    assert state.snapshot().active == 0
    assert state.snapshot().completed == 0


def test_snapshot_is_detached():
    state = ConnectionState()
    before = state.snapshot()
    state.connection_opened(("127.0.0.1", 1))
    assert before.active == 0
    assert before.peers == frozenset()


def test_concurrent_updates_from_threads():
    state = ConnectionState()
    rounds = 2000

    def worker(index):
        for n in range(rounds):
            state.connection_opened(("127.0.0.1", index * rounds + n))
            state.connection_closed()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    stats = state.snapshot()
    assert stats.active == 0
    assert stats.completed == 8 * rounds
    assert len(stats.peers) == 8 * rounds


def test_to_dict_formats_peers():
    stats = ConnectionStats(
        active=1,
        completed=2,
        peers=frozenset({("::1", 80), ("127.0.0.1", 8080)}),
    )
    assert stats.to_dict() == {
        "active_connections": 1,
        "completed_connections": 2,
        "peer_addresses": ["127.0.0.1:8080", "[::1]:80"],
    }


def test_format_peer():
    assert format_peer(("192.168.1.2", 22)) == "192.168.1.2:22"
    assert format_peer(("fe80::1", 443)) == "[fe80::1]:443"
