"""Unit tests for chess_arbiter/services/connections.py"""

import pytest

from conftest import RecordingConnection

from chess_arbiter.core.shared_types import AUTOMATED_OPPONENT
from chess_arbiter.services.connections import ConnectionRegistry


class BrokenConnection(RecordingConnection):
    def send(self, message: dict) -> None:
        raise ConnectionError("socket closed")


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


def test_multiple_connections_per_identity(registry: ConnectionRegistry) -> None:
    first, second = RecordingConnection("tab-1"), RecordingConnection("tab-2")
    registry.register("alice", first)
    registry.register("alice", second)

    assert registry.connections_for("alice") == frozenset({first, second})
    assert registry.is_reachable("alice")

    registry.send("alice", {"type": "ping"})
    assert first.messages == [{"type": "ping"}]
    assert second.messages == [{"type": "ping"}]


def test_unknown_identity_has_no_connections(registry: ConnectionRegistry) -> None:
    assert registry.connections_for("nobody") == frozenset()
    assert not registry.is_reachable("nobody")
    # sending to nobody is a no-op
    registry.send("nobody", {"type": "ping"})


def test_listener_only_fires_when_last_connection_leaves(registry: ConnectionRegistry) -> None:
    unreachable: list[str] = []
    registry.add_unreachable_listener(unreachable.append)
    first, second = RecordingConnection("tab-1"), RecordingConnection("tab-2")
    registry.register("alice", first)
    registry.register("alice", second)

    registry.unregister("alice", first)
    assert unreachable == []
    assert registry.is_reachable("alice")

    registry.unregister("alice", second)
    assert unreachable == ["alice"]
    assert not registry.is_reachable("alice")


def test_unregister_unknown_connection_is_ignored(registry: ConnectionRegistry) -> None:
    unreachable: list[str] = []
    registry.add_unreachable_listener(unreachable.append)
    registry.unregister("alice", RecordingConnection())
    assert unreachable == []


def test_failing_connection_does_not_block_others(registry: ConnectionRegistry) -> None:
    healthy = RecordingConnection("healthy")
    registry.register("alice", BrokenConnection("broken"))
    registry.register("alice", healthy)

    registry.send("alice", {"type": "ping"})
    assert healthy.messages == [{"type": "ping"}]


def test_allocated_identities_are_unique(registry: ConnectionRegistry) -> None:
    identities = {registry.allocate_identity() for _ in range(100)}
    assert len(identities) == 100
    assert all(identity.startswith("guest-") for identity in identities)


def test_automated_opponent_cannot_connect(registry: ConnectionRegistry) -> None:
    with pytest.raises(ValueError):
        registry.register(AUTOMATED_OPPONENT, RecordingConnection())
