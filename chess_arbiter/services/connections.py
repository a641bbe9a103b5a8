"""
Connection Registry: which open connections belong to which participant identity.

One identity may hold several connections at once (multiple tabs). The identity is the durable key,
a connection is just one way of reaching it.
"""

import logging
import threading
from typing import Any, Callable, Protocol
from uuid import uuid4

from chess_arbiter.core.shared_types import AUTOMATED_OPPONENT, Identity

logger = logging.getLogger(__name__)

UnreachableListener = Callable[[Identity], None]


class Connection(Protocol):
    """One open transport connection. `send` must not block."""

    connection_id: str

    def send(self, message: dict[str, Any]) -> None:
        ...


class ConnectionRegistry:
    """Process-local mapping identity -> set of connections."""

    def __init__(self) -> None:
        self._connections: dict[Identity, set[Connection]] = {}
        self._listeners: list[UnreachableListener] = []
        self._lock = threading.Lock()

    def add_unreachable_listener(self, listener: UnreachableListener) -> None:
        """Called (outside the registry lock) whenever an identity loses its last connection."""
        self._listeners.append(listener)

    def allocate_identity(self) -> Identity:
        """Identity for a connection that did not bring its own (no external identity provider)."""
        return f"guest-{uuid4().hex[:12]}"

    def register(self, identity: Identity, connection: Connection) -> None:
        if identity == AUTOMATED_OPPONENT:
            raise ValueError("The automated opponent cannot hold a connection.")
        with self._lock:
            self._connections.setdefault(identity, set()).add(connection)
            count = len(self._connections[identity])
        logger.info("Connection %s registered for %s (%d open)", connection.connection_id, identity, count)

    def unregister(self, identity: Identity, connection: Connection) -> None:
        with self._lock:
            connections = self._connections.get(identity)
            if connections is None or connection not in connections:
                return
            connections.discard(connection)
            became_unreachable = not connections
            if became_unreachable:
                del self._connections[identity]

        logger.info("Connection %s unregistered for %s", connection.connection_id, identity)
        if became_unreachable:
            for listener in self._listeners:
                listener(identity)

    def connections_for(self, identity: Identity) -> frozenset[Connection]:
        with self._lock:
            return frozenset(self._connections.get(identity, ()))

    def is_reachable(self, identity: Identity) -> bool:
        with self._lock:
            return identity in self._connections

    def send(self, identity: Identity, message: dict[str, Any]) -> None:
        """Send the same message to every connection of the identity. No-op for unknown identities."""
        for connection in self.connections_for(identity):
            try:
                connection.send(message)
            except Exception:
                logger.exception("Failed to send %s to connection %s", message.get("type"), connection.connection_id)
