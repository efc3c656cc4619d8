"""Connection registry — every live connection held by this process.

Learn: Two indices, both plain dicts:

    _connections  connection_id → Connection   (register / unregister)
    _by_owner     owner         → {connection_id}   (owner-scoped routing)

All mutations are synchronous and never await, so on the event loop they
are atomic with respect to every other task, so no lock is needed and no
slow stream can hold anything that registration or routing waits on.
Iteration works on a snapshot (a copied list), so connections may come
and go while a publish is walking the matches.

Removal is lazy and idempotent: the handler unregisters when its stream
ends, and the router may get there first when it prunes a dead queue.
Whichever runs second is a no-op.
"""

from typing import Callable, Optional

import structlog

from ssehub.realtime.connection import Connection
from ssehub.realtime.scope import Scope

logger = structlog.get_logger()


class ConnectionRegistry:
    """Concurrency-safe store of live connections with an owner index."""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._by_owner: dict[str, set[str]] = {}

    def register(self, connection: Connection) -> str:
        """Insert a connection. Returns its id (the unregister handle)."""
        if not connection.owner:
            raise ValueError("Connection must have an owner")
        if connection.id in self._connections:
            raise ValueError(f"Connection {connection.id} already registered")

        self._connections[connection.id] = connection
        self._by_owner.setdefault(connection.owner, set()).add(connection.id)
        logger.debug(
            "ssehub.connection_registered",
            connection_id=connection.id,
            owner=connection.owner,
            total=len(self._connections),
        )
        return connection.id

    def unregister(self, connection_id: str) -> bool:
        """Remove a connection if present. Returns True only if it removed one."""
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return False

        ids = self._by_owner.get(connection.owner)
        if ids is not None:
            ids.discard(connection_id)
            if not ids:
                del self._by_owner[connection.owner]

        logger.debug(
            "ssehub.connection_unregistered",
            connection_id=connection_id,
            owner=connection.owner,
            total=len(self._connections),
        )
        return True

    def for_each_matching(self, scope: Scope, fn: Callable[[Connection], None]) -> int:
        """Call fn on every connection the scope matches. Returns how many.

        Candidates are snapshotted up front. A connection unregistered
        after the snapshot may still be visited; fn must tolerate that
        (the router does, since a closed connection refuses frames).
        """
        visited = 0
        for connection in self._candidates(scope):
            if scope.matches(connection):
                fn(connection)
                visited += 1
        return visited

    def _candidates(self, scope: Scope) -> list[Connection]:
        owners = scope.owners()
        if owners is None:
            return list(self._connections.values())

        candidates = []
        for owner in owners:
            for connection_id in tuple(self._by_owner.get(owner, ())):
                connection = self._connections.get(connection_id)
                if connection is not None:
                    candidates.append(connection)
        return candidates

    # ─── Introspection ───────────────────────────────────

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def connections_for(self, owner: str) -> list[Connection]:
        return [
            self._connections[cid]
            for cid in tuple(self._by_owner.get(owner, ()))
            if cid in self._connections
        ]

    def snapshot(self) -> list[Connection]:
        return list(self._connections.values())

    def owner_count(self) -> int:
        return len(self._by_owner)

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections
