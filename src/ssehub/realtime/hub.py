"""Event hub — the one process-wide realtime component.

Learn: Instead of a module-level global, the hub is constructed once in
the FastAPI lifespan, stored on app.state, and handed to routes through
the get_hub dependency. Its lifetime is the process lifetime: start()
wires the backplane to the router, shutdown() stops the backplane and
closes every live connection so each handler drains to DISCONNECTED and
the registry ends up empty.

Business code only needs publish(event, scope) or notify_users(): both
are safe to call from any number of request handlers at once.
"""

from typing import Iterable, Optional

import structlog

from ssehub.events.types import Event
from ssehub.realtime.backplane import Backplane, LocalBackplane
from ssehub.realtime.handler import ConnectionHandler
from ssehub.realtime.registry import ConnectionRegistry
from ssehub.realtime.router import Message, MessageRouter
from ssehub.realtime.scope import ByOwners, Scope

logger = structlog.get_logger()


class EventHub:
    """Registry + router + backplane, wired together."""

    def __init__(
        self,
        backplane: Optional[Backplane] = None,
        keepalive_interval: float = 15.0,
        queue_max_size: int = 256,
        retry_ms: Optional[int] = None,
    ):
        self.registry = ConnectionRegistry()
        self.router = MessageRouter(self.registry)
        self.backplane = backplane or LocalBackplane()
        self.keepalive_interval = keepalive_interval
        self.queue_max_size = queue_max_size
        self.retry_ms = retry_ms
        self._started = False

    @classmethod
    def from_settings(cls, settings, backplane: Optional[Backplane] = None) -> "EventHub":
        return cls(
            backplane=backplane,
            keepalive_interval=settings.keepalive_interval_seconds,
            queue_max_size=settings.queue_max_size,
            retry_ms=settings.client_retry_ms,
        )

    async def start(self) -> None:
        await self.backplane.start(self.router.publish)
        self._started = True
        logger.info("ssehub.hub_started", backplane=self.backplane.name)

    async def shutdown(self) -> None:
        """Stop the backplane and close every live connection."""
        self._started = False
        await self.backplane.stop()

        connections = self.registry.snapshot()
        for connection in connections:
            connection.close()
        # Handlers unregister on their way out; sweep anything never served
        for connection in connections:
            self.registry.unregister(connection.id)
        logger.info("ssehub.hub_stopped", closed=len(connections))

    # ─── Publishing ──────────────────────────────────────

    async def publish(self, event: Event, scope: Scope) -> bool:
        """Send an event to every connection in scope, on every instance."""
        if not self._started:
            logger.warning("ssehub.publish_before_start", event_type=event.event_type)
            return False
        return await self.backplane.publish(Message(event=event, scope=scope))

    async def notify_users(self, event: Event, user_ids: Iterable[str]) -> bool:
        """Send an event to all connections of the given users."""
        owners = frozenset(str(u) for u in user_ids)
        if not owners:
            return True
        sent = await self.publish(event, ByOwners(owners))
        logger.info(
            "ssehub.users_notified",
            event_type=event.event_type,
            users=len(owners),
        )
        return sent

    # ─── Connections ─────────────────────────────────────

    def open_handler(self) -> ConnectionHandler:
        """New handler for an incoming stream (still CONNECTING)."""
        return ConnectionHandler(
            self.registry,
            keepalive_interval=self.keepalive_interval,
            max_queue=self.queue_max_size,
            retry_ms=self.retry_ms,
        )

    @property
    def connection_count(self) -> int:
        return len(self.registry)
