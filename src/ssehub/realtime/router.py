"""Message router — fan one event out to every matching connection.

Learn: publish() never awaits. It serializes the event once, walks the
registry for the message's scope and offers the frame to each matching
connection's queue with put_nowait. A full or closed queue means the
client is gone or not reading, so the connection is pruned (closed and
unregistered) and the loop moves on. Nothing is retried, nothing blocks,
and one bad target never stops the others.

Delivery is at-most-once to whoever is registered at the moment of the
publish. Identities with no open connection simply get nothing; clients
refetch current state when they reconnect.
"""

from dataclasses import dataclass

import structlog

from ssehub.events.types import Event, EventEncodeError, encode_event
from ssehub.realtime.connection import Connection, Frame
from ssehub.realtime.registry import ConnectionRegistry
from ssehub.realtime.scope import Scope

logger = structlog.get_logger()


@dataclass(frozen=True)
class Message:
    """An event plus the scope it targets."""

    event: Event
    scope: Scope


@dataclass
class DeliveryReport:
    """What happened to one publish on this instance."""

    matched: int = 0
    delivered: int = 0
    pruned: int = 0
    skipped: bool = False


class MessageRouter:
    """Routes messages to connections in a ConnectionRegistry."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    def publish(self, message: Message) -> DeliveryReport:
        report = DeliveryReport()
        event_type = message.event.event_type

        try:
            frame = Frame(event=event_type, data=encode_event(message.event))
        except EventEncodeError as e:
            logger.error("ssehub.event_serialization_failed", event_type=event_type, error=str(e))
            report.skipped = True
            return report

        def deliver(connection: Connection) -> None:
            if connection.offer(frame):
                report.delivered += 1
            else:
                self._prune(connection)
                report.pruned += 1

        report.matched = self.registry.for_each_matching(message.scope, deliver)

        logger.debug(
            "ssehub.message_routed",
            event_type=event_type,
            scope=message.scope.kind,
            matched=report.matched,
            delivered=report.delivered,
            pruned=report.pruned,
        )
        return report

    def _prune(self, connection: Connection) -> None:
        """Drop a connection whose queue refused a frame."""
        reason = "closed" if connection.closed else "queue_full"
        connection.close()
        if self.registry.unregister(connection.id):
            logger.warning(
                "ssehub.connection_pruned",
                connection_id=connection.id,
                owner=connection.owner,
                reason=reason,
            )
