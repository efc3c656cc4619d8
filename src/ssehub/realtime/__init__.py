"""Real-time infrastructure — connection registry, router, SSE handler.

Learn: Events flow in one direction:
1. Business code → hub.publish(event, scope) → backplane
2. Backplane → router → per-connection queue (every instance)
3. Queue → ConnectionHandler → SSE stream → browser

This decouples event producers (request handlers) from consumers (open
event streams), and a slow consumer only ever hurts itself.
"""

from ssehub.realtime.backplane import Backplane, LocalBackplane, RedisBackplane, build_backplane
from ssehub.realtime.connection import Connection, Frame
from ssehub.realtime.handler import ConnectionHandler, HandlerState, HandshakeError
from ssehub.realtime.hub import EventHub
from ssehub.realtime.registry import ConnectionRegistry
from ssehub.realtime.router import DeliveryReport, Message, MessageRouter
from ssehub.realtime.scope import Broadcast, ByOwner, ByOwners, Scope

__all__ = [
    "Backplane",
    "Broadcast",
    "ByOwner",
    "ByOwners",
    "Connection",
    "ConnectionHandler",
    "ConnectionRegistry",
    "DeliveryReport",
    "EventHub",
    "Frame",
    "HandlerState",
    "HandshakeError",
    "LocalBackplane",
    "Message",
    "MessageRouter",
    "RedisBackplane",
    "Scope",
    "build_backplane",
]
