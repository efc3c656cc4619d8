"""Connection handler — owns one event stream from handshake to teardown.

Learn: Lifecycle is a small state machine:

    CONNECTING → REGISTERED → ACTIVE → DISCONNECTED

handshake() turns an authenticated identity into a registered
Connection. stream() is the serve loop, written as an async generator of
SSE text chunks that the HTTP layer hands straight to a
StreamingResponse. It waits on two things at once: the next frame in the
connection's queue and the next keepalive deadline. Keepalives run on a
fixed schedule (not "N seconds after the last event") and are SSE
comments, so EventSource clients never surface them as events.

The loop ends when:
- the client disconnects (Starlette cancels the generator),
- a write to the transport fails (the error surfaces at our yield),
- the connection is closed from outside (router pruning, shutdown).

Every exit path goes through the generator's finally → disconnect(),
which unregisters exactly once. Errors here are contained to this one
connection; nothing propagates to the registry or router.
"""

import asyncio
from enum import Enum
from typing import AsyncIterator, Optional

import structlog

from ssehub.realtime.connection import Connection
from ssehub.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()

KEEPALIVE_FRAME = ": keep-alive\n\n"


class HandlerState(str, Enum):
    CONNECTING = "connecting"
    REGISTERED = "registered"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


class HandshakeError(Exception):
    """Raised when a connection can't be established. Nothing was registered."""


class ConnectionHandler:
    """Drives one connection through its lifecycle."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        keepalive_interval: float,
        max_queue: int = 0,
        retry_ms: Optional[int] = None,
    ):
        if keepalive_interval <= 0:
            raise ValueError("keepalive_interval must be positive")
        self.registry = registry
        self.keepalive_interval = keepalive_interval
        self.max_queue = max_queue
        self.retry_ms = retry_ms
        self.state = HandlerState.CONNECTING
        self.connection: Optional[Connection] = None

    # ─── CONNECTING → REGISTERED ─────────────────────────

    def handshake(self, owner: Optional[str]) -> Connection:
        """Create and register the connection for an authenticated identity."""
        if self.state != HandlerState.CONNECTING:
            raise HandshakeError(f"Handshake not allowed in state {self.state.value}")
        if not owner or not isinstance(owner, str):
            self.state = HandlerState.DISCONNECTED
            raise HandshakeError("Connection requires an authenticated identity")

        connection = Connection.open(owner, self.max_queue)
        self.registry.register(connection)
        self.connection = connection
        self.state = HandlerState.REGISTERED

        logger.info(
            "ssehub.connection_opened",
            connection_id=connection.id,
            owner=owner,
        )
        return connection

    # ─── REGISTERED → ACTIVE ─────────────────────────────

    async def stream(self) -> AsyncIterator[str]:
        """Serve loop: yield SSE chunks until the connection ends."""
        if self.state != HandlerState.REGISTERED or self.connection is None:
            raise RuntimeError(f"Can't serve a connection in state {self.state.value}")

        self.state = HandlerState.ACTIVE
        connection = self.connection
        loop = asyncio.get_running_loop()
        closed_waiter = asyncio.ensure_future(connection.wait_closed())
        getter: Optional[asyncio.Future] = None

        try:
            if self.retry_ms:
                yield f"retry: {self.retry_ms}\n\n"

            next_keepalive = loop.time() + self.keepalive_interval
            while not connection.closed:
                # Drain whatever is already queued before suspending
                try:
                    frame = connection.outbound.get_nowait()
                except asyncio.QueueEmpty:
                    frame = None
                if frame is not None:
                    yield frame.render()
                    continue

                timeout = next_keepalive - loop.time()
                if timeout <= 0:
                    yield KEEPALIVE_FRAME
                    next_keepalive += self.keepalive_interval
                    now = loop.time()
                    if next_keepalive <= now:
                        # We fell behind (slow writes); restart the schedule
                        next_keepalive = now + self.keepalive_interval
                    continue

                getter = asyncio.ensure_future(connection.outbound.get())
                done, _ = await asyncio.wait(
                    {getter, closed_waiter},
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if getter in done:
                    yield getter.result().render()
                else:
                    # Queue.get is cancellation-safe: an item is never lost
                    getter.cancel()
        finally:
            closed_waiter.cancel()
            if getter is not None and not getter.done():
                getter.cancel()
            self.disconnect()

    # ─── ACTIVE → DISCONNECTED ───────────────────────────

    def disconnect(self) -> None:
        """Tear down and unregister. Idempotent."""
        if self.state == HandlerState.DISCONNECTED:
            return
        self.state = HandlerState.DISCONNECTED

        connection = self.connection
        if connection is None:
            return
        connection.close()
        self.registry.unregister(connection.id)

        logger.info(
            "ssehub.connection_closed",
            connection_id=connection.id,
            owner=connection.owner,
        )
