"""Connection — one live event stream held by this process.

Learn: A connection is just three things: a server-generated id, the
identity that owns it, and a per-connection FIFO queue. The router is
the only writer (via offer), the owning ConnectionHandler is the only
reader. Nobody else touches the queue, so there's no shared state
between connections beyond the registry itself.

The queue is bounded (settings.queue_max_size). A full queue means the
client stopped reading; the router then closes the connection instead
of letting it pile up memory or stall anyone else.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


def new_connection_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Frame:
    """One serialized event waiting to be written to the stream."""

    event: str
    data: str

    def render(self) -> str:
        """SSE wire form: `event:` + `data:` lines, blank line terminated."""
        lines = [f"event: {self.event}"]
        lines.extend(f"data: {line}" for line in self.data.split("\n"))
        return "\n".join(lines) + "\n\n"


@dataclass(eq=False)
class Connection:
    """A registered event stream."""

    owner: str
    outbound: asyncio.Queue = field(default_factory=asyncio.Queue)
    id: str = field(default_factory=new_connection_id)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _closed: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @classmethod
    def open(cls, owner: str, max_queue: int = 0) -> "Connection":
        return cls(owner=owner, outbound=asyncio.Queue(maxsize=max_queue))

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def offer(self, frame: Frame) -> bool:
        """Non-blocking enqueue. False if the connection is closed or full."""
        if self.closed:
            return False
        try:
            self.outbound.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        """Mark closed and wake the handler. Safe to call more than once."""
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()
