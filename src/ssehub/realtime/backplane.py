"""Fan-out backplane — get every message to every instance.

Learn: The registry only knows connections held by *this* process. When
several instances run behind a load balancer, a publish on instance A
must also reach connections held by instance B. The backplane is the
seam for that:

    hub.publish(msg) → backplane.publish(msg) → ... → deliver(msg) → router

Every instance subscribes to one shared Redis channel, and every message
it receives (including the ones it published itself) goes through the
same deliver() callback into its local router. So there is exactly one
delivery path, and received messages are never re-published (no loops).

Redis pub/sub is fire-and-forget, which suits ephemeral events. If Redis
is down, the listener is reconnecting, or a publish fails, the message is
delivered locally right away and remembered by id, so the copy that may
still arrive later from Redis is dropped. Same-instance clients keep
getting events; publish() never raises.

LocalBackplane is the single-process version: deliver() directly.
"""

import asyncio
import json
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Callable, Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from ssehub.events.types import EventDecodeError, EventEncodeError, event_from_wire
from ssehub.realtime.router import DeliveryReport, Message
from ssehub.realtime.scope import scope_from_dict

logger = structlog.get_logger()

Deliver = Callable[[Message], DeliveryReport]


# ─── Envelope ────────────────────────────────────────────


def encode_envelope(message: Message, origin: str, message_id: str) -> str:
    """Serialize a message for the shared channel."""
    return json.dumps({
        "id": message_id,
        "origin": origin,
        "event": message.event.to_wire(),
        "scope": message.scope.to_dict(),
    }, separators=(",", ":"))


def decode_envelope(raw: str | bytes) -> tuple[str, str, Message]:
    """Parse an envelope. Returns (message_id, origin, message)."""
    try:
        envelope: dict[str, Any] = json.loads(raw)
        event = event_from_wire(envelope["event"])
        scope = scope_from_dict(envelope["scope"])
        return str(envelope["id"]), str(envelope.get("origin", "")), Message(event, scope)
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise EventDecodeError(f"Invalid backplane envelope: {e}") from e


# ─── Interface ───────────────────────────────────────────


class Backplane(ABC):
    """Publish/subscribe transport between instances."""

    name: str = ""

    @abstractmethod
    async def start(self, deliver: Deliver) -> None:
        """Begin receiving; every received message is handed to deliver."""

    @abstractmethod
    async def publish(self, message: Message) -> bool:
        """Send a message to all instances. False only if it couldn't be sent anywhere."""

    @abstractmethod
    async def stop(self) -> None:
        ...

    @property
    def healthy(self) -> bool:
        return True


class LocalBackplane(Backplane):
    """Single-process loopback."""

    name = "local"

    def __init__(self) -> None:
        self._deliver: Optional[Deliver] = None

    async def start(self, deliver: Deliver) -> None:
        self._deliver = deliver

    async def publish(self, message: Message) -> bool:
        if self._deliver is None:
            raise RuntimeError("Backplane not started")
        return not self._deliver(message).skipped

    async def stop(self) -> None:
        self._deliver = None


# ─── Redis ───────────────────────────────────────────────


class RedisBackplane(Backplane):
    """Redis pub/sub fan-out with local fallback."""

    name = "redis"

    # How many locally-delivered message ids to remember for de-duplication
    SEEN_LIMIT = 4096

    def __init__(
        self,
        redis_url: str,
        channel: str,
        instance_id: str,
        publish_timeout: float = 1.0,
        reconnect_delay: float = 2.0,
        redis: Optional[aioredis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.channel = channel
        self.instance_id = instance_id
        self.publish_timeout = publish_timeout
        self.reconnect_delay = reconnect_delay
        self._redis = redis
        self._owns_redis = redis is None
        self._deliver: Optional[Deliver] = None
        self._listener: Optional[asyncio.Task] = None
        self._listening = False
        self._stopping = False
        self._delivered_locally: OrderedDict[str, None] = OrderedDict()
        self._in_flight: dict[str, bool] = {}

    @property
    def healthy(self) -> bool:
        return self._listening

    async def start(self, deliver: Deliver) -> None:
        self._deliver = deliver
        self._stopping = False
        if self._redis is None:
            self._redis = aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        self._listener = asyncio.create_task(self._listen_loop())

    async def stop(self) -> None:
        self._stopping = True
        if self._listener:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._redis is not None and self._owns_redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, message: Message) -> bool:
        if self._deliver is None or self._redis is None:
            raise RuntimeError("Backplane not started")

        message_id = uuid.uuid4().hex
        try:
            envelope = encode_envelope(message, self.instance_id, message_id)
        except EventEncodeError as e:
            logger.error(
                "ssehub.event_serialization_failed",
                event_type=message.event.event_type,
                error=str(e),
            )
            return False

        if not self._listening:
            # Our own subscription is down; the Redis copy wouldn't come back to us
            self._deliver_locally(message_id, message)

        # In flight until Redis answers; True once our own echo was delivered
        self._in_flight[message_id] = False
        try:
            await asyncio.wait_for(
                self._redis.publish(self.channel, envelope),
                timeout=self.publish_timeout,
            )
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning(
                "ssehub.backplane_unavailable",
                event_type=message.event.event_type,
                error=str(e) or type(e).__name__,
            )
            echoed = self._in_flight.get(message_id, False)
            if not echoed and message_id not in self._delivered_locally:
                self._deliver_locally(message_id, message)
        finally:
            self._in_flight.pop(message_id, None)
        return True

    def _deliver_locally(self, message_id: str, message: Message) -> None:
        self._delivered_locally[message_id] = None
        while len(self._delivered_locally) > self.SEEN_LIMIT:
            self._delivered_locally.popitem(last=False)
        self._deliver(message)

    def handle_raw(self, raw: str | bytes) -> None:
        """Deliver one envelope received from the channel."""
        try:
            message_id, origin, message = decode_envelope(raw)
        except EventDecodeError as e:
            logger.warning("ssehub.backplane_bad_envelope", error=str(e))
            return

        if message_id in self._delivered_locally:
            # Already delivered here while Redis was misbehaving
            del self._delivered_locally[message_id]
            return
        if message_id in self._in_flight:
            self._in_flight[message_id] = True
        self._deliver(message)

    async def _listen_loop(self) -> None:
        """Subscribe and forward until stopped, reconnecting on failure."""
        while not self._stopping:
            pubsub = self._redis.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                self._listening = True
                logger.info(
                    "ssehub.backplane_subscribed",
                    channel=self.channel,
                    instance_id=self.instance_id,
                )
                async for raw in pubsub.listen():
                    if raw["type"] == "message":
                        self.handle_raw(raw["data"])
            except (RedisError, OSError) as e:
                logger.warning("ssehub.backplane_listener_error", error=str(e))
            except Exception:
                logger.exception("ssehub.backplane_listener_crashed")
            finally:
                self._listening = False
                try:
                    await pubsub.aclose()
                except (RedisError, OSError):
                    pass

            if not self._stopping:
                await asyncio.sleep(self.reconnect_delay)


def build_backplane(settings) -> Backplane:
    """Pick the backplane implementation from settings."""
    if settings.backplane == "redis":
        return RedisBackplane(
            redis_url=settings.redis_url,
            channel=settings.backplane_channel,
            instance_id=settings.instance_id,
            publish_timeout=settings.backplane_publish_timeout,
            reconnect_delay=settings.backplane_reconnect_delay,
        )
    return LocalBackplane()
