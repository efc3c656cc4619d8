"""Backplane tests — local loopback and Redis fan-out across instances.

Learn: Redis is replaced by a small in-memory double that implements the
three calls the backplane makes (publish, pubsub().subscribe, listen).
Two EventHubs sharing one double behave like two server instances
behind a load balancer.
"""

import asyncio
import json

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

from ssehub.events.types import ActionCreated, EventDecodeError, ForceLogout
from ssehub.realtime.backplane import (
    LocalBackplane,
    RedisBackplane,
    decode_envelope,
    encode_envelope,
)
from ssehub.realtime.hub import EventHub
from ssehub.realtime.router import Message
from ssehub.realtime.scope import Broadcast, ByOwner, ByOwners

CHANNEL = "ssehub:test"


# ─── Redis double ────────────────────────────────────────


class FakePubSub:
    def __init__(self, broker: "FakeRedis"):
        self.broker = broker
        self.queue: asyncio.Queue = asyncio.Queue()
        self.channels: set[str] = set()

    async def subscribe(self, channel: str):
        if self.broker.down:
            raise RedisConnectionError("connection refused")
        self.channels.add(channel)
        self.broker.subscribers.append(self)
        self.queue.put_nowait({"type": "subscribe", "channel": channel, "data": 1})

    async def listen(self):
        if self.broker.crash_next_listen:
            self.broker.crash_next_listen = False
            raise RuntimeError("unexpected reply")
        while True:
            yield await self.queue.get()

    async def aclose(self):
        if self in self.broker.subscribers:
            self.broker.subscribers.remove(self)


class FakeRedis:
    def __init__(self):
        self.subscribers: list[FakePubSub] = []
        self.published: list[tuple[str, str]] = []
        self.down = False
        self.fail_after_send = False
        self.fail_delay = 0.0
        self.crash_next_listen = False

    def pubsub(self) -> FakePubSub:
        return FakePubSub(self)

    async def publish(self, channel: str, data: str) -> int:
        if self.down:
            raise RedisConnectionError("connection refused")
        self.published.append((channel, data))
        receivers = [s for s in self.subscribers if channel in s.channels]
        for sub in receivers:
            sub.queue.put_nowait({"type": "message", "channel": channel, "data": data})
        if self.fail_after_send:
            await asyncio.sleep(self.fail_delay)
            raise RedisConnectionError("connection reset after write")
        return len(receivers)


def _redis_backplane(fake: FakeRedis, instance_id: str) -> RedisBackplane:
    return RedisBackplane(
        redis_url="redis://unused",
        channel=CHANNEL,
        instance_id=instance_id,
        publish_timeout=0.5,
        reconnect_delay=0.01,
        redis=fake,
    )


@pytest_asyncio.fixture()
async def cluster(wait_until):
    """Two hubs ("instances") sharing one fake Redis."""
    fake = FakeRedis()
    hubs = [
        EventHub(backplane=_redis_backplane(fake, name), keepalive_interval=10)
        for name in ("instance-a", "instance-b")
    ]
    for hub in hubs:
        await hub.start()
    await wait_until(lambda: all(h.backplane.healthy for h in hubs))
    try:
        yield fake, hubs
    finally:
        for hub in hubs:
            await hub.shutdown()


def _connect(hub: EventHub, owner: str):
    return hub.open_handler().handshake(owner)


def _action():
    return ActionCreated(coaching_session_id="s-1", action={"id": "a-1"})


# ─── Envelope ────────────────────────────────────────────


def test_envelope_round_trip():
    message = Message(_action(), ByOwners({"alice", "bob"}))
    message_id, origin, decoded = decode_envelope(encode_envelope(message, "inst-1", "m-1"))
    assert (message_id, origin) == ("m-1", "inst-1")
    assert decoded == message


@pytest.mark.parametrize(
    "raw",
    [
        "nope",
        json.dumps({"id": "m", "event": {"type": "force_logout", "data": {"reason": "x"}}}),
        json.dumps({"id": "m", "event": {"type": "force_logout", "data": {"reason": "x"}},
                    "scope": {"kind": "galaxy"}}),
        json.dumps({"id": "m", "event": {"type": "bogus", "data": {}}, "scope": {"kind": "broadcast"}}),
        json.dumps({"id": "m", "event": {"type": "force_logout", "data": {"reason": "x"}},
                    "scope": {"kind": "owners", "owners": "alice"}}),
        json.dumps({"id": "m", "event": {"type": "force_logout", "data": {"reason": "x"}},
                    "scope": {"kind": "owner", "owner": None}}),
    ],
)
def test_bad_envelopes_rejected(raw):
    with pytest.raises(EventDecodeError):
        decode_envelope(raw)


# ─── Local ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_local_backplane_delivers_in_process():
    hub = EventHub(backplane=LocalBackplane(), keepalive_interval=10)
    await hub.start()
    conn = _connect(hub, "alice")

    assert await hub.publish(_action(), ByOwner("alice")) is True
    assert conn.outbound.qsize() == 1
    await hub.shutdown()


@pytest.mark.asyncio
async def test_local_backplane_reports_serialization_failure():
    hub = EventHub(backplane=LocalBackplane(), keepalive_interval=10)
    await hub.start()
    bad = ActionCreated(coaching_session_id="s", action={"x": object()})
    assert await hub.publish(bad, Broadcast()) is False
    await hub.shutdown()


# ─── Redis fan-out ───────────────────────────────────────


@pytest.mark.asyncio
async def test_publish_reaches_connections_on_every_instance(cluster, wait_until):
    fake, (a, b) = cluster
    on_a = _connect(a, "alice")
    on_b = _connect(b, "alice")
    bob_on_b = _connect(b, "bob")

    assert await a.publish(_action(), ByOwner("alice")) is True

    # Same path for the publishing instance: its own copy comes back via Redis
    await wait_until(lambda: on_a.outbound.qsize() == 1 and on_b.outbound.qsize() == 1)
    assert bob_on_b.outbound.qsize() == 0
    assert len(fake.published) == 1


@pytest.mark.asyncio
async def test_received_messages_are_not_republished(cluster, wait_until):
    fake, (a, b) = cluster
    conns = [_connect(a, "alice"), _connect(b, "bob")]

    await b.publish(ForceLogout(reason="maintenance"), Broadcast())
    await wait_until(lambda: all(c.outbound.qsize() == 1 for c in conns))
    await asyncio.sleep(0.05)

    assert len(fake.published) == 1
    assert all(c.outbound.qsize() == 1 for c in conns)


@pytest.mark.asyncio
async def test_redis_down_degrades_to_local_delivery(cluster):
    fake, (a, b) = cluster
    local = _connect(a, "alice")
    remote = _connect(b, "alice")
    fake.down = True

    assert await a.publish(_action(), ByOwner("alice")) is True

    assert local.outbound.qsize() == 1
    await asyncio.sleep(0.05)
    assert remote.outbound.qsize() == 0


@pytest.mark.asyncio
async def test_ambiguous_failure_does_not_double_deliver(cluster, wait_until):
    """Redis took the message but the client saw an error: deliver once only."""
    fake, (a, b) = cluster
    local = _connect(a, "alice")
    remote = _connect(b, "alice")
    fake.fail_after_send = True

    await a.publish(_action(), ByOwner("alice"))
    await wait_until(lambda: remote.outbound.qsize() == 1)
    await asyncio.sleep(0.05)

    assert local.outbound.qsize() == 1


@pytest.mark.asyncio
async def test_publish_while_listener_down_still_delivers_locally(wait_until):
    fake = FakeRedis()
    fake.down = True
    hub = EventHub(backplane=_redis_backplane(fake, "solo"), keepalive_interval=10)
    await hub.start()
    conn = _connect(hub, "alice")

    assert hub.backplane.healthy is False
    assert await hub.publish(_action(), ByOwner("alice")) is True
    assert conn.outbound.qsize() == 1

    # Redis comes back; the listener resubscribes and later publishes flow through it
    fake.down = False
    await wait_until(lambda: hub.backplane.healthy)
    await hub.publish(_action(), ByOwner("alice"))
    await wait_until(lambda: conn.outbound.qsize() == 2)
    await hub.shutdown()


@pytest.mark.asyncio
async def test_bad_envelope_on_channel_is_ignored(cluster, wait_until):
    fake, (a, _) = cluster
    conn = _connect(a, "alice")

    await fake.publish(CHANNEL, "garbage")
    await a.publish(_action(), ByOwner("alice"))

    await wait_until(lambda: conn.outbound.qsize() == 1)
    assert a.backplane.healthy


@pytest.mark.asyncio
async def test_echo_before_failed_publish_is_delivered_once(cluster, wait_until):
    """Our own copy came back from Redis, then the publish call still failed."""
    fake, (a, b) = cluster
    local = _connect(a, "alice")
    remote = _connect(b, "alice")
    fake.fail_after_send = True
    fake.fail_delay = 0.05

    await a.publish(_action(), Broadcast())
    await wait_until(lambda: remote.outbound.qsize() == 1)
    await asyncio.sleep(0.05)

    assert local.outbound.qsize() == 1
    assert remote.outbound.qsize() == 1


@pytest.mark.asyncio
async def test_listener_survives_unexpected_error(wait_until):
    fake = FakeRedis()
    fake.crash_next_listen = True
    hub = EventHub(backplane=_redis_backplane(fake, "solo"), keepalive_interval=10)
    await hub.start()
    conn = _connect(hub, "alice")

    # First subscription blows up; the listener logs it and resubscribes
    await wait_until(lambda: not fake.crash_next_listen and hub.backplane.healthy)
    await hub.publish(_action(), ByOwner("alice"))
    await wait_until(lambda: conn.outbound.qsize() == 1)

    await hub.shutdown()
    assert conn.closed
