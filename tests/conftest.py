"""Test fixtures — a started hub per test and an HTTP client wired to it.

Learn: httpx's ASGITransport doesn't run the app's lifespan, so the
`client` fixture builds a fresh app and puts a started EventHub on
app.state itself, the same thing the lifespan does in production.
Keepalives are shortened to 50ms so timing tests stay fast.

Auth is real: tests mint JWTs with the same secret the app verifies
against, via the `auth_headers` fixture.
"""

import asyncio
from typing import Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from ssehub.auth.jwt import create_access_token
from ssehub.main import create_app
from ssehub.realtime.backplane import LocalBackplane
from ssehub.realtime.hub import EventHub

KEEPALIVE = 0.05


@pytest_asyncio.fixture()
async def hub():
    """Started single-process hub; shut down (all streams closed) after the test."""
    h = EventHub(
        backplane=LocalBackplane(),
        keepalive_interval=KEEPALIVE,
        queue_max_size=8,
        retry_ms=3000,
    )
    await h.start()
    try:
        yield h
    finally:
        await h.shutdown()


@pytest_asyncio.fixture()
async def client(hub):
    """HTTP client for an app whose hub is the `hub` fixture."""
    app = create_app()
    app.state.hub = hub

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def auth_headers() -> Callable[..., dict]:
    """Build Authorization headers for a user: auth_headers("alice", admin=True)."""

    def make(user_id: str, admin: bool = False) -> dict:
        claims = {"roles": ["admin"]} if admin else None
        token = create_access_token(user_id, extra_claims=claims)
        return {"Authorization": f"Bearer {token}"}

    return make


@pytest.fixture()
def wait_until():
    """Poll a predicate on the event loop until it holds (or fail)."""

    async def wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)

    return wait
