"""ssehub CLI — run the hub, mint dev tokens, watch and poke event streams.

Usage:
    ssehub serve                                  # Run the hub under uvicorn
    ssehub token alice                            # Mint a dev access token
    ssehub listen --user alice                    # Print alice's live events
    ssehub force-logout bob "password changed"    # Log out all of bob's tabs
    ssehub broadcast "maintenance in 5 minutes"   # Log out everyone
    ssehub health                                 # Connection counts, backplane
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from dataclasses import dataclass
from typing import AsyncIterator, Iterable, Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("SSEHUB_API_URL", DEFAULT_API_URL).rstrip("/")


def _client(token: Optional[str] = None, timeout: Optional[float] = 30.0) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the hub."""
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return httpx.AsyncClient(base_url=_api_url(), headers=headers, timeout=timeout)


def _token_for(user: Optional[str], token: Optional[str], roles: tuple[str, ...] = ()) -> str:
    """Use the given token, or mint one for --user with the local secret."""
    if token:
        return token
    token = os.environ.get("SSEHUB_TOKEN")
    if token:
        return token
    if not user:
        click.secho("Error: --token or --user required (or set SSEHUB_TOKEN)", fg="red", err=True)
        sys.exit(1)
    from ssehub.auth.jwt import create_access_token

    return create_access_token(user, extra_claims={"roles": list(roles)} if roles else None)


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


# ---------------------------------------------------------------------------
# SSE parsing
# ---------------------------------------------------------------------------


@dataclass
class SseMessage:
    event: str
    data: str


def parse_sse(lines: Iterable[str]) -> Iterable[SseMessage]:
    """Turn SSE lines into messages. Comments (keep-alives) are skipped."""
    event, data = "message", []
    for line in lines:
        if not line:
            if data:
                yield SseMessage(event=event, data="\n".join(data))
            event, data = "message", []
        elif line.startswith(":"):
            continue
        else:
            field, _, value = line.partition(":")
            value = value[1:] if value.startswith(" ") else value
            if field == "event":
                event = value
            elif field == "data":
                data.append(value)


async def _aparse_sse(lines: AsyncIterator[str]) -> AsyncIterator[SseMessage]:
    buffer: list[str] = []
    async for line in lines:
        buffer.append(line)
        if not line:
            for message in parse_sse(buffer):
                yield message
            buffer = []


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="ssehub")
def main():
    """ssehub — authenticated Server-Sent Events push hub."""


@main.command()
@click.option("--host", default=None, help="Bind address (default: SSEHUB_HOST)")
@click.option("--port", default=None, type=int, help="Port (default: SSEHUB_PORT)")
@click.option("--grace", default=5, help="Seconds to wait for open streams on shutdown")
def serve(host: Optional[str], port: Optional[int], grace: int):
    """Run the hub with uvicorn."""
    import uvicorn

    from ssehub.config import settings

    uvicorn.run(
        "ssehub.main:app",
        host=host or settings.host,
        port=port or settings.port,
        # Event streams never finish on their own
        timeout_graceful_shutdown=grace,
    )


@main.command()
@click.argument("user_id")
@click.option("--admin", is_flag=True, help="Include the admin role")
@click.option("--minutes", default=None, type=int, help="Lifetime in minutes")
def token(user_id: str, admin: bool, minutes: Optional[int]):
    """Mint an access token signed with SSEHUB_JWT_SECRET (development)."""
    from ssehub.auth.jwt import create_access_token

    claims = {"roles": ["admin"]} if admin else None
    click.echo(create_access_token(user_id, expires_minutes=minutes, extra_claims=claims))


# ---------------------------------------------------------------------------
# ssehub listen
# ---------------------------------------------------------------------------


@main.command()
@click.option("--user", "-u", help="Mint a token for this user id")
@click.option("--token", "-t", help="Access token (or set SSEHUB_TOKEN)")
@click.option("--count", "-n", default=0, help="Exit after N events (0 = forever)")
def listen(user: Optional[str], token: Optional[str], count: int):
    """Open an event stream and print every event as it arrives."""
    try:
        asyncio.run(_listen_impl(_token_for(user, token), count))
    except KeyboardInterrupt:
        pass


async def _listen_impl(token: str, count: int):
    received = 0
    async with _client(token, timeout=None) as c:
        async with c.stream("GET", "/api/v1/events") as r:
            if r.status_code != 200:
                await r.aread()
                click.secho(f"Stream rejected ({r.status_code}): {r.text}", fg="red", err=True)
                sys.exit(1)
            click.secho("Connected. Waiting for events...", fg="green")
            async for message in _aparse_sse(r.aiter_lines()):
                try:
                    body = _pretty_json(json.loads(message.data))
                except json.JSONDecodeError:
                    body = message.data
                click.secho(message.event, bold=True)
                click.echo(body)
                received += 1
                if count and received >= count:
                    return
    click.secho("Stream closed by server.", fg="yellow")


# ---------------------------------------------------------------------------
# ssehub force-logout / broadcast
# ---------------------------------------------------------------------------


@main.command("force-logout")
@click.argument("user_id")
@click.argument("reason", default="Session terminated")
@click.option("--as-user", default="cli-admin", help="Admin identity for a minted token")
@click.option("--token", "-t", help="Admin access token")
def force_logout(user_id: str, reason: str, as_user: str, token: Optional[str]):
    """Force every connection of USER_ID to log out."""
    path = f"/api/v1/users/{user_id}/force-logout"
    asyncio.run(_post_impl(path, {"reason": reason}, _token_for(as_user, token, ("admin",))))


@main.command()
@click.argument("reason")
@click.option("--as-user", default="cli-admin", help="Admin identity for a minted token")
@click.option("--token", "-t", help="Admin access token")
def broadcast(reason: str, as_user: str, token: Optional[str]):
    """Force every connected client to log out."""
    asyncio.run(
        _post_impl("/api/v1/events/broadcast", {"reason": reason}, _token_for(as_user, token, ("admin",)))
    )


async def _post_impl(path: str, body: dict, token: str):
    async with _client(token) as c:
        r = await c.post(path, json=body)
        if r.status_code >= 400:
            click.secho(f"Error {r.status_code}: {r.text}", fg="red", err=True)
            sys.exit(1)
        click.echo(_pretty_json(r.json()))


# ---------------------------------------------------------------------------
# ssehub health
# ---------------------------------------------------------------------------


@main.command()
def health():
    """Show hub status, connection counts and backplane state."""
    asyncio.run(_health_impl())


async def _health_impl():
    async with _client() as c:
        try:
            r = await c.get("/api/v1/health")
        except httpx.HTTPError as e:
            click.secho(f"Hub unreachable: {e}", fg="red", err=True)
            sys.exit(1)
        data = r.json()
        color = "green" if data.get("status") == "healthy" else "yellow"
        click.secho(f"Status: {data.get('status')}", fg=color, bold=True)
        for key in ("version", "instance_id", "connections", "owners", "backplane", "backplane_status"):
            click.echo(f"  {key:<17} {data.get(key, '—')}")


if __name__ == "__main__":
    main()
