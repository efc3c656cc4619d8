"""Shared route dependencies."""

from fastapi import Request

from ssehub.realtime.hub import EventHub


def get_hub(request: Request) -> EventHub:
    """The process-wide hub built in the lifespan (see main.py)."""
    hub = getattr(request.app.state, "hub", None)
    if hub is None:
        raise RuntimeError("EventHub not initialized. Is the lifespan running?")
    return hub
