"""Event stream API — the SSE endpoint plus server-side publishing.

Learn: GET /events is one long-lived HTTP response per browser tab:

    event: action_created
    data: {"type":"action_created","data":{...}}

    : keep-alive

The handler registers the connection before the response starts and
unregisters when the stream ends. Two safety nets make sure that always
happens: the generator's own finally, and a background task that runs
once Starlette is done with the response (covers a client that drops
before the first chunk was ever pulled).

Response headers matter as much as the body here: proxies must not
buffer (X-Accel-Buffering: no for nginx) or cache the stream.

POST /events/publish lets other platform services push an event through
this instance instead of running their own hub.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from starlette.background import BackgroundTask

from ssehub.api.deps import get_hub
from ssehub.auth.dependencies import CurrentIdentity, get_current_user, require_admin
from ssehub.events.types import EventDecodeError, ForceLogout, event_from_wire
from ssehub.realtime.handler import HandshakeError
from ssehub.realtime.hub import EventHub
from ssehub.realtime.scope import Broadcast, ScopeSpec

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# ─── Schemas ─────────────────────────────────────────────


class PublishRequest(BaseModel):
    event: dict[str, Any] = Field(description='Wire form: {"type": ..., "data": {...}}')
    scope: ScopeSpec


class LogoutReasonRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class PublishResponse(BaseModel):
    published: bool
    event: str


# ─── Stream ──────────────────────────────────────────────


@router.get("/events")
async def event_stream(
    identity: CurrentIdentity = Depends(get_current_user),
    hub: EventHub = Depends(get_hub),
):
    """Open the caller's event stream."""
    handler = hub.open_handler()
    try:
        handler.handshake(identity.user_id)
    except HandshakeError as e:
        raise HTTPException(status_code=401, detail=str(e))

    return StreamingResponse(
        handler.stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        background=BackgroundTask(handler.disconnect),
    )


# ─── Publish ─────────────────────────────────────────────


@router.post("/events/publish", response_model=PublishResponse, status_code=202)
async def publish_event(
    body: PublishRequest,
    _: CurrentIdentity = Depends(require_admin),
    hub: EventHub = Depends(get_hub),
):
    """Publish an arbitrary catalog event to a scope."""
    try:
        event = event_from_wire(body.event)
    except EventDecodeError as e:
        raise HTTPException(status_code=422, detail=str(e))

    published = await hub.publish(event, body.scope.to_scope())
    return PublishResponse(published=published, event=event.event_type)


@router.post("/events/broadcast", response_model=PublishResponse, status_code=202)
async def broadcast_logout(
    body: LogoutReasonRequest,
    _: CurrentIdentity = Depends(require_admin),
    hub: EventHub = Depends(get_hub),
):
    """Force every connected client to log out (e.g. before maintenance)."""
    published = await hub.publish(ForceLogout(reason=body.reason), Broadcast())
    return PublishResponse(published=published, event=ForceLogout.event_type)
