"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and
reports the realtime state: live connections, distinct owners and
whether the backplane is subscribed. A degraded backplane still serves
same-instance clients, so it's reported but not fatal.
"""

from fastapi import APIRouter, Depends

from ssehub import __version__
from ssehub.api.deps import get_hub
from ssehub.config import settings
from ssehub.realtime.hub import EventHub

router = APIRouter()


@router.get("/health")
async def health_check(hub: EventHub = Depends(get_hub)):
    """Check server health and realtime state."""
    checks = {
        "server": "ok",
        "version": __version__,
        "instance_id": settings.instance_id,
        "connections": hub.connection_count,
        "owners": hub.registry.owner_count(),
        "backplane": hub.backplane.name,
        "backplane_status": "ok" if hub.backplane.healthy else "degraded",
    }
    status = "healthy" if hub.backplane.healthy else "degraded"
    return {"status": status, **checks}
