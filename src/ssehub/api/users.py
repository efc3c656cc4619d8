"""User-targeted system events.

Learn: force-logout is the one system event aimed at a single identity,
e.g. after a password change or an admin disabling the account. Every
open tab of that user receives it; nobody else does.
"""

from fastapi import APIRouter, Depends

from ssehub.api.deps import get_hub
from ssehub.api.events import LogoutReasonRequest, PublishResponse
from ssehub.auth.dependencies import CurrentIdentity, require_admin
from ssehub.events.types import ForceLogout
from ssehub.realtime.hub import EventHub
from ssehub.realtime.scope import ByOwner

router = APIRouter(prefix="/users")


@router.post("/{user_id}/force-logout", response_model=PublishResponse, status_code=202)
async def force_logout(
    user_id: str,
    body: LogoutReasonRequest,
    _: CurrentIdentity = Depends(require_admin),
    hub: EventHub = Depends(get_hub),
):
    """Tell all of a user's connections to end their session."""
    published = await hub.publish(ForceLogout(reason=body.reason), ByOwner(user_id))
    return PublishResponse(published=published, event=ForceLogout.event_type)
