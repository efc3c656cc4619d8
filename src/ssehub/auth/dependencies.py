"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current identity from the request.

Two places a token can come from:
1. Authorization: Bearer <jwt> header (API calls, fetch-based SSE clients)
2. ?token=<jwt> query param (browser EventSource can't set headers)
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Query

from ssehub.auth.jwt import TokenError, verify_token


class CurrentIdentity:
    """Represents the authenticated identity making the request.

    Learn: The hub trusts whatever identity the token carries. It owns no
    users; user_id is just the routing key connections are grouped by.
    """

    def __init__(self, user_id: str, roles: Optional[list[str]] = None):
        self.user_id = user_id
        self.roles = roles or []

    def has_role(self, role: str) -> bool:
        return role in self.roles


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
    token: Optional[str] = Query(None),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional — returns None if no auth)."""
    if authorization and authorization.startswith("Bearer "):
        return _authenticate_jwt(authorization[7:])
    if token:
        return _authenticate_jwt(token)
    return None


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if no auth)."""
    if not identity:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


async def require_admin(
    identity: CurrentIdentity = Depends(get_current_user),
) -> CurrentIdentity:
    """Only identities with the admin role may publish system events."""
    if not identity.has_role("admin"):
        raise HTTPException(status_code=403, detail="Admin role required")
    return identity


def _authenticate_jwt(token: str) -> CurrentIdentity:
    """Authenticate via JWT token."""
    try:
        payload = verify_token(token)
    except TokenError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    roles = payload.get("roles") or []
    return CurrentIdentity(user_id=str(payload["sub"]), roles=list(roles))
