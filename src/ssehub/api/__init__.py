"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Health is open; everything else authenticates per route, since
the stream route needs the identity itself (not just a gate) and the
publish routes need the admin role.
"""

from fastapi import APIRouter

from ssehub.api.events import router as events_router
from ssehub.api.health import router as health_router
from ssehub.api.users import router as users_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(events_router, tags=["events"])
api_router.include_router(users_router, tags=["users"])
