"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: There is no auth layer — subscribers and event producers are
trusted callers on the internal network.
"""

from fastapi import APIRouter

from itemwire.api.connections import router as connections_router
from itemwire.api.events import router as events_router
from itemwire.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(events_router, tags=["events"])
api_router.include_router(connections_router, tags=["connections", "subscriptions"])
