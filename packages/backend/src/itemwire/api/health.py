"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running
and the subscription registry is reachable.
"""

from fastapi import APIRouter, Depends

from itemwire import __version__
from itemwire.registry.store import StoreUnavailable
from itemwire.services import Services, get_services

router = APIRouter()


@router.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Check server health and registry connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Any read proves the store is reachable
    try:
        await services.registry.get("__health__")
        checks["registry"] = "ok"
    except StoreUnavailable as e:
        checks["registry"] = f"error: {e}"

    status = "healthy" if checks["registry"] == "ok" else "degraded"
    return {
        "status": status,
        "connections": services.local_transport.connection_count,
        **checks,
    }
