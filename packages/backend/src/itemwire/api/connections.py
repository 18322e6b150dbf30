"""Connections API — push to a socket held by this process, list subscriptions.

Learn: POST /@connections/{id} is what ConnectionsApiTransport calls.
Processes that don't hold the sockets (the change listener) deliver
through it; 410 Gone tells them the connection no longer exists so
they evict its subscription.
"""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel

from itemwire.fanout.transport import DeliveryOutcome
from itemwire.registry.store import StoreUnavailable
from itemwire.services import Services, get_services

logger = structlog.get_logger()
router = APIRouter()


class SubscriptionRead(BaseModel):
    connection_id: str
    topic_key: Optional[str] = None
    topic_value: Optional[str] = None
    expires_at: Optional[int] = None


@router.post("/@connections/{connection_id}", status_code=200)
async def post_to_connection(
    connection_id: str,
    payload: Any = Body(...),
    services: Services = Depends(get_services),
):
    """Send a payload to one locally-held connection."""
    result = await services.local_transport.send(connection_id, payload)
    logger.info("connections.push", connection_id=connection_id, outcome=result.outcome.value)
    if result.outcome is DeliveryOutcome.GONE:
        raise HTTPException(status_code=410, detail=f"Connection {connection_id} is gone")
    if result.outcome is DeliveryOutcome.ERROR:
        raise HTTPException(status_code=502, detail=result.error)
    return {"connection_id": connection_id, "status": "delivered"}


@router.get("/subscriptions", response_model=list[SubscriptionRead])
async def list_subscriptions(
    topic_value: Optional[str] = None,
    services: Services = Depends(get_services),
):
    """List current subscriptions, optionally for one item."""
    try:
        records = await services.registry.list_all()
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    if topic_value is not None:
        records = [r for r in records if r.topic_value == topic_value]
    return [r.to_dict() for r in records]
