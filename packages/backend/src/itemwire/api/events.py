"""Change events API — producers POST created/updated items here.

Learn: Each POST runs exactly one broadcast cycle. The response tells
the producer what happened:

- 200 sent            — delivered (stale connections were evicted)
- 200 no_recipients   — nobody is subscribed to this item
- 200 malformed_event — the item has no value for the topic key; nothing sent
- 500                 — a delivery failed for a reason other than "gone"
- 503                 — the subscription registry is unreachable
"""

from fastapi import APIRouter, Depends, HTTPException

from itemwire.events.models import ChangeEvent
from itemwire.fanout.broadcaster import DeliveryError
from itemwire.registry.store import StoreUnavailable
from itemwire.services import Services, get_services

router = APIRouter(prefix="/events")


@router.post("")
async def publish_change(
    body: ChangeEvent,
    services: Services = Depends(get_services),
):
    """Broadcast a created/updated item to its subscribers."""
    try:
        report = await services.broadcaster.broadcast(body)
    except DeliveryError as e:
        raise HTTPException(
            status_code=500,
            detail={"message": str(e), **e.report.to_dict()},
        )
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return report.to_dict()
