"""WebSocket endpoint — subscribers connect here to follow one item.

Learn: Each client connects to /ws naming the item it wants, e.g.
/ws?vehicleId=V1 (or a vehicleId header, depending on carrier_mode).
The handler:
1. Issues a connection id and validates the subscription id — before
   accepting, so a bad request never gets a live socket
2. Accepts and attaches the socket to the local transport
3. Registers the subscription, only now that broadcasts can reach it
4. Answers pings until the client goes away
5. Detaches and deletes the subscription on disconnect

Everything after accept runs inside one try/finally, so a client that
drops mid-handshake never leaves a socket or a record behind.

Close codes: 4400 = missing subscription id, 1011 = registry unavailable.
"""

import json
import uuid

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from itemwire.lifecycle import ClientInputError
from itemwire.registry.store import StoreUnavailable
from itemwire.services import get_services

logger = structlog.get_logger()
router = APIRouter()

CLOSE_NORMAL = 1000
CLOSE_CLIENT_INPUT = 4400
CLOSE_INTERNAL_ERROR = 1011


@router.websocket("/ws")
async def subscribe_websocket(websocket: WebSocket):
    """WebSocket endpoint for real-time item changes."""
    services = get_services(websocket)
    connection_id = uuid.uuid4().hex
    structlog.contextvars.bind_contextvars(connection_id=connection_id)

    # ── Validate subscription id ────────────────────────────
    try:
        topic_value = services.lifecycle.extract_subscription_id(
            websocket.headers, websocket.query_params
        )
    except ClientInputError as e:
        logger.warning("ws.rejected", reason=str(e))
        await websocket.close(code=CLOSE_CLIENT_INPUT, reason=str(e))
        structlog.contextvars.unbind_contextvars("connection_id")
        return

    close_code = CLOSE_NORMAL
    await websocket.accept()
    try:
        services.local_transport.attach(connection_id, websocket)

        # ── Register subscription ───────────────────────────
        try:
            record = await services.lifecycle.register(connection_id, topic_value)
        except StoreUnavailable as e:
            logger.error("ws.registry_unavailable", error=str(e))
            close_code = CLOSE_INTERNAL_ERROR
            return

        await websocket.send_json({
            "type": "connected",
            "connection_id": connection_id,
            "topic_key": record.topic_key,
            "topic_value": record.topic_value,
        })

        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
                if isinstance(msg, dict) and msg.get("type") == "ping":
                    await websocket.send_json({"type": "pong"})
            except json.JSONDecodeError:
                pass
    except WebSocketDisconnect:
        pass
    finally:
        services.local_transport.detach(connection_id)
        try:
            await services.lifecycle.disconnect(connection_id)
        except StoreUnavailable:
            # Client is already gone; the record expires on its own
            logger.exception("ws.disconnect_failed")
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close(code=close_code)
        structlog.contextvars.unbind_contextvars("connection_id")
