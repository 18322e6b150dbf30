"""Transport send primitive — push one payload to one connection.

Learn: send() never raises. Every attempt comes back as a tagged
DeliveryResult so the broadcaster can branch on it exhaustively:

- delivered — the connection accepted the payload
- gone      — the connection no longer exists (stale registry record)
- error     — anything else (timeout, server error, network failure)

Two implementations:
1. LocalWebSocketTransport — sockets accepted by this process, held in
   a dict by the /ws endpoint. An id we don't hold is "gone".
2. ConnectionsApiTransport — POSTs to a connections management API
   ({endpoint}/@connections/{id}, 410 = gone). Used by processes that
   don't own the sockets, e.g. the change listener, which pushes through
   the API server's own /api/v1/@connections route.
"""

import asyncio
import enum
from dataclasses import dataclass
from typing import Any, Optional, Protocol
from urllib.parse import quote

import httpx
import structlog
from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

REQUEST_ID_HEADER = "X-Request-ID"


class DeliveryOutcome(str, enum.Enum):
    DELIVERED = "delivered"
    GONE = "gone"
    ERROR = "error"


@dataclass(frozen=True)
class DeliveryResult:
    connection_id: str
    outcome: DeliveryOutcome
    error: Optional[str] = None


class Transport(Protocol):
    async def send(self, connection_id: str, payload: Any) -> DeliveryResult: ...


def _is_closed(websocket: WebSocket) -> bool:
    return (
        websocket.client_state == WebSocketState.DISCONNECTED
        or websocket.application_state == WebSocketState.DISCONNECTED
    )


class LocalWebSocketTransport:
    """Delivers to WebSockets accepted by this process."""

    def __init__(self, send_timeout: float = 10.0):
        self.send_timeout = send_timeout
        self._sockets: dict[str, WebSocket] = {}

    @property
    def connection_count(self) -> int:
        return len(self._sockets)

    def attach(self, connection_id: str, websocket: WebSocket) -> None:
        self._sockets[connection_id] = websocket

    def detach(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)

    async def send(self, connection_id: str, payload: Any) -> DeliveryResult:
        websocket = self._sockets.get(connection_id)
        if websocket is None or _is_closed(websocket):
            return DeliveryResult(connection_id, DeliveryOutcome.GONE)

        try:
            await asyncio.wait_for(websocket.send_json(payload), self.send_timeout)
        except WebSocketDisconnect:
            return DeliveryResult(connection_id, DeliveryOutcome.GONE)
        except asyncio.TimeoutError:
            return DeliveryResult(
                connection_id,
                DeliveryOutcome.ERROR,
                f"send timed out after {self.send_timeout}s",
            )
        except Exception as e:
            # Starlette raises RuntimeError when sending on a socket that
            # closed mid-flight, which is a disconnect.
            if _is_closed(websocket):
                return DeliveryResult(connection_id, DeliveryOutcome.GONE)
            return DeliveryResult(connection_id, DeliveryOutcome.ERROR, repr(e))

        return DeliveryResult(connection_id, DeliveryOutcome.DELIVERED)


class ConnectionsApiTransport:
    """Delivers through an HTTP connections management API.

    The client is owned by whoever built it (the API lifespan, the
    listener entry point) and closed there.
    """

    def __init__(self, endpoint: str, client: httpx.AsyncClient):
        self.endpoint = endpoint.rstrip("/")
        self.client = client

    async def send(self, connection_id: str, payload: Any) -> DeliveryResult:
        url = f"{self.endpoint}/@connections/{quote(connection_id, safe='')}"
        # Carry the cycle's request id so the API server logs the push under it
        request_id = structlog.contextvars.get_contextvars().get("request_id")
        headers = {REQUEST_ID_HEADER: request_id} if request_id else None
        try:
            resp = await self.client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            return DeliveryResult(connection_id, DeliveryOutcome.ERROR, repr(e))

        if resp.status_code == 410:
            return DeliveryResult(connection_id, DeliveryOutcome.GONE)
        if resp.is_success:
            return DeliveryResult(connection_id, DeliveryOutcome.DELIVERED)
        return DeliveryResult(
            connection_id,
            DeliveryOutcome.ERROR,
            f"HTTP {resp.status_code}: {resp.text[:200]}",
        )
