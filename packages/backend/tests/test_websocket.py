"""WebSocket endpoint tests — connect, receive broadcasts, disconnect.

Learn: Starlette's TestClient drives the real /ws handler. The client
is used as a context manager so the WebSocket session and the HTTP
requests that trigger broadcasts share one event loop.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect, WebSocketState

from itemwire.config import Settings
from itemwire.events.models import ChangeEvent
from itemwire.main import create_app
from itemwire.realtime.websocket import subscribe_websocket
from itemwire.registry import StoreUnavailable
from itemwire.services import build_services

from conftest import CountingStore


def test_connect_registers_and_receives_matching_changes(app, store):
    with TestClient(app) as client:
        with client.websocket_connect("/ws?vehicleId=V1") as ws_a, \
                client.websocket_connect("/ws?vehicleId=V2") as ws_b:
            hello_a = ws_a.receive_json()
            hello_b = ws_b.receive_json()
            assert hello_a["type"] == "connected"
            assert hello_a["topic_value"] == "V1"
            assert store.ids() == {hello_a["connection_id"], hello_b["connection_id"]}

            attributes = {"vehicleId": "V1", "speed": 42}
            r = client.post("/api/v1/events", json={"attributes": attributes})
            assert r.status_code == 200
            assert r.json()["status"] == "sent"
            assert r.json()["delivered"] == 1

            assert ws_a.receive_json() == attributes

            # B only hears about V2
            client.post("/api/v1/events", json={"attributes": {"vehicleId": "V2"}})
            assert ws_b.receive_json() == {"vehicleId": "V2"}


def test_disconnect_removes_subscription(app, store):
    with TestClient(app) as client:
        with client.websocket_connect("/ws?vehicleId=V1") as ws:
            connection_id = ws.receive_json()["connection_id"]
            assert connection_id in store.ids()
        assert store.ids() == set()


def test_ping_pong(app):
    with TestClient(app) as client:
        with client.websocket_connect("/ws?vehicleId=V1") as ws:
            ws.receive_json()
            ws.send_text("not json")
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}


def test_missing_subscription_id_closes_with_4400(app, store):
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws?speed=1"):
                pass
    assert exc_info.value.code == 4400
    assert store.calls["put"] == 0


def test_header_carrier_mode():
    settings = Settings(topic_key_name="vehicleId", carrier_mode="header", store_backend="memory")
    store = CountingStore()
    app = create_app(settings, services=build_services(settings, store=store))

    with TestClient(app) as client:
        with client.websocket_connect("/ws", headers={"vehicleId": "V5"}) as ws:
            assert ws.receive_json()["topic_value"] == "V5"

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws?vehicleId=V5"):
                pass
        assert exc_info.value.code == 4400


# ═══════════════════════════════════════════════════════════
# Handshake ordering
# ═══════════════════════════════════════════════════════════


class BroadcastOnPutStore(CountingStore):
    """Runs a broadcast for the item the moment its first record is written."""

    def __init__(self):
        super().__init__()
        self.broadcaster = None
        self.reports = []

    async def put(self, record):
        await super().put(record)
        if self.broadcaster is not None and not self.reports:
            event = ChangeEvent(attributes={"vehicleId": record.topic_value})
            self.reports.append(await self.broadcaster.broadcast(event))


def test_change_during_connect_keeps_the_new_subscription(settings):
    store = BroadcastOnPutStore()
    services = build_services(settings, store=store)
    store.broadcaster = services.broadcaster
    app = create_app(settings, services=services)

    with TestClient(app) as client:
        with client.websocket_connect("/ws?vehicleId=V1") as ws:
            # The racing change reaches the socket instead of evicting it
            assert ws.receive_json() == {"vehicleId": "V1"}
            hello = ws.receive_json()
            assert hello["type"] == "connected"
            assert store.ids() == {hello["connection_id"]}
            assert store.reports[0].evicted == []
            assert store.reports[0].delivered == [hello["connection_id"]]


def test_registry_failure_after_accept_closes_with_1011(store, services, app):
    with patch.object(store, "put", AsyncMock(side_effect=StoreUnavailable("redis down"))):
        with TestClient(app) as client:
            with client.websocket_connect("/ws?vehicleId=V1") as ws:
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    ws.receive_json()

    assert exc_info.value.code == 1011
    assert services.local_transport.connection_count == 0
    assert store.ids() == set()


@pytest.mark.asyncio
async def test_client_dropping_during_handshake_leaves_nothing_behind(services, store):
    websocket = MagicMock()
    websocket.app.state.services = services
    websocket.headers = {}
    websocket.query_params = {"vehicleId": "V1"}
    websocket.accept = AsyncMock()
    websocket.close = AsyncMock()
    websocket.send_json = AsyncMock(side_effect=WebSocketDisconnect(code=1006))
    websocket.client_state = WebSocketState.DISCONNECTED

    await subscribe_websocket(websocket)

    assert store.calls["put"] == 1
    assert store.ids() == set()
    assert services.local_transport.connection_count == 0
    websocket.close.assert_not_awaited()
