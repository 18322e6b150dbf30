"""Test fixtures — in-memory registry, scripted transport, ASGI clients.

Learn: Nothing here needs Redis or a real socket. The registry runs on
MemorySubscriptionStore (wrapped to count calls), and the broadcaster
sends through a ScriptedTransport that records every attempt and
returns whatever outcome the test assigned to each connection id.

The `app` fixture passes a prebuilt Services bundle to create_app(),
so the lifespan doesn't validate env config or connect to Redis.
"""

from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from itemwire.config import Settings
from itemwire.fanout.broadcaster import Broadcaster
from itemwire.fanout.transport import DeliveryOutcome, DeliveryResult
from itemwire.main import create_app
from itemwire.registry import MemorySubscriptionStore, Subscription, SubscriptionRegistry
from itemwire.services import build_services

TOPIC_KEY = "vehicleId"


class CountingStore(MemorySubscriptionStore):
    """MemorySubscriptionStore that counts calls per operation."""

    def __init__(self):
        super().__init__()
        self.calls: dict[str, int] = {"put": 0, "get": 0, "delete": 0, "scan": 0}

    async def put(self, record):
        self.calls["put"] += 1
        await super().put(record)

    async def get(self, connection_id):
        self.calls["get"] += 1
        return await super().get(connection_id)

    async def delete(self, connection_id):
        self.calls["delete"] += 1
        await super().delete(connection_id)

    async def scan(self, projection):
        self.calls["scan"] += 1
        return await super().scan(projection)

    def ids(self) -> set[str]:
        return set(self._records)


class ScriptedTransport:
    """Records every send; returns the outcome scripted per connection id."""

    def __init__(self, outcomes: dict[str, DeliveryOutcome] | None = None):
        self.outcomes = outcomes or {}
        self.sent: list[tuple[str, Any]] = []

    async def send(self, connection_id: str, payload: Any) -> DeliveryResult:
        self.sent.append((connection_id, payload))
        outcome = self.outcomes.get(connection_id, DeliveryOutcome.DELIVERED)
        error = "connection reset" if outcome is DeliveryOutcome.ERROR else None
        return DeliveryResult(connection_id, outcome, error)


def make_subscription(connection_id: str, topic_value: str, topic_key: str = TOPIC_KEY):
    return Subscription.create(connection_id, topic_key, topic_value, ttl_seconds=3600)


@pytest.fixture()
def settings():
    return Settings(
        topic_key_name=TOPIC_KEY,
        carrier_mode="query_param",
        store_backend="memory",
        transport="local",
        send_timeout_seconds=1.0,
    )


@pytest.fixture()
def store():
    return CountingStore()


@pytest.fixture()
def registry(store):
    return SubscriptionRegistry(store)


@pytest.fixture()
def transport():
    return ScriptedTransport()


@pytest.fixture()
def broadcaster(registry, transport):
    return Broadcaster(registry, transport, TOPIC_KEY)


@pytest.fixture()
def services(settings, store):
    return build_services(settings, store=store)


@pytest.fixture()
def app(settings, services):
    return create_app(settings, services=services)


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client bound to the app via ASGI — no network."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
