"""Service wiring — build the registry, transports and broadcaster.

Learn: Nothing here is a module-level global. Entry points (the API
lifespan, the change listener) own the Redis client and HTTP client,
build a Services bundle with build_services(), and hand it to whatever
needs it. Tests build their own bundle around an in-memory store.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
import redis.asyncio as aioredis
from starlette.requests import HTTPConnection

from itemwire.config import Settings
from itemwire.fanout.broadcaster import Broadcaster
from itemwire.fanout.transport import (
    ConnectionsApiTransport,
    LocalWebSocketTransport,
    Transport,
)
from itemwire.lifecycle import SubscriptionLifecycle
from itemwire.registry.service import SubscriptionRegistry
from itemwire.registry.store import (
    MemorySubscriptionStore,
    RedisSubscriptionStore,
    SubscriptionStore,
)


@dataclass
class Services:
    registry: SubscriptionRegistry
    lifecycle: SubscriptionLifecycle
    broadcaster: Broadcaster
    # Sockets accepted by this process (the /ws endpoint attaches here)
    local_transport: LocalWebSocketTransport
    # What the broadcaster actually sends through
    transport: Transport


def build_store(
    settings: Settings, redis: Optional[aioredis.Redis] = None
) -> SubscriptionStore:
    if settings.store_backend == "memory":
        return MemorySubscriptionStore()
    if redis is None:
        raise ValueError("store_backend=redis needs a Redis client")
    return RedisSubscriptionStore(redis)


def build_services(
    settings: Settings,
    *,
    store: Optional[SubscriptionStore] = None,
    redis: Optional[aioredis.Redis] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Services:
    """Assemble every component from settings.

    Pass store to bypass backend selection (tests), redis for the Redis
    backend, http_client for the connections_api transport.
    """
    registry = SubscriptionRegistry(store or build_store(settings, redis))
    local_transport = LocalWebSocketTransport(send_timeout=settings.send_timeout_seconds)

    transport: Transport
    if settings.transport == "connections_api":
        if http_client is None:
            raise ValueError("transport=connections_api needs an HTTP client")
        transport = ConnectionsApiTransport(settings.ws_endpoint, client=http_client)
    else:
        transport = local_transport

    return Services(
        registry=registry,
        lifecycle=SubscriptionLifecycle(
            registry,
            topic_key_name=settings.topic_key_name,
            carrier_mode=settings.carrier_mode,
            ttl_seconds=settings.ttl_seconds,
        ),
        broadcaster=Broadcaster(registry, transport, settings.topic_key_name),
        local_transport=local_transport,
        transport=transport,
    )


def get_services(conn: HTTPConnection) -> Services:
    """FastAPI dependency — the Services bundle built at startup."""
    services = getattr(conn.app.state, "services", None)
    if services is None:
        raise RuntimeError("Services not initialized. Is the app lifespan running?")
    return services
