"""Connect / disconnect — the registry's write path for live connections.

Learn: On connect, the subscriber names the item it wants to follow.
The value travels either as a header or as a query parameter (config:
carrier_mode), and its name is the topic key itself — e.g. with
topic_key_name="vehicleId" a client connects to /ws?vehicleId=V1.

Missing value → ClientInputError, nothing is registered.
On disconnect the record is deleted unconditionally.
"""

from collections.abc import Mapping
from typing import Optional

import structlog

from itemwire.registry.models import Subscription
from itemwire.registry.service import SubscriptionRegistry

logger = structlog.get_logger()


class ClientInputError(Exception):
    """Connect request is missing required subscription data."""


def _lookup_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    # Header names are case-insensitive; starlette's Headers already is,
    # plain dicts are not.
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                return candidate
    return value


class SubscriptionLifecycle:
    def __init__(
        self,
        registry: SubscriptionRegistry,
        topic_key_name: str,
        carrier_mode: str = "query_param",
        ttl_seconds: int = 3600,
    ):
        self.registry = registry
        self.topic_key_name = topic_key_name
        self.carrier_mode = carrier_mode
        self.ttl_seconds = ttl_seconds

    def extract_subscription_id(
        self,
        headers: Optional[Mapping[str, str]],
        query_params: Optional[Mapping[str, str]],
    ) -> str:
        """Pull the subscribed item id out of the configured carrier."""
        key = self.topic_key_name
        if self.carrier_mode == "query_param":
            if not query_params:
                raise ClientInputError("No query string parameters found")
            value = query_params.get(key)
            if not value:
                raise ClientInputError(f"No query string parameter {key} found")
        else:
            if not headers:
                raise ClientInputError("No headers found")
            value = _lookup_header(headers, key)
            if not value:
                raise ClientInputError(f"No header {key} found")
        return value

    async def connect(
        self,
        connection_id: str,
        headers: Optional[Mapping[str, str]] = None,
        query_params: Optional[Mapping[str, str]] = None,
    ) -> Subscription:
        """Register a new connection's subscription.

        Raises ClientInputError (nothing written) or StoreUnavailable.
        """
        topic_value = self.extract_subscription_id(headers, query_params)
        return await self.register(connection_id, topic_value)

    async def register(self, connection_id: str, topic_value: str) -> Subscription:
        """Write the record for an already-validated subscription id.

        The socket must already be attached to its transport: a broadcast
        that finds a record without a socket evicts it as gone.
        """
        record = Subscription.create(
            connection_id=connection_id,
            topic_key=self.topic_key_name,
            topic_value=topic_value,
            ttl_seconds=self.ttl_seconds,
        )
        await self.registry.put(record)
        logger.info("lifecycle.connected", connection_id=connection_id, topic_value=topic_value)
        return record

    async def disconnect(self, connection_id: str) -> None:
        await self.registry.delete(connection_id)
        logger.info("lifecycle.disconnected", connection_id=connection_id)
