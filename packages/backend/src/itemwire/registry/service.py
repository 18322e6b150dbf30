"""Subscription registry — the single writer of subscription records.

Learn: Connect, disconnect and stale-connection eviction all write
through here. Writes are "overwrite on put, idempotent delete", so
concurrent writers never need a lock: each connection only ever touches
its own record, and last write wins.
"""

from collections.abc import Sequence
from typing import Optional

import structlog

from itemwire.registry.models import SUBSCRIPTION_FIELDS, Subscription
from itemwire.registry.store import SubscriptionStore

logger = structlog.get_logger()


class SubscriptionRegistry:
    def __init__(self, store: SubscriptionStore):
        self.store = store

    async def put(self, record: Subscription) -> None:
        """Insert or overwrite the subscription for record.connection_id."""
        await self.store.put(record)
        logger.info(
            "registry.put",
            connection_id=record.connection_id,
            topic_key=record.topic_key,
            topic_value=record.topic_value,
        )

    async def get(self, connection_id: str) -> Optional[Subscription]:
        return await self.store.get(connection_id)

    async def delete(self, connection_id: str) -> None:
        """Remove a subscription. Deleting a missing record is a no-op."""
        await self.store.delete(connection_id)
        logger.info("registry.delete", connection_id=connection_id)

    async def list_all(
        self, projection: Optional[Sequence[str]] = None
    ) -> list[Subscription]:
        """Every current subscription, in no particular order.

        projection limits which fields are read; connection_id is
        always included.
        """
        if projection is None:
            fields = list(SUBSCRIPTION_FIELDS)
        else:
            unknown = set(projection) - set(SUBSCRIPTION_FIELDS)
            if unknown:
                raise ValueError(f"Unknown subscription fields: {sorted(unknown)}")
            fields = ["connection_id"] + [
                f for f in projection if f != "connection_id"
            ]
        return await self.store.scan(fields)
