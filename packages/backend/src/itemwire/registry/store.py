"""Subscription storage backends.

Learn: The registry doesn't know which database it talks to. Anything
implementing SubscriptionStore works:

- RedisSubscriptionStore — one hash per connection, shared by every
  API worker and the change listener. The record's expires_at becomes
  the key's EXPIREAT, so Redis itself garbage-collects abandoned
  subscriptions (nothing in itemwire purges them).
- MemorySubscriptionStore — a dict. Single process only; used for local
  development and tests.

Backends raise StoreUnavailable when the underlying storage can't be
reached. Nobody retries — the enclosing connect/disconnect/broadcast fails.
"""

from collections.abc import Sequence
from typing import Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from itemwire.registry.models import SUBSCRIPTION_FIELDS, Subscription


class StoreUnavailable(Exception):
    """The subscription store could not be reached."""


class SubscriptionStore(Protocol):
    """Persistence collaborator, keyed by connection_id."""

    async def put(self, record: Subscription) -> None: ...

    async def get(self, connection_id: str) -> Optional[Subscription]: ...

    async def delete(self, connection_id: str) -> None: ...

    async def scan(self, projection: Sequence[str]) -> list[Subscription]: ...


def _from_fields(connection_id: str, values: dict) -> Subscription:
    expires_at = values.get("expires_at")
    return Subscription(
        connection_id=values.get("connection_id") or connection_id,
        topic_key=values.get("topic_key"),
        topic_value=values.get("topic_value"),
        expires_at=int(expires_at) if expires_at is not None else None,
    )


class RedisSubscriptionStore:
    """Redis-backed store — key itemwire:sub:{connection_id} → hash."""

    def __init__(self, redis: aioredis.Redis, prefix: str = "itemwire:sub:"):
        self.redis = redis
        self.prefix = prefix

    def _key(self, connection_id: str) -> str:
        return f"{self.prefix}{connection_id}"

    async def put(self, record: Subscription) -> None:
        key = self._key(record.connection_id)
        mapping = {k: v for k, v in record.to_dict().items() if v is not None}
        try:
            # Replace the whole hash so an overwrite never keeps old fields
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.hset(key, mapping=mapping)
                if record.expires_at is not None:
                    pipe.expireat(key, record.expires_at)
                await pipe.execute()
        except RedisError as e:
            raise StoreUnavailable(f"Failed to put {record.connection_id}: {e}") from e

    async def get(self, connection_id: str) -> Optional[Subscription]:
        try:
            values = await self.redis.hgetall(self._key(connection_id))
        except RedisError as e:
            raise StoreUnavailable(f"Failed to get {connection_id}: {e}") from e
        if not values:
            return None
        return _from_fields(connection_id, values)

    async def delete(self, connection_id: str) -> None:
        try:
            await self.redis.delete(self._key(connection_id))
        except RedisError as e:
            raise StoreUnavailable(f"Failed to delete {connection_id}: {e}") from e

    async def scan(self, projection: Sequence[str]) -> list[Subscription]:
        fields = list(projection)
        records = []
        try:
            async for key in self.redis.scan_iter(match=f"{self.prefix}*"):
                values = await self.redis.hmget(key, fields)
                if all(v is None for v in values):
                    continue  # expired between SCAN and HMGET
                connection_id = key[len(self.prefix):]
                records.append(_from_fields(connection_id, dict(zip(fields, values))))
        except RedisError as e:
            raise StoreUnavailable(f"Failed to scan subscriptions: {e}") from e
        return records


class MemorySubscriptionStore:
    """In-process dict store. expires_at is kept but never enforced."""

    def __init__(self):
        self._records: dict[str, Subscription] = {}

    async def put(self, record: Subscription) -> None:
        self._records[record.connection_id] = record

    async def get(self, connection_id: str) -> Optional[Subscription]:
        return self._records.get(connection_id)

    async def delete(self, connection_id: str) -> None:
        self._records.pop(connection_id, None)

    async def scan(self, projection: Sequence[str]) -> list[Subscription]:
        wanted = set(projection)
        return [
            Subscription(
                connection_id=r.connection_id,
                **{
                    f: getattr(r, f)
                    for f in SUBSCRIPTION_FIELDS
                    if f != "connection_id" and f in wanted
                },
            )
            for r in self._records.values()
        ]
