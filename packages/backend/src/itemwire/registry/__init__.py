"""Subscription registry — who is listening to which item."""

from itemwire.registry.models import SUBSCRIPTION_FIELDS, Subscription
from itemwire.registry.service import SubscriptionRegistry
from itemwire.registry.store import (
    MemorySubscriptionStore,
    RedisSubscriptionStore,
    StoreUnavailable,
    SubscriptionStore,
)

__all__ = [
    "SUBSCRIPTION_FIELDS",
    "MemorySubscriptionStore",
    "RedisSubscriptionStore",
    "StoreUnavailable",
    "Subscription",
    "SubscriptionRegistry",
    "SubscriptionStore",
]
