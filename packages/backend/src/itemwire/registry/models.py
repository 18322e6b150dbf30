"""Subscription record — one per live connection."""

import time
from dataclasses import asdict, dataclass
from typing import Optional

SUBSCRIPTION_FIELDS = ("connection_id", "topic_key", "topic_value", "expires_at")


@dataclass(frozen=True)
class Subscription:
    """The stored interest of one live connection in one item.

    Learn: topic_key names the attribute that identifies an item
    (e.g. "vehicleId"), topic_value is the identifier this connection
    wants to hear about. expires_at is a unix timestamp set once at
    connect time and never refreshed — it's a hint for the store's own
    garbage collection, nothing in itemwire filters on it.

    Everything except connection_id is optional so projected reads
    (list_all with a field subset) can leave fields unset.
    """

    connection_id: str
    topic_key: Optional[str] = None
    topic_value: Optional[str] = None
    expires_at: Optional[int] = None

    @classmethod
    def create(
        cls,
        connection_id: str,
        topic_key: str,
        topic_value: str,
        ttl_seconds: int,
        now: Optional[float] = None,
    ) -> "Subscription":
        """Build a fresh record expiring ttl_seconds from now."""
        now = time.time() if now is None else now
        return cls(
            connection_id=connection_id,
            topic_key=topic_key,
            topic_value=topic_value,
            expires_at=int(now) + ttl_seconds,
        )

    def to_dict(self) -> dict:
        return asdict(self)
