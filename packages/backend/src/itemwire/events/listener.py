"""Change feed listener — Redis pub/sub → broadcast cycles.

Learn: Whatever detects item changes (a DB trigger relay, a CDC
consumer, another service) PUBLISHes the item to the change channel:

    PUBLISH itemwire:changes '{"vehicleId": "V1", "speed": 42}'

(or wrapped: '{"attributes": {...}}'). The listener runs one broadcast
cycle per message, strictly one at a time. A failing cycle is logged and
counted — the listener keeps running, nobody retries.

Runs in its own process, so it can't hold any sockets: it delivers
through the API server's connections endpoint (transport=connections_api).
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError

from itemwire.events.models import ChangeEvent
from itemwire.fanout.broadcaster import (
    Broadcaster,
    BroadcastReport,
    CycleStatus,
    DeliveryError,
)
from itemwire.middleware.request_id import new_request_id
from itemwire.registry.store import StoreUnavailable

logger = structlog.get_logger()


@dataclass
class ListenerStats:
    """Runtime statistics for monitoring."""
    received: int = 0
    invalid: int = 0
    cycles: dict[str, int] = field(default_factory=dict)
    evicted: int = 0
    errors: int = 0
    started_at: Optional[datetime] = None


def parse_change(data: Any) -> ChangeEvent:
    """Decode one pub/sub message into a ChangeEvent.

    Raises ValueError for anything that isn't a JSON object.
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    payload = json.loads(data) if isinstance(data, str) else data
    if not isinstance(payload, dict):
        raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
    if isinstance(payload.get("attributes"), dict):
        return ChangeEvent.model_validate(payload)
    return ChangeEvent(attributes=payload)


class ChangeFeedListener:
    def __init__(
        self,
        redis: aioredis.Redis,
        broadcaster: Broadcaster,
        channel: str = "itemwire:changes",
        poll_timeout: float = 1.0,
    ):
        self.redis = redis
        self.broadcaster = broadcaster
        self.channel = channel
        self.poll_timeout = poll_timeout
        self.stats = ListenerStats()
        self._running = False

    async def run(self) -> None:
        """Subscribe and process messages until stop() is called."""
        self._running = True
        self.stats.started_at = datetime.now(timezone.utc)
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.channel)
        logger.info("listener.started", channel=self.channel)

        try:
            while self._running:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self.poll_timeout
                )
                if message is None or message["type"] != "message":
                    continue
                await self.handle_message(message["data"])
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()
            logger.info("listener.stopped", **self.get_stats())

    async def handle_message(self, data: Any) -> Optional[BroadcastReport]:
        """Run one broadcast cycle for a raw message. Never raises.

        Each cycle gets its own request_id; ConnectionsApiTransport forwards
        it so the API server logs its pushes under the same id.
        """
        self.stats.received += 1
        structlog.contextvars.bind_contextvars(request_id=new_request_id())
        try:
            return await self._run_cycle(data)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

    async def _run_cycle(self, data: Any) -> Optional[BroadcastReport]:
        try:
            event = parse_change(data)
        except (ValueError, ValidationError) as e:
            self.stats.invalid += 1
            logger.warning("listener.invalid_message", error=str(e))
            return None

        try:
            report = await self.broadcaster.broadcast(event)
        except DeliveryError as e:
            self.stats.errors += 1
            self.stats.evicted += len(e.report.evicted)
            logger.exception("listener.delivery_failed", failed=len(e.report.failed))
            return None
        except StoreUnavailable:
            self.stats.errors += 1
            logger.exception("listener.registry_unavailable")
            return None

        self._count(report.status)
        self.stats.evicted += len(report.evicted)
        return report

    def _count(self, status: CycleStatus) -> None:
        self.stats.cycles[status.value] = self.stats.cycles.get(status.value, 0) + 1

    def stop(self) -> None:
        """Signal the listener to stop after the current message."""
        self._running = False
        logger.info("listener.stopping")

    def get_stats(self) -> dict:
        return {
            "received": self.stats.received,
            "invalid": self.stats.invalid,
            "cycles": dict(self.stats.cycles),
            "evicted": self.stats.evicted,
            "errors": self.stats.errors,
        }
