"""Fan-out broadcaster — one change event → every interested connection.

Learn: A broadcast cycle is:
1. Check the event carries the topic attribute (else: malformed, no-op)
2. registry.list_all() → interest filter → recipients
3. One concurrent send per recipient, all joined before reporting
4. "gone" recipients are evicted from the registry by connection_id;
   any other delivery error fails the whole cycle — but only after every
   other attempt has settled.

Two events close together produce two independent cycles that may
interleave deliveries to the same connection in either order. There's
no cross-cycle ordering and no retry.
"""

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Optional

import structlog

from itemwire.events.models import ChangeEvent
from itemwire.fanout.filter import select_recipients, topic_value_of
from itemwire.fanout.transport import DeliveryOutcome, DeliveryResult, Transport
from itemwire.registry.models import Subscription
from itemwire.registry.service import SubscriptionRegistry
from itemwire.registry.store import StoreUnavailable

logger = structlog.get_logger()

# Fields the filter needs; expires_at is never read
FILTER_PROJECTION = ("connection_id", "topic_key", "topic_value")


class CycleStatus(str, enum.Enum):
    SENT = "sent"
    NO_RECIPIENTS = "no_recipients"
    MALFORMED_EVENT = "malformed_event"


@dataclass
class BroadcastReport:
    """Outcome of one broadcast cycle."""

    status: CycleStatus
    topic_value: Optional[str] = None
    recipients: list[str] = field(default_factory=list)
    delivered: list[str] = field(default_factory=list)
    evicted: list[str] = field(default_factory=list)
    failed: list[DeliveryResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "topic_value": self.topic_value,
            "recipients": len(self.recipients),
            "delivered": len(self.delivered),
            "evicted": self.evicted,
            "failed": [
                {"connection_id": r.connection_id, "error": r.error}
                for r in self.failed
            ],
        }


class DeliveryError(Exception):
    """At least one recipient failed with something other than "gone"."""

    def __init__(self, report: BroadcastReport):
        self.report = report
        ids = ", ".join(r.connection_id for r in report.failed)
        super().__init__(
            f"Delivery failed for {len(report.failed)} of "
            f"{len(report.recipients)} connections: {ids}"
        )


class Broadcaster:
    def __init__(
        self,
        registry: SubscriptionRegistry,
        transport: Transport,
        topic_key_name: str,
    ):
        self.registry = registry
        self.transport = transport
        self.topic_key_name = topic_key_name

    async def broadcast(self, event: ChangeEvent) -> BroadcastReport:
        """Run one broadcast cycle for a change event.

        Raises DeliveryError if any recipient failed with a non-"gone"
        outcome, StoreUnavailable if the registry couldn't be read or a
        stale connection couldn't be evicted.
        """
        topic_value = topic_value_of(event.attributes, self.topic_key_name)
        if topic_value is None:
            logger.error(
                "broadcast.malformed_event",
                topic_key=self.topic_key_name,
                attributes=sorted(event.attributes),
            )
            return BroadcastReport(status=CycleStatus.MALFORMED_EVENT)

        records = await self.registry.list_all(projection=FILTER_PROJECTION)
        recipients = select_recipients(event.attributes, self.topic_key_name, records)
        report = BroadcastReport(
            status=CycleStatus.NO_RECIPIENTS,
            topic_value=topic_value,
            recipients=[r.connection_id for r in recipients],
        )
        if not recipients:
            logger.info(
                "broadcast.no_recipients",
                topic_value=topic_value,
                subscriptions=len(records),
            )
            return report

        # Fire all, then await all
        outcomes = await asyncio.gather(
            *(self._deliver(record, event.attributes) for record in recipients),
            return_exceptions=True,
        )

        store_errors = []
        for record, outcome in zip(recipients, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, StoreUnavailable):
                    raise outcome
                store_errors.append(outcome)
            elif outcome.outcome is DeliveryOutcome.DELIVERED:
                report.delivered.append(record.connection_id)
            elif outcome.outcome is DeliveryOutcome.GONE:
                report.evicted.append(record.connection_id)
            else:
                report.failed.append(outcome)

        if store_errors:
            raise store_errors[0]

        if report.failed:
            logger.error(
                "broadcast.failed",
                topic_value=topic_value,
                recipients=len(recipients),
                failed=[r.connection_id for r in report.failed],
            )
            raise DeliveryError(report)

        report.status = CycleStatus.SENT
        logger.info(
            "broadcast.sent",
            topic_value=topic_value,
            delivered=len(report.delivered),
            evicted=len(report.evicted),
        )
        return report

    async def _deliver(self, record: Subscription, payload: dict) -> DeliveryResult:
        result = await self.transport.send(record.connection_id, payload)

        if result.outcome is DeliveryOutcome.GONE:
            logger.info("broadcast.stale_connection", connection_id=record.connection_id)
            await self.registry.delete(record.connection_id)
        elif result.outcome is DeliveryOutcome.ERROR:
            logger.warning(
                "broadcast.delivery_error",
                connection_id=record.connection_id,
                error=result.error,
            )
        return result
