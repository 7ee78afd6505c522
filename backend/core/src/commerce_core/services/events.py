"""Domain event outbox and in-process event bus.

Components write domain events to the outbox in the same transaction as the
state change they describe. After the transaction commits the events are
handed to an EventPublisher; anything that was not dispatched (process
crash, subscriber failure) is picked up again by relay_pending().
"""

import datetime as dt
from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from boto3.dynamodb.conditions import Attr

from commerce_core.models.events import DomainEvent
from commerce_core.utils.logging import get_logger

from .dynamodb import DynamoDBService, get_dynamodb_service
from .tables import DOMAIN_EVENTS_TABLE

logger = get_logger(__name__)

EventHandler = Callable[[DomainEvent], None]


class EventPublisher(Protocol):
    """Anything that can deliver a domain event to its subscribers."""

    def publish(self, event: DomainEvent) -> None: ...


class EventBus:
    """Synchronous in-process publisher.

    Handlers subscribe to an event type, or to "*" for every event.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def publish(self, event: DomainEvent) -> None:
        for handler in [*self._handlers[event.event_type], *self._handlers["*"]]:
            handler(event)


def _item_to_event(item: dict[str, Any]) -> DomainEvent:
    return DomainEvent(
        event_id=item["event_id"],
        event_type=item["event_type"],
        aggregate_id=item["aggregate_id"],
        payload=dict(item.get("payload", {})),
        occurred_at=dt.datetime.fromisoformat(item["occurred_at"]),
        dispatched=bool(item.get("dispatched", False)),
    )


class DomainEventOutbox:
    """Transactional outbox stored in the domain-events table."""

    def __init__(
        self,
        db: DynamoDBService | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        self.db = db or get_dynamodb_service()
        self.publisher = publisher

    @staticmethod
    def build(aggregate_id: str, event_type: str, **payload: Any) -> DomainEvent:
        """Create a domain event with its deterministic ID."""
        return DomainEvent(
            event_id=DomainEvent.make_id(aggregate_id, event_type),
            event_type=event_type,
            aggregate_id=aggregate_id,
            payload={k: v for k, v in payload.items() if v is not None},
            occurred_at=dt.datetime.now(dt.UTC),
        )

    def put_op(self, event: DomainEvent) -> dict[str, Any]:
        """Transaction entry recording the event as undispatched."""
        return self.db.put_op(
            DOMAIN_EVENTS_TABLE,
            {
                "event_id": event.event_id,
                "event_type": event.event_type,
                "aggregate_id": event.aggregate_id,
                "payload": event.payload,
                "occurred_at": event.occurred_at.isoformat(),
                "dispatched": False,
            },
        )

    def get(self, event_id: str) -> DomainEvent | None:
        item = self.db.get_item(DOMAIN_EVENTS_TABLE, {"event_id": event_id})
        return _item_to_event(item) if item else None

    def list_for_aggregate(self, aggregate_id: str) -> list[DomainEvent]:
        items = self.db.scan(
            DOMAIN_EVENTS_TABLE, filter_expression=Attr("aggregate_id").eq(aggregate_id)
        )
        events = [_item_to_event(item) for item in items]
        return sorted(events, key=lambda e: e.occurred_at)

    def pending(self) -> list[DomainEvent]:
        """Events committed but not yet dispatched, oldest first."""
        items = self.db.scan(
            DOMAIN_EVENTS_TABLE, filter_expression=Attr("dispatched").eq(False)
        )
        events = [_item_to_event(item) for item in items]
        return sorted(events, key=lambda e: e.occurred_at)

    def mark_dispatched(self, event_id: str) -> None:
        self.db.update_item(
            DOMAIN_EVENTS_TABLE,
            {"event_id": event_id},
            "SET #dispatched = :true, dispatched_at = :now",
            {":true": True, ":now": dt.datetime.now(dt.UTC).isoformat()},
            {"#dispatched": "dispatched"},
            condition_expression="attribute_exists(event_id)",
        )

    def dispatch(
        self,
        events: Iterable[DomainEvent],
        publisher: EventPublisher | None = None,
    ) -> int:
        """Publish committed events and mark them dispatched.

        A subscriber failure leaves the event pending for relay_pending().

        Returns:
            Number of events dispatched
        """
        target = publisher or self.publisher
        if target is None:
            return 0

        dispatched = 0
        for event in events:
            try:
                target.publish(event)
            except Exception:
                logger.exception(
                    "Publishing %s (%s) failed; left pending for relay",
                    event.event_type,
                    event.event_id,
                )
                continue
            self.mark_dispatched(event.event_id)
            dispatched += 1
        return dispatched

    def relay_pending(self, publisher: EventPublisher | None = None) -> int:
        """Re-publish every undispatched event.

        Args:
            publisher: Publisher to use instead of the configured one

        Returns:
            Number of events dispatched
        """
        pending = self.pending()
        if pending:
            logger.info("Relaying %d pending domain events", len(pending))
        return self.dispatch(pending, publisher)
