"""Unit tests for the domain event outbox and EventBus."""

from typing import Any

import pytest

from commerce_core.models.events import DomainEvent, DomainEventType, PaymentCaptured
from commerce_core.models.order import Order
from commerce_core.services.dynamodb import DynamoDBService
from commerce_core.services.events import DomainEventOutbox, EventBus
from commerce_core.services.order_state_machine import OrderStateMachine

from tests.conftest import RecordingPublisher


class FailingPublisher:
    def __init__(self) -> None:
        self.attempts = 0

    def publish(self, event: DomainEvent) -> None:
        self.attempts += 1
        raise RuntimeError("subscriber down")


def sample_event(aggregate_id: str = "ORD-2026-TEST") -> DomainEvent:
    return DomainEventOutbox.build(
        aggregate_id, DomainEventType.ORDER_CONFIRMED, amount="20.00", courier_ref=None
    )


class TestBuild:
    def test_event_id_is_deterministic(self) -> None:
        event = sample_event()
        assert event.event_id == "ORD-2026-TEST:OrderConfirmed"
        assert event.event_id == sample_event().event_id

    def test_none_payload_values_are_dropped(self) -> None:
        assert sample_event().payload == {"amount": "20.00"}


class TestEventBus:
    def test_type_and_wildcard_subscribers(self) -> None:
        bus = EventBus()
        typed: list[str] = []
        everything: list[str] = []
        bus.subscribe(DomainEventType.ORDER_CONFIRMED, lambda e: typed.append(e.event_id))
        bus.subscribe("*", lambda e: everything.append(e.event_type))

        bus.publish(sample_event())
        bus.publish(DomainEventOutbox.build("TRF-1", DomainEventType.TRANSFER_COMPLETED))

        assert typed == ["ORD-2026-TEST:OrderConfirmed"]
        assert everything == [
            DomainEventType.ORDER_CONFIRMED,
            DomainEventType.TRANSFER_COMPLETED,
        ]

    def test_handler_errors_propagate(self) -> None:
        bus = EventBus()

        def broken(event: DomainEvent) -> None:
            raise RuntimeError("boom")

        bus.subscribe("*", broken)
        with pytest.raises(RuntimeError):
            bus.publish(sample_event())


class TestOutbox:
    def test_committed_event_is_pending_until_dispatched(
        self, db: DynamoDBService, publisher: RecordingPublisher
    ) -> None:
        outbox = DomainEventOutbox(db, publisher)
        event = sample_event()
        assert db.transact_write([outbox.put_op(event)])

        assert [e.event_id for e in outbox.pending()] == [event.event_id]

        assert outbox.dispatch([event]) == 1
        assert outbox.pending() == []
        assert publisher.events == [event]
        stored = outbox.get(event.event_id)
        assert stored is not None
        assert stored.dispatched is True

    def test_event_is_written_once(self, db: DynamoDBService) -> None:
        outbox = DomainEventOutbox(db)
        event = sample_event()
        assert db.transact_write([outbox.put_op(event)])

        assert outbox.list_for_aggregate("ORD-2026-TEST") == [
            outbox.get(event.event_id)
        ]

    def test_failed_subscriber_leaves_event_for_relay(
        self, db: DynamoDBService, publisher: RecordingPublisher
    ) -> None:
        failing = FailingPublisher()
        outbox = DomainEventOutbox(db, failing)
        event = sample_event()
        db.transact_write([outbox.put_op(event)])

        assert outbox.dispatch([event]) == 0
        assert failing.attempts == 1
        assert len(outbox.pending()) == 1

        assert outbox.relay_pending(publisher) == 1
        assert outbox.pending() == []
        assert publisher.types == [DomainEventType.ORDER_CONFIRMED]

    def test_without_publisher_nothing_is_dispatched(self, db: DynamoDBService) -> None:
        outbox = DomainEventOutbox(db)
        event = sample_event()
        db.transact_write([outbox.put_op(event)])

        assert outbox.dispatch([event]) == 0
        assert len(outbox.pending()) == 1

    def test_transition_events_land_in_outbox(
        self,
        orders: OrderStateMachine,
        outbox: DomainEventOutbox,
        pending_order: Order,
    ) -> None:
        orders.transition(pending_order.order_id, PaymentCaptured())

        [event] = outbox.list_for_aggregate(pending_order.order_id)
        payload: dict[str, Any] = event.payload
        assert event.event_type == DomainEventType.ORDER_CONFIRMED
        assert payload["from_status"] == "pending"
        assert payload["to_status"] == "confirmed"
        assert payload["captured_amount"] == "20.00"
        assert event.dispatched is True
