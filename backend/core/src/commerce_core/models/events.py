"""Order events and domain events.

Order events are the closed set of inputs accepted by the order state
machine. Domain events are the facts it (and the other components) emit
through the outbox after a transition commits.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field


class _OrderEvent(BaseModel):
    model_config = ConfigDict(strict=True, frozen=True)

    @property
    def name(self) -> str:
        return type(self).__name__


class PaymentCaptured(_OrderEvent):
    """Provider confirmed the funds. amount defaults to the order total."""

    amount: Decimal | None = None


class PaymentFailed(_OrderEvent):
    reason: str | None = None


class Cancel(_OrderEvent):
    reason: str | None = None


class StartProcessing(_OrderEvent):
    pass


class Ship(_OrderEvent):
    courier_ref: str | None = None


class Deliver(_OrderEvent):
    pass


OrderEvent = Union[PaymentCaptured, PaymentFailed, Cancel, StartProcessing, Ship, Deliver]

ORDER_EVENT_TYPES: dict[str, type[_OrderEvent]] = {
    cls.__name__: cls
    for cls in (PaymentCaptured, PaymentFailed, Cancel, StartProcessing, Ship, Deliver)
}


class DomainEventType:
    """Names of the domain events written to the outbox."""

    ORDER_CONFIRMED = "OrderConfirmed"
    ORDER_PAYMENT_FAILED = "OrderPaymentFailed"
    ORDER_CANCELLED = "OrderCancelled"
    ORDER_STOCK_CONFLICT = "OrderStockConflict"
    ORDER_PROCESSING = "OrderProcessing"
    ORDER_SHIPPED = "OrderShipped"
    ORDER_DELIVERED = "OrderDelivered"
    REFUND_COMPLETED = "RefundCompleted"
    REFUND_FAILED = "RefundFailed"
    TRANSFER_REQUESTED = "TransferRequested"
    TRANSFER_COMPLETED = "TransferCompleted"
    TRANSFER_CANCELLED = "TransferCancelled"


class DomainEvent(BaseModel):
    """A fact recorded in the outbox in the same transaction as its cause.

    event_id is derived from the aggregate and the event type, so a
    transition can emit each event at most once.
    """

    model_config = ConfigDict(strict=True)

    event_id: str
    event_type: str
    aggregate_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime
    dispatched: bool = False

    @staticmethod
    def make_id(aggregate_id: str, event_type: str) -> str:
        return f"{aggregate_id}:{event_type}"
