"""Reconciles payment provider webhooks with order state.

Provides business logic for handling webhook events separate from HTTP
routing concerns. Delivery is at-least-once, so processing is idempotent:

- an event ID that was already recorded is acknowledged as a duplicate
- an event that drives an order transition is recorded in the same
  transaction as the transition, so a crash between the two is impossible
- a transition that is no longer valid (the order moved on) is recorded as
  a no-op rather than treated as an error

Infrastructure failures propagate so the provider retries the delivery.
"""

from commerce_core.models.actor import SYSTEM
from commerce_core.models.enums import WebhookEventKind, WebhookProcessingResult
from commerce_core.models.errors import InvalidTransition, StockConflict
from commerce_core.models.events import Cancel, OrderEvent, PaymentCaptured, PaymentFailed
from commerce_core.models.order import Order
from commerce_core.models.webhook import PaymentWebhookEvent, WebhookAck
from commerce_core.utils.logging import get_logger, log_webhook_event

from .dynamodb import DynamoDBService, get_dynamodb_service
from .order_state_machine import OrderStateMachine
from .refund_service import RefundOrchestrator
from .repositories import RefundRepository, WebhookEventRepository

logger = get_logger(__name__)


def order_event_for(event: PaymentWebhookEvent) -> OrderEvent:
    """Map a payment outcome webhook to the order event it drives."""
    if event.kind == WebhookEventKind.SUCCEEDED:
        return PaymentCaptured(amount=event.amount)
    if event.kind == WebhookEventKind.FAILED:
        return PaymentFailed(reason=f"provider reported {event.event_type}")
    if event.kind == WebhookEventKind.CANCELED:
        return Cancel(reason="payment_canceled")
    raise ValueError(f"No order event for webhook kind {event.kind}")


class PaymentWebhookReconciler:
    """Applies payment webhooks to orders exactly once."""

    def __init__(
        self,
        db: DynamoDBService | None = None,
        orders: OrderStateMachine | None = None,
        refunds: RefundOrchestrator | None = None,
    ) -> None:
        self.db = db or get_dynamodb_service()
        self.refunds = refunds or RefundOrchestrator(self.db)
        self.orders = orders or OrderStateMachine(self.db, refunds=self.refunds)
        self.events = WebhookEventRepository(self.db)
        self.refund_records = RefundRepository(self.db)

    def handle(self, event: PaymentWebhookEvent) -> WebhookAck:
        """Process one webhook delivery.

        Returns:
            WebhookAck once the outcome is durably recorded

        Raises:
            botocore.exceptions.ClientError: DynamoDB failures propagate
        """
        if self.events.exists(event.external_event_id):
            return self._ack(
                event, WebhookProcessingResult.DUPLICATE, message="Event already processed"
            )

        if event.kind is None:
            return self._record(
                event,
                WebhookProcessingResult.SKIPPED,
                message=f"Event type '{event.event_type}' not handled",
            )

        order = (
            self.orders.find_by_payment_intent(event.payment_intent_ref)
            if event.payment_intent_ref
            else None
        )
        if order is None:
            return self._record(
                event,
                WebhookProcessingResult.SKIPPED,
                message=f"No order for payment intent {event.payment_intent_ref}",
            )

        if event.kind == WebhookEventKind.REFUNDED:
            return self._reconcile_refund(event, order)

        return self._apply(event, order)

    def _apply(self, event: PaymentWebhookEvent, order: Order) -> WebhookAck:
        order_event = order_event_for(event)
        if (
            isinstance(order_event, PaymentCaptured)
            and event.amount is not None
            and event.amount != order.total_amount
        ):
            logger.warning(
                "Captured amount %s differs from order %s total %s",
                event.amount,
                order.order_id,
                order.total_amount,
            )

        try:
            self.orders.transition(order.order_id, order_event, SYSTEM, webhook_event=event)
        except InvalidTransition as e:
            return self._record(
                event,
                WebhookProcessingResult.NO_OP,
                order_id=order.order_id,
                message=f"{order_event.name} not applicable in status {e.current}",
            )
        except StockConflict:
            # The state machine has already refunded the capture
            return self._ack(
                event,
                WebhookProcessingResult.STOCK_CONFLICT,
                order_id=order.order_id,
                message="Stock unavailable; capture refunded",
            )

        return self._ack(event, WebhookProcessingResult.APPLIED, order_id=order.order_id)

    def _reconcile_refund(self, event: PaymentWebhookEvent, order: Order) -> WebhookAck:
        """Match a provider refund notification to refunds issued here."""
        known = [
            ref
            for ref in event.provider_refund_refs
            if self.refund_records.find_by_provider_ref(order.order_id, ref) is not None
        ]
        if event.provider_refund_refs and len(known) == len(event.provider_refund_refs):
            return self._record(
                event,
                WebhookProcessingResult.RECONCILED,
                order_id=order.order_id,
            )

        unknown = sorted(set(event.provider_refund_refs) - set(known))
        return self._record(
            event,
            WebhookProcessingResult.EXTERNAL_REFUND,
            order_id=order.order_id,
            message=f"Refunds not issued by this system: {', '.join(unknown) or 'unknown'}",
        )

    def _record(
        self,
        event: PaymentWebhookEvent,
        result: WebhookProcessingResult,
        order_id: str | None = None,
        message: str | None = None,
    ) -> WebhookAck:
        if not self.events.record(event, result, order_id=order_id, message=message):
            # A concurrent delivery of the same event recorded it first
            return self._ack(event, WebhookProcessingResult.DUPLICATE, order_id=order_id)
        return self._ack(event, result, order_id=order_id, message=message)

    def _ack(
        self,
        event: PaymentWebhookEvent,
        result: WebhookProcessingResult,
        order_id: str | None = None,
        message: str | None = None,
    ) -> WebhookAck:
        log_webhook_event(
            logger,
            event.event_type,
            event.external_event_id,
            order_id=order_id,
            payment_intent_ref=event.payment_intent_ref,
            result=result.value,
        )
        return WebhookAck(
            external_event_id=event.external_event_id,
            event_type=event.event_type,
            result=result,
            order_id=order_id,
            message=message,
        )
