"""Order state machine.

Every status change is a single DynamoDB transaction that is conditional on
the status (and payment status) the transition was validated against, so a
concurrent change makes the write fail instead of being overwritten. Side
effects that belong to a transition commit in that same transaction:

- PaymentCaptured decrements stock at the fulfillment warehouses
- Cancel of a paid order returns the committed stock
- webhook-driven transitions record the provider event
- every transition writes its domain event to the outbox

Cancelling a paid order and a capture that hits a stock conflict both refund
the original payment once the transition is committed.

Transition table:

    PENDING     PaymentCaptured -> CONFIRMED, PaymentFailed -> PAYMENT_FAILED,
                Cancel -> CANCELLED
    CONFIRMED   PaymentCaptured -> CONFIRMED, PaymentFailed -> PAYMENT_FAILED,
                Cancel -> CANCELLED, StartProcessing -> PROCESSING
    PROCESSING  Cancel -> CANCELLED, Ship -> SHIPPED
    SHIPPED     Deliver -> DELIVERED
    DELIVERED, CANCELLED, PAYMENT_FAILED, STOCK_CONFLICT are terminal.

Payment outcome events additionally require the payment not to be PAID yet,
so a redelivered capture is rejected instead of taking stock twice.
"""

import datetime as dt
import uuid
from collections import defaultdict
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from commerce_core.models.actor import SYSTEM, Actor
from commerce_core.models.enums import (
    ActorRole,
    OrderStatus,
    PaymentStatus,
    RefundMethod,
    ReturnRequestStatus,
    WebhookProcessingResult,
)
from commerce_core.models.errors import (
    CommerceError,
    InvalidQuantity,
    InvalidTransition,
    OrderNotFound,
    StockConflict,
    Unauthorized,
)
from commerce_core.models.events import (
    Cancel,
    Deliver,
    DomainEvent,
    DomainEventType,
    OrderEvent,
    PaymentCaptured,
    PaymentFailed,
    Ship,
    StartProcessing,
)
from commerce_core.models.order import Order, OrderItem, StockCommitment
from commerce_core.models.webhook import PaymentWebhookEvent
from commerce_core.utils.logging import get_logger, log_transition

from .dynamodb import DynamoDBService, get_dynamodb_service
from .events import DomainEventOutbox
from .fulfillment import DynamoDBWarehouseLocator, WarehouseLocator
from .repositories import (
    OrderRepository,
    ReturnRequestRepository,
    WebhookEventRepository,
    commitments_to_item,
    money,
)
from .stock_ledger import StockLedger
from .tables import ORDERS_TABLE

if TYPE_CHECKING:
    from .refund_service import RefundOrchestrator

logger = get_logger(__name__)

# Attempts for a capture whose transaction was cancelled while stock was
# still sufficient (a conflicting transaction touched the same rows)
MAX_CAPTURE_ATTEMPTS = 3

TRANSITIONS: dict[OrderStatus, dict[type, OrderStatus]] = {
    OrderStatus.PENDING: {
        PaymentCaptured: OrderStatus.CONFIRMED,
        PaymentFailed: OrderStatus.PAYMENT_FAILED,
        Cancel: OrderStatus.CANCELLED,
    },
    OrderStatus.CONFIRMED: {
        PaymentCaptured: OrderStatus.CONFIRMED,
        PaymentFailed: OrderStatus.PAYMENT_FAILED,
        Cancel: OrderStatus.CANCELLED,
        StartProcessing: OrderStatus.PROCESSING,
    },
    OrderStatus.PROCESSING: {
        Cancel: OrderStatus.CANCELLED,
        Ship: OrderStatus.SHIPPED,
    },
    OrderStatus.SHIPPED: {
        Deliver: OrderStatus.DELIVERED,
    },
    OrderStatus.DELIVERED: {},
    OrderStatus.CANCELLED: {},
    OrderStatus.PAYMENT_FAILED: {},
    OrderStatus.STOCK_CONFLICT: {},
}

# Events each non-privileged role may fire on orders it is attached to
ROLE_EVENTS: dict[ActorRole, set[type]] = {
    ActorRole.SELLER: {StartProcessing, Ship, Cancel},
    ActorRole.COURIER: {Ship, Deliver},
    ActorRole.CUSTOMER: {Cancel},
}

DOMAIN_EVENTS: dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: DomainEventType.ORDER_CONFIRMED,
    OrderStatus.PAYMENT_FAILED: DomainEventType.ORDER_PAYMENT_FAILED,
    OrderStatus.CANCELLED: DomainEventType.ORDER_CANCELLED,
    OrderStatus.STOCK_CONFLICT: DomainEventType.ORDER_STOCK_CONFLICT,
    OrderStatus.PROCESSING: DomainEventType.ORDER_PROCESSING,
    OrderStatus.SHIPPED: DomainEventType.ORDER_SHIPPED,
    OrderStatus.DELIVERED: DomainEventType.ORDER_DELIVERED,
}

_PAYMENT_EVENTS = (PaymentCaptured, PaymentFailed)

_OPEN_RETURN_STATUSES = (ReturnRequestStatus.APPROVED, ReturnRequestStatus.RECEIVED)


def _generate_order_id() -> str:
    year = dt.datetime.now(dt.UTC).year
    return f"ORD-{year}-{uuid.uuid4().hex[:8].upper()}"


def authorize(order: Order, event: OrderEvent, actor: Actor) -> None:
    """Check that actor may fire event on order.

    Raises:
        Unauthorized: The actor's role or ownership does not allow it.
    """
    if actor.role in (ActorRole.SYSTEM, ActorRole.ADMIN):
        return

    allowed = type(event) in ROLE_EVENTS.get(actor.role, set())
    if actor.role == ActorRole.SELLER:
        allowed = allowed and actor.ref == order.seller_ref
    elif actor.role == ActorRole.COURIER:
        allowed = allowed and order.courier_ref is not None and actor.ref == order.courier_ref
    elif actor.role == ActorRole.CUSTOMER:
        allowed = (
            allowed
            and actor.ref == order.customer_ref
            and order.status == OrderStatus.PENDING
        )

    if not allowed:
        raise Unauthorized(str(actor), event.name, order_id=order.order_id)


class OrderStateMachine:
    """Validates and applies order transitions."""

    def __init__(
        self,
        db: DynamoDBService | None = None,
        ledger: StockLedger | None = None,
        locator: WarehouseLocator | None = None,
        outbox: DomainEventOutbox | None = None,
        refunds: "RefundOrchestrator | None" = None,
    ) -> None:
        self.db = db or get_dynamodb_service()
        self.ledger = ledger or StockLedger(self.db)
        self.locator = locator or DynamoDBWarehouseLocator(self.db)
        self.outbox = outbox or DomainEventOutbox(self.db)
        self.refunds = refunds
        self.orders = OrderRepository(self.db)
        self.webhook_events = WebhookEventRepository(self.db)
        self.return_requests = ReturnRequestRepository(self.db)

    # =========================================================================
    # Reads and checkout
    # =========================================================================

    def get(self, order_id: str) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def find_by_payment_intent(self, payment_intent_ref: str) -> Order | None:
        return self.orders.find_by_payment_intent(payment_intent_ref)

    def create_order(
        self,
        customer_ref: str,
        seller_ref: str,
        items: list[OrderItem],
        currency: str = "EUR",
        payment_intent_ref: str | None = None,
    ) -> Order:
        """Create a PENDING, UNPAID order with its price snapshots.

        Raises:
            InvalidQuantity: no items were given
        """
        if not items:
            raise InvalidQuantity(0)

        now = dt.datetime.now(dt.UTC)
        order = Order(
            order_id=_generate_order_id(),
            customer_ref=customer_ref,
            seller_ref=seller_ref,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.UNPAID,
            total_amount=money(sum((item.line_total for item in items), Decimal("0"))),
            currency=currency,
            items=list(items),
            payment_intent_ref=payment_intent_ref,
            created_at=now,
            updated_at=now,
        )
        self.orders.create(order)
        logger.info(
            "Order %s created for customer %s (total %s %s)",
            order.order_id,
            customer_ref,
            order.total_amount,
            currency,
        )
        return order

    def attach_payment_intent(self, order_id: str, payment_intent_ref: str) -> Order:
        """Link the provider payment intent created at checkout.

        Raises:
            OrderNotFound: unknown order_id
            InvalidTransition: the order is no longer PENDING
        """
        attrs = self.db.update_item(
            ORDERS_TABLE,
            {"order_id": order_id},
            "SET payment_intent_ref = :ref, updated_at = :now",
            {
                ":ref": payment_intent_ref,
                ":now": dt.datetime.now(dt.UTC).isoformat(),
                ":pending": OrderStatus.PENDING.value,
            },
            {"#status": "status"},
            condition_expression="attribute_exists(order_id) AND #status = :pending",
        )
        if attrs is None:
            order = self.get(order_id)
            raise InvalidTransition(order.status.value, "attach_payment_intent")
        return self.get(order_id)

    def assign_courier(self, order_id: str, courier_ref: str, actor: Actor) -> Order:
        """Assign the courier who may ship and deliver the order.

        Raises:
            Unauthorized: actor is not an admin
            InvalidTransition: the order is already delivered or closed
        """
        if actor.role not in (ActorRole.ADMIN, ActorRole.SYSTEM):
            raise Unauthorized(str(actor), "assign_courier", order_id=order_id)

        order = self.get(order_id)
        open_statuses = (OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED)
        if order.status not in open_statuses:
            raise InvalidTransition(order.status.value, "assign_courier")

        attrs = self.db.update_item(
            ORDERS_TABLE,
            {"order_id": order_id},
            "SET courier_ref = :courier, updated_at = :now",
            {
                ":courier": courier_ref,
                ":now": dt.datetime.now(dt.UTC).isoformat(),
                ":observed": order.status.value,
            },
            {"#status": "status"},
            condition_expression="#status = :observed",
        )
        if attrs is None:
            raise InvalidTransition(self.get(order_id).status.value, "assign_courier")
        logger.info("Courier %s assigned to order %s", courier_ref, order_id)
        return self.get(order_id)

    # =========================================================================
    # Transitions
    # =========================================================================

    def transition(
        self,
        order_id: str,
        event: OrderEvent,
        actor: Actor = SYSTEM,
        webhook_event: PaymentWebhookEvent | None = None,
    ) -> Order:
        """Apply event to the order.

        Args:
            order_id: Order to transition
            event: One of the order events
            actor: Who fires the event (authority is checked)
            webhook_event: Provider event to record in the same transaction

        Returns:
            The order after the transition

        Raises:
            OrderNotFound: unknown order_id
            Unauthorized: actor may not fire event on this order
            InvalidTransition: event is not valid in the current state,
                including a lost race against a concurrent transition
            StockConflict: payment was captured but stock could not be
                committed; the order is now STOCK_CONFLICT and the capture
                has been refunded to the original payment
        """
        order = self.get(order_id)
        authorize(order, event, actor)

        target = self._validate(order, event, actor)

        if isinstance(event, PaymentCaptured):
            return self._capture(order, event, webhook_event)
        if isinstance(event, Cancel):
            return self._cancel(order, event, webhook_event)

        updates: dict[str, Any] = {}
        if isinstance(event, PaymentFailed):
            updates["payment_status"] = PaymentStatus.FAILED.value
            updates["failure_reason"] = event.reason
        elif isinstance(event, Ship) and event.courier_ref:
            updates["courier_ref"] = event.courier_ref

        return self._apply(order, event, target, updates, webhook_event)

    def _validate(self, order: Order, event: OrderEvent, actor: Actor) -> OrderStatus:
        target = TRANSITIONS[order.status].get(type(event))
        error: str | None = None
        if target is None:
            error = "not allowed from current status"
        elif isinstance(event, _PAYMENT_EVENTS) and order.payment_status == PaymentStatus.PAID:
            error = "payment already captured"

        if error or target is None:
            log_transition(
                logger,
                order.order_id,
                event.name,
                from_status=order.status.value,
                actor=str(actor),
                error=error,
            )
            raise InvalidTransition(order.status.value, event.name, order_id=order.order_id)
        return target

    def _observed_condition(
        self, order: Order, values: dict[str, Any], payment_guard: bool
    ) -> str:
        values[":observed"] = order.status.value
        condition = "#status = :observed"
        if payment_guard:
            values[":paid"] = PaymentStatus.PAID.value
            condition += " AND payment_status <> :paid"
        return condition

    def _order_update_op(
        self,
        order: Order,
        target: OrderStatus,
        updates: dict[str, Any],
        payment_guard: bool,
    ) -> dict[str, Any]:
        now = dt.datetime.now(dt.UTC).isoformat()
        values: dict[str, Any] = {":target": target.value, ":now": now}
        assignments = ["#status = :target", "updated_at = :now"]
        for i, (field, value) in enumerate(updates.items()):
            if value is None:
                continue
            values[f":v{i}"] = value
            assignments.append(f"{field} = :v{i}")

        condition = self._observed_condition(order, values, payment_guard)
        return self.db.update_op(
            ORDERS_TABLE,
            {"order_id": order.order_id},
            "SET " + ", ".join(assignments),
            values,
            {"#status": "status"},
            condition_expression=condition,
        )

    def _domain_event(self, order: Order, target: OrderStatus, **payload: Any) -> DomainEvent:
        return self.outbox.build(
            order.order_id,
            DOMAIN_EVENTS[target],
            from_status=order.status.value,
            to_status=target.value,
            customer_ref=order.customer_ref,
            seller_ref=order.seller_ref,
            **payload,
        )

    def _commit(
        self,
        order: Order,
        event: OrderEvent,
        target: OrderStatus,
        ops: list[dict[str, Any]],
        domain_event: DomainEvent,
        webhook_event: PaymentWebhookEvent | None,
        result: WebhookProcessingResult = WebhookProcessingResult.APPLIED,
    ) -> bool:
        ops = list(ops)
        if webhook_event is not None:
            ops.append(self.webhook_events.record_op(webhook_event, result, order.order_id))
        ops.append(self.outbox.put_op(domain_event))

        if not self.db.transact_write(ops):
            return False

        log_transition(
            logger,
            order.order_id,
            event.name,
            from_status=order.status.value,
            to_status=target.value,
        )
        self.outbox.dispatch([domain_event])
        return True

    def _lost_race(self, order: Order, event: OrderEvent) -> InvalidTransition:
        current = self.get(order.order_id)
        log_transition(
            logger,
            order.order_id,
            event.name,
            from_status=current.status.value,
            error=f"order changed concurrently (was {order.status.value})",
        )
        return InvalidTransition(current.status.value, event.name, order_id=order.order_id)

    def _apply(
        self,
        order: Order,
        event: OrderEvent,
        target: OrderStatus,
        updates: dict[str, Any],
        webhook_event: PaymentWebhookEvent | None,
    ) -> Order:
        payment_guard = isinstance(event, _PAYMENT_EVENTS)
        op = self._order_update_op(order, target, updates, payment_guard)
        domain_event = self._domain_event(order, target)
        if not self._commit(order, event, target, [op], domain_event, webhook_event):
            raise self._lost_race(order, event)
        return self.get(order.order_id)

    # PaymentCaptured

    def _stock_commitments(self, order: Order) -> list[StockCommitment]:
        quantities: dict[tuple[str, str], int] = defaultdict(int)
        for item in order.items:
            warehouse_ref = self.locator.fulfillment_warehouse(item.product_ref, order.seller_ref)
            quantities[(item.product_ref, warehouse_ref)] += item.quantity
        return [
            StockCommitment(product_ref=product_ref, warehouse_ref=warehouse_ref, quantity=qty)
            for (product_ref, warehouse_ref), qty in quantities.items()
        ]

    def _short_commitments(self, commitments: list[StockCommitment]) -> list[StockCommitment]:
        return [
            c
            for c in commitments
            if self.ledger.get_quantity(c.product_ref, c.warehouse_ref) < c.quantity
        ]

    def _capture(
        self,
        order: Order,
        event: PaymentCaptured,
        webhook_event: PaymentWebhookEvent | None,
    ) -> Order:
        amount = money(event.amount) if event.amount is not None else order.total_amount
        commitments = self._stock_commitments(order)
        paid_at = dt.datetime.now(dt.UTC).isoformat()
        payment_updates: dict[str, Any] = {
            "payment_status": PaymentStatus.PAID.value,
            "captured_amount": amount,
            "refundable_amount": amount,
            "paid_at": paid_at,
        }

        for _ in range(MAX_CAPTURE_ATTEMPTS):
            order_op = self._order_update_op(
                order,
                OrderStatus.CONFIRMED,
                {**payment_updates, "stock_commitments": commitments_to_item(commitments)},
                payment_guard=True,
            )
            ledger_ops = [
                self.ledger.decrement_op(c.product_ref, c.warehouse_ref, c.quantity)
                for c in commitments
            ]
            domain_event = self._domain_event(
                order,
                OrderStatus.CONFIRMED,
                captured_amount=str(amount),
                payment_intent_ref=order.payment_intent_ref,
            )
            if self._commit(
                order,
                event,
                OrderStatus.CONFIRMED,
                [order_op, *ledger_ops],
                domain_event,
                webhook_event,
            ):
                return self.get(order.order_id)

            current = self.get(order.order_id)
            if current.status != order.status or current.payment_status == PaymentStatus.PAID:
                raise self._lost_race(order, event)

            short = self._short_commitments(commitments)
            if short:
                return self._stock_conflict(order, event, amount, paid_at, short, webhook_event)

        raise self._lost_race(order, event)

    def _stock_conflict(
        self,
        order: Order,
        event: PaymentCaptured,
        amount: Decimal,
        paid_at: str,
        short: list[StockCommitment],
        webhook_event: PaymentWebhookEvent | None,
    ) -> Order:
        """Record a capture whose stock could not be committed, refund it, then raise."""
        op = self._order_update_op(
            order,
            OrderStatus.STOCK_CONFLICT,
            {
                "payment_status": PaymentStatus.PAID.value,
                "captured_amount": amount,
                "refundable_amount": amount,
                "paid_at": paid_at,
            },
            payment_guard=True,
        )
        domain_event = self._domain_event(
            order,
            OrderStatus.STOCK_CONFLICT,
            captured_amount=str(amount),
            short_products=[c.product_ref for c in short],
        )
        if not self._commit(
            order,
            event,
            OrderStatus.STOCK_CONFLICT,
            [op],
            domain_event,
            webhook_event,
            result=WebhookProcessingResult.STOCK_CONFLICT,
        ):
            raise self._lost_race(order, event)

        logger.error(
            "Order %s captured %s but stock is short for %s; refunding the capture",
            order.order_id,
            amount,
            ", ".join(f"{c.product_ref}@{c.warehouse_ref}" for c in short),
        )
        self._issue_refund(order.order_id, amount, "stock_conflict")
        raise StockConflict(
            order.order_id,
            products=",".join(c.product_ref for c in short),
        )

    # Cancel

    def _cancel(
        self,
        order: Order,
        event: Cancel,
        webhook_event: PaymentWebhookEvent | None,
    ) -> Order:
        op = self._order_update_op(
            order,
            OrderStatus.CANCELLED,
            {"cancellation_reason": event.reason, "stock_commitments": []},
            payment_guard=False,
        )
        ops = [op]
        if order.is_captured:
            ops.extend(
                self.ledger.increment_op(c.product_ref, c.warehouse_ref, c.quantity)
                for c in order.stock_commitments
            )

        domain_event = self._domain_event(
            order,
            OrderStatus.CANCELLED,
            reason=event.reason,
            refund_due=str(order.refundable_amount) if order.is_captured else None,
        )
        if not self._commit(order, event, OrderStatus.CANCELLED, ops, domain_event, webhook_event):
            raise self._lost_race(order, event)

        if order.is_captured and order.refundable_amount > 0:
            self._refund_cancelled(order, event)
        return self.get(order.order_id)

    def _refund_cancelled(self, order: Order, event: Cancel) -> None:
        open_return = next(
            (
                r
                for r in self.return_requests.list_for_order(order.order_id)
                if r.status in _OPEN_RETURN_STATUSES
            ),
            None,
        )
        self._issue_refund(
            order.order_id,
            order.refundable_amount,
            event.reason or "order_cancelled",
            return_request_id=open_return.return_request_id if open_return else None,
        )

    def _issue_refund(
        self,
        order_id: str,
        amount: Decimal,
        reason: str,
        return_request_id: str | None = None,
    ) -> None:
        """Refund a committed cancellation or stock conflict to the original payment.

        Failures are logged, not raised: the transition is already committed
        and the refund can be re-requested against the order.
        """
        if self.refunds is None:
            logger.error(
                "Order %s has %s to refund (%s) but no refund orchestrator is configured",
                order_id,
                amount,
                reason,
            )
            return
        try:
            refund = self.refunds.create_refund(
                order_id,
                amount,
                RefundMethod.ORIGINAL_PAYMENT,
                SYSTEM,
                reason=reason,
                return_request_id=return_request_id,
            )
        except CommerceError as e:
            logger.error("Refund (%s) for order %s was not created: %s", reason, order_id, e)
            return
        logger.info(
            "Refund %s (%s) for order %s ended %s",
            refund.refund_id,
            reason,
            order_id,
            refund.status.value,
        )
