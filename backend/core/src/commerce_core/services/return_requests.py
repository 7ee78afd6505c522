"""Customer return requests.

    PENDING --approve--> APPROVED --mark_received--> RECEIVED
       |                    |                           |
       +--reject--> REJECTED +--------refund------------+--> REFUNDED

The refund itself is issued by the RefundOrchestrator, which moves the
request to REFUNDED in the same transaction that completes the refund.
"""

import datetime as dt
import uuid
from decimal import Decimal
from typing import Any

from commerce_core.models.actor import Actor
from commerce_core.models.enums import OrderStatus, RefundMethod, ReturnRequestStatus
from commerce_core.models.errors import (
    InvalidQuantity,
    InvalidTransition,
    OrderNotFound,
    PaymentNotCaptured,
    ReturnRequestNotFound,
    Unauthorized,
)
from commerce_core.models.order import Order
from commerce_core.models.refund import Refund
from commerce_core.models.return_request import ReturnRequest
from commerce_core.utils.logging import get_logger

from .dynamodb import DynamoDBService, get_dynamodb_service
from .refund_service import RefundOrchestrator
from .repositories import (
    OrderRepository,
    ReturnRequestRepository,
    money,
    return_request_to_item,
)
from .tables import RETURN_REQUESTS_TABLE

logger = get_logger(__name__)

RETURNABLE_ORDER_STATUSES = (
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)


def _generate_return_request_id() -> str:
    year = dt.datetime.now(dt.UTC).year
    return f"RET-{year}-{uuid.uuid4().hex[:8].upper()}"


def refund_amount_for(order: Order, product_ref: str | None, quantity: int) -> Decimal:
    """Price of the returned item, or whatever is still refundable on the order."""
    if product_ref is None:
        return order.refundable_amount
    for item in order.items:
        if item.product_ref == product_ref:
            return money(item.unit_price * quantity)
    raise InvalidQuantity(quantity)


class ReturnRequestService:
    def __init__(
        self,
        db: DynamoDBService | None = None,
        refunds: RefundOrchestrator | None = None,
    ) -> None:
        self.db = db or get_dynamodb_service()
        self.refunds = refunds or RefundOrchestrator(self.db)
        self.orders = OrderRepository(self.db)
        self.requests = ReturnRequestRepository(self.db)

    def get(self, return_request_id: str) -> ReturnRequest:
        request = self.requests.get(return_request_id)
        if request is None:
            raise ReturnRequestNotFound(return_request_id)
        return request

    def list_for_order(self, order_id: str) -> list[ReturnRequest]:
        return self.requests.list_for_order(order_id)

    def create(
        self,
        order_id: str,
        customer_ref: str,
        reason: str,
        product_ref: str | None = None,
        quantity: int = 1,
        refund_method: RefundMethod = RefundMethod.ORIGINAL_PAYMENT,
    ) -> ReturnRequest:
        """Open a return request on a captured order the customer owns.

        Raises:
            OrderNotFound: unknown order_id
            Unauthorized: the order belongs to another customer
            PaymentNotCaptured: the order was never paid
            InvalidTransition: the order is not in a returnable status
            InvalidQuantity: the product is not on the order or quantity
                exceeds what was ordered
        """
        order = self.orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        if order.customer_ref != customer_ref:
            raise Unauthorized(f"customer:{customer_ref}", "create_return", order_id=order_id)
        if not order.is_captured:
            raise PaymentNotCaptured(order_id, order.payment_status.value)
        if order.status not in RETURNABLE_ORDER_STATUSES:
            raise InvalidTransition(order.status.value, "create_return", order_id=order_id)

        if product_ref is not None:
            ordered = sum(i.quantity for i in order.items if i.product_ref == product_ref)
            if quantity <= 0 or quantity > ordered:
                raise InvalidQuantity(quantity)

        request = ReturnRequest(
            return_request_id=_generate_return_request_id(),
            order_id=order_id,
            customer_ref=customer_ref,
            product_ref=product_ref,
            quantity=quantity,
            reason=reason,
            refund_method=refund_method,
            status=ReturnRequestStatus.PENDING,
            created_at=dt.datetime.now(dt.UTC),
        )
        self.db.put_item(
            RETURN_REQUESTS_TABLE,
            return_request_to_item(request),
            condition_expression="attribute_not_exists(return_request_id)",
        )
        logger.info("Return request %s opened for order %s", request.return_request_id, order_id)
        return request

    def approve(self, return_request_id: str, approved_by: str) -> ReturnRequest:
        """PENDING -> APPROVED, fixing the amount to refund."""
        request = self.get(return_request_id)
        order = self.orders.get(request.order_id)
        if order is None:
            raise OrderNotFound(request.order_id)

        now = dt.datetime.now(dt.UTC).isoformat()
        amount = refund_amount_for(order, request.product_ref, request.quantity)
        return self._move(
            request,
            ReturnRequestStatus.APPROVED,
            (ReturnRequestStatus.PENDING,),
            {"approved_by": approved_by, "approved_at": now, "refund_amount": amount},
        )

    def reject(self, return_request_id: str, reason: str, approved_by: str) -> ReturnRequest:
        """PENDING -> REJECTED."""
        request = self.get(return_request_id)
        return self._move(
            request,
            ReturnRequestStatus.REJECTED,
            (ReturnRequestStatus.PENDING,),
            {"approved_by": approved_by, "rejected_reason": reason},
        )

    def mark_received(self, return_request_id: str) -> ReturnRequest:
        """APPROVED -> RECEIVED once the goods are back."""
        request = self.get(return_request_id)
        return self._move(
            request,
            ReturnRequestStatus.RECEIVED,
            (ReturnRequestStatus.APPROVED,),
            {"received_at": dt.datetime.now(dt.UTC).isoformat()},
        )

    def refund(self, return_request_id: str, actor: Actor) -> Refund:
        """Issue the refund for an approved or received return.

        Raises:
            InvalidTransition: the request is not APPROVED or RECEIVED
        """
        request = self.get(return_request_id)
        if request.status not in (ReturnRequestStatus.APPROVED, ReturnRequestStatus.RECEIVED):
            raise InvalidTransition(request.status.value, "refund")
        if request.refund_amount is None:
            raise InvalidTransition(request.status.value, "refund", reason="no refund amount")

        return self.refunds.create_refund(
            request.order_id,
            request.refund_amount,
            request.refund_method,
            actor,
            reason=request.reason,
            return_request_id=return_request_id,
        )

    def _move(
        self,
        request: ReturnRequest,
        target: ReturnRequestStatus,
        allowed_from: tuple[ReturnRequestStatus, ...],
        updates: dict[str, Any],
    ) -> ReturnRequest:
        values: dict[str, Any] = {":target": target.value}
        assignments = ["#status = :target"]
        for i, (field, value) in enumerate(updates.items()):
            values[f":v{i}"] = value
            assignments.append(f"{field} = :v{i}")
        allowed = {f":from{i}": status.value for i, status in enumerate(allowed_from)}
        values.update(allowed)

        attrs = self.db.update_item(
            RETURN_REQUESTS_TABLE,
            {"return_request_id": request.return_request_id},
            "SET " + ", ".join(assignments),
            values,
            {"#status": "status"},
            condition_expression=f"#status IN ({', '.join(allowed)})",
        )
        if attrs is None:
            current = self.get(request.return_request_id)
            raise InvalidTransition(current.status.value, target.value)

        logger.info(
            "Return request %s moved to %s", request.return_request_id, target.value
        )
        return self.get(request.return_request_id)
