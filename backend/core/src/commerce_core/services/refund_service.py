"""Refund orchestration against captured orders.

The refund cap is enforced by the order's refundable_amount counter: a
refund is only persisted by a transaction that also decrements the counter
on the condition that enough remains. Concurrent refunds therefore
serialize on the order item the same way concurrent stock decrements
serialize on a ledger row, and their sum can never exceed the captured
amount.

Flow:
    1. Reserve: PENDING refund + refundable_amount -= amount (one transaction)
    2. Execute: provider refund (original_payment) or nothing (store_credit)
    3a. Complete: refund COMPLETED, refunded_amount += amount with the
        payment status it implies, store credit, linked return request
        REFUNDED (one transaction, conditional on the refunded_amount read)
    3b. Fail: refund FAILED, refundable_amount += amount (one transaction)

A FAILED refund is never touched again; retrying means a new refund.
"""

import datetime as dt
import uuid
from decimal import Decimal
from typing import Any

from commerce_core.models.actor import Actor
from commerce_core.models.enums import (
    ActorRole,
    PaymentStatus,
    RefundMethod,
    RefundStatus,
    ReturnRequestStatus,
)
from commerce_core.models.errors import (
    GatewayError,
    GatewayTimeout,
    InvalidAmount,
    InvalidTransition,
    OrderNotFound,
    OverRefund,
    PaymentNotCaptured,
    RefundNotFound,
    ReturnRequestNotFound,
    Unauthorized,
)
from commerce_core.models.events import DomainEventType
from commerce_core.models.order import Order
from commerce_core.models.refund import Refund
from commerce_core.utils.logging import get_logger, log_refund_operation

from .dynamodb import DynamoDBService, get_dynamodb_service
from .events import DomainEventOutbox
from .gateway import GatewayRefundResult, PaymentGateway, get_payment_gateway
from .repositories import (
    OrderRepository,
    RefundRepository,
    ReturnRequestRepository,
    money,
    refund_to_item,
)
from .store_credit import StoreCreditLedger
from .tables import ORDERS_TABLE, REFUNDS_TABLE, RETURN_REQUESTS_TABLE

logger = get_logger(__name__)

MAX_RESERVE_ATTEMPTS = 3
MAX_COMPLETE_ATTEMPTS = 3

_REFUNDABLE_RETURN_STATUSES = (ReturnRequestStatus.APPROVED, ReturnRequestStatus.RECEIVED)


def _generate_refund_id() -> str:
    return f"REF-{uuid.uuid4().hex[:12].upper()}"


def check_refund_authority(order: Order, actor: Actor) -> None:
    """Admins and the system may refund any order, sellers their own.

    Raises:
        Unauthorized: Any other actor.
    """
    if actor.role in (ActorRole.SYSTEM, ActorRole.ADMIN):
        return
    if actor.role == ActorRole.SELLER and actor.ref == order.seller_ref:
        return
    raise Unauthorized(str(actor), "refund", order_id=order.order_id)


class RefundOrchestrator:
    """Creates refunds and drives them to COMPLETED or FAILED."""

    def __init__(
        self,
        db: DynamoDBService | None = None,
        gateway: PaymentGateway | None = None,
        store_credit: StoreCreditLedger | None = None,
        outbox: DomainEventOutbox | None = None,
    ) -> None:
        self.db = db or get_dynamodb_service()
        self.gateway = gateway or get_payment_gateway()
        self.store_credit = store_credit or StoreCreditLedger(self.db)
        self.outbox = outbox or DomainEventOutbox(self.db)
        self.orders = OrderRepository(self.db)
        self.refunds = RefundRepository(self.db)
        self.return_requests = ReturnRequestRepository(self.db)

    # Reads

    def get(self, refund_id: str) -> Refund:
        refund = self.refunds.get(refund_id)
        if refund is None:
            raise RefundNotFound(refund_id)
        return refund

    def list_for_order(self, order_id: str) -> list[Refund]:
        return self.refunds.list_for_order(order_id)

    def refunded_total(self, order_id: str) -> Decimal:
        """Sum of COMPLETED refunds for an order."""
        completed = [
            r.amount for r in self.list_for_order(order_id) if r.status == RefundStatus.COMPLETED
        ]
        return money(sum(completed, Decimal("0")))

    # Refund lifecycle

    def create_refund(
        self,
        order_id: str,
        amount: Decimal,
        method: RefundMethod,
        actor: Actor,
        reason: str | None = None,
        return_request_id: str | None = None,
    ) -> Refund:
        """Refund part or all of an order's captured payment.

        Provider failures do not raise: the refund is returned as FAILED and
        the order's payment status is left as it was.

        Args:
            order_id: Order to refund
            amount: Amount in the order currency
            method: original_payment or store_credit
            actor: Who requests the refund
            reason: Free-text reason kept on the refund
            return_request_id: Return request finalized by this refund

        Returns:
            The refund in its final state (COMPLETED or FAILED)

        Raises:
            InvalidAmount: amount is not greater than zero
            OrderNotFound: unknown order_id
            Unauthorized: actor may not refund this order
            PaymentNotCaptured: the order has no captured payment
            OverRefund: amount exceeds what is left to refund; nothing is written
        """
        amount = money(amount)
        if amount <= 0:
            raise InvalidAmount(amount)

        order = self.orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        check_refund_authority(order, actor)
        if not order.is_captured:
            raise PaymentNotCaptured(order_id, order.payment_status.value)

        refund = self._reserve(order, amount, method, actor, reason, return_request_id)

        try:
            result = self._execute(order, refund)
        except (GatewayTimeout, GatewayError) as e:
            provider_code = e.provider_code if isinstance(e, GatewayError) else None
            return self._fail(order, refund, str(e), provider_code or e.code.value)

        if not result.success:
            return self._fail(
                order, refund, result.error or "Refund failed", result.error_code
            )
        return self._complete(order, refund, result.provider_refund_ref)

    def _reserve(
        self,
        order: Order,
        amount: Decimal,
        method: RefundMethod,
        actor: Actor,
        reason: str | None,
        return_request_id: str | None,
    ) -> Refund:
        if return_request_id is not None:
            request = self.return_requests.get(return_request_id)
            if request is None or request.order_id != order.order_id:
                raise ReturnRequestNotFound(return_request_id)

        for _ in range(MAX_RESERVE_ATTEMPTS):
            if amount > order.refundable_amount:
                log_refund_operation(
                    logger,
                    "create_refund",
                    order_id=order.order_id,
                    amount=amount,
                    error="over refund",
                    refundable=str(order.refundable_amount),
                )
                raise OverRefund(order.order_id, amount, order.refundable_amount)

            refund = Refund(
                refund_id=_generate_refund_id(),
                order_id=order.order_id,
                amount=amount,
                refund_method=method,
                status=RefundStatus.PENDING,
                reason=reason,
                requested_by=str(actor),
                return_request_id=return_request_id,
                created_at=dt.datetime.now(dt.UTC),
            )
            ops = [
                self.db.update_op(
                    ORDERS_TABLE,
                    {"order_id": order.order_id},
                    "SET refundable_amount = refundable_amount - :amount, updated_at = :now",
                    {":amount": amount, ":now": refund.created_at.isoformat()},
                    condition_expression="refundable_amount >= :amount",
                ),
                self.db.put_op(
                    REFUNDS_TABLE,
                    refund_to_item(refund),
                    condition_expression="attribute_not_exists(refund_id)",
                ),
            ]
            if return_request_id is not None:
                ops.append(
                    self.db.update_op(
                        RETURN_REQUESTS_TABLE,
                        {"return_request_id": return_request_id},
                        "SET refund_id = :refund_id",
                        {
                            ":refund_id": refund.refund_id,
                            ":approved": ReturnRequestStatus.APPROVED.value,
                            ":received": ReturnRequestStatus.RECEIVED.value,
                        },
                        {"#status": "status"},
                        condition_expression="#status IN (:approved, :received)",
                    )
                )

            if self.db.transact_write(ops):
                log_refund_operation(
                    logger,
                    "reserve_refund",
                    refund_id=refund.refund_id,
                    order_id=order.order_id,
                    amount=amount,
                    status=RefundStatus.PENDING.value,
                    method=method.value,
                )
                return refund

            if return_request_id is not None:
                request = self.return_requests.get(return_request_id)
                if request is None or request.status not in _REFUNDABLE_RETURN_STATUSES:
                    status = request.status.value if request else "missing"
                    raise InvalidTransition(status, "refund", return_request_id=return_request_id)

            current = self.orders.get(order.order_id)
            if current is None:
                raise OrderNotFound(order.order_id)
            order = current

        raise OverRefund(order.order_id, amount, order.refundable_amount)

    def _execute(self, order: Order, refund: Refund) -> GatewayRefundResult:
        if refund.refund_method == RefundMethod.STORE_CREDIT:
            return GatewayRefundResult(success=True)

        if not order.payment_intent_ref:
            return GatewayRefundResult(
                success=False, error="Order has no payment reference", error_code="no_payment_ref"
            )
        return self.gateway.refund_payment(
            order.payment_intent_ref,
            refund.amount,
            order.currency,
            idempotency_key=refund.refund_id,
        )

    def _complete(
        self, order: Order, refund: Refund, provider_refund_ref: str | None
    ) -> Refund:
        event = self.outbox.build(
            refund.refund_id,
            DomainEventType.REFUND_COMPLETED,
            order_id=order.order_id,
            amount=str(refund.amount),
            refund_method=refund.refund_method.value,
            provider_refund_ref=provider_refund_ref,
        )

        for _ in range(MAX_COMPLETE_ATTEMPTS):
            current_order = self.orders.get(order.order_id)
            if current_order is None:
                raise OrderNotFound(order.order_id)
            now = dt.datetime.now(dt.UTC)
            ops = [
                self._refund_completed_op(refund, provider_refund_ref, now),
                self._order_refunded_op(current_order, refund.amount, now),
                self.outbox.put_op(event),
            ]
            if refund.refund_method == RefundMethod.STORE_CREDIT:
                ops.append(
                    self.store_credit.credit_op(order.customer_ref, refund.amount, order.currency)
                )
            if refund.return_request_id:
                ops.append(self._return_refunded_op(refund, now))

            if self.db.transact_write(ops):
                log_refund_operation(
                    logger,
                    "complete_refund",
                    refund_id=refund.refund_id,
                    order_id=order.order_id,
                    amount=refund.amount,
                    status=RefundStatus.COMPLETED.value,
                    provider_refund_ref=provider_refund_ref,
                )
                self.outbox.dispatch([event])
                return self.get(refund.refund_id)

            current = self.get(refund.refund_id)
            if current.status != RefundStatus.PENDING:
                log_refund_operation(
                    logger,
                    "complete_refund",
                    refund_id=refund.refund_id,
                    order_id=order.order_id,
                    amount=refund.amount,
                    error=f"refund is {current.status.value}, expected pending",
                )
                raise InvalidTransition(current.status.value, "complete_refund")
            # Another refund settled on the order first; re-read and retry

        # Executed at the provider but not recorded; the refund stays PENDING
        log_refund_operation(
            logger,
            "complete_refund",
            refund_id=refund.refund_id,
            order_id=order.order_id,
            amount=refund.amount,
            error="order kept changing while settling",
            provider_refund_ref=provider_refund_ref,
        )
        raise InvalidTransition(
            RefundStatus.PENDING.value, "complete_refund", refund_id=refund.refund_id
        )

    def _refund_completed_op(
        self, refund: Refund, provider_refund_ref: str | None, now: dt.datetime
    ) -> dict[str, Any]:
        values: dict[str, Any] = {
            ":completed": RefundStatus.COMPLETED.value,
            ":pending": RefundStatus.PENDING.value,
            ":now": now.isoformat(),
        }
        update_expression = "SET #status = :completed, processed_at = :now"
        if provider_refund_ref:
            update_expression += ", provider_refund_ref = :provider_ref"
            values[":provider_ref"] = provider_refund_ref
        return self.db.update_op(
            REFUNDS_TABLE,
            {"refund_id": refund.refund_id},
            update_expression,
            values,
            {"#status": "status"},
            condition_expression="#status = :pending",
        )

    def _order_refunded_op(
        self, order: Order, amount: Decimal, now: dt.datetime
    ) -> dict[str, Any]:
        """Add amount to refunded_amount and settle payment_status in the same write.

        Conditional on the refunded_amount that was read, so two completions
        cannot both decide the order is only partially refunded.
        """
        refunded = money(order.refunded_amount + amount)
        payment_status = (
            PaymentStatus.REFUNDED
            if refunded >= order.captured_amount
            else PaymentStatus.PARTIALLY_REFUNDED
        )
        return self.db.update_op(
            ORDERS_TABLE,
            {"order_id": order.order_id},
            "SET refunded_amount = :refunded, payment_status = :payment_status, "
            "updated_at = :now",
            {
                ":refunded": refunded,
                ":observed_refunded": order.refunded_amount,
                ":payment_status": payment_status.value,
                ":now": now.isoformat(),
            },
            condition_expression="refunded_amount = :observed_refunded",
        )

    def _return_refunded_op(self, refund: Refund, now: dt.datetime) -> dict[str, Any]:
        return self.db.update_op(
            RETURN_REQUESTS_TABLE,
            {"return_request_id": refund.return_request_id},
            "SET #status = :refunded, refunded_at = :now, refund_amount = :amount",
            {
                ":refunded": ReturnRequestStatus.REFUNDED.value,
                ":now": now.isoformat(),
                ":amount": refund.amount,
                ":refund_id": refund.refund_id,
            },
            {"#status": "status"},
            condition_expression="refund_id = :refund_id",
        )

    def _fail(
        self,
        order: Order,
        refund: Refund,
        failure_reason: str,
        error_code: str | None,
    ) -> Refund:
        now = dt.datetime.now(dt.UTC)
        values: dict[str, Any] = {
            ":failed": RefundStatus.FAILED.value,
            ":pending": RefundStatus.PENDING.value,
            ":reason": failure_reason,
            ":now": now.isoformat(),
        }
        update_expression = "SET #status = :failed, failure_reason = :reason, processed_at = :now"
        if error_code:
            update_expression += ", error_code = :error_code"
            values[":error_code"] = error_code

        event = self.outbox.build(
            refund.refund_id,
            DomainEventType.REFUND_FAILED,
            order_id=order.order_id,
            amount=str(refund.amount),
            failure_reason=failure_reason,
            error_code=error_code,
        )
        ops = [
            self.db.update_op(
                REFUNDS_TABLE,
                {"refund_id": refund.refund_id},
                update_expression,
                values,
                {"#status": "status"},
                condition_expression="#status = :pending",
            ),
            self.db.update_op(
                ORDERS_TABLE,
                {"order_id": order.order_id},
                "SET refundable_amount = refundable_amount + :amount, updated_at = :now",
                {":amount": refund.amount, ":now": now.isoformat()},
            ),
            self.outbox.put_op(event),
        ]
        if not self.db.transact_write(ops):
            current = self.get(refund.refund_id)
            raise InvalidTransition(current.status.value, "fail_refund")

        log_refund_operation(
            logger,
            "fail_refund",
            refund_id=refund.refund_id,
            order_id=order.order_id,
            amount=refund.amount,
            error=failure_reason,
            error_code=error_code,
        )
        self.outbox.dispatch([event])
        return self.get(refund.refund_id)
