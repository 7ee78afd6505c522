"""Item conversion and lookups for the persisted entities.

Each repository owns one table: it turns DynamoDB items into strict models
(casting Decimal numbers, enum values and ISO timestamps) and back.
"""

import datetime as dt
from decimal import Decimal
from typing import Any

from boto3.dynamodb.conditions import Attr

from commerce_core.models.enums import (
    OrderStatus,
    PaymentStatus,
    RefundMethod,
    RefundStatus,
    ReturnRequestStatus,
    TransferStatus,
    WebhookEventKind,
    WebhookProcessingResult,
)
from commerce_core.models.order import Order, OrderItem, StockCommitment
from commerce_core.models.refund import Refund
from commerce_core.models.return_request import ReturnRequest
from commerce_core.models.transfer import StockTransfer
from commerce_core.models.webhook import PaymentWebhookEvent

from .dynamodb import DynamoDBService, get_dynamodb_service
from .tables import (
    ORDER_ID_INDEX,
    ORDERS_TABLE,
    PAYMENT_INTENT_INDEX,
    REFUNDS_TABLE,
    RETURN_REQUESTS_TABLE,
    STOCK_TRANSFERS_TABLE,
    WEBHOOK_EVENTS_TABLE,
)

CENTS = Decimal("0.01")


def money(value: Any) -> Decimal:
    """Quantize a numeric value to 2 decimal places."""
    return Decimal(str(value)).quantize(CENTS)


def _ts(value: Any) -> dt.datetime | None:
    return dt.datetime.fromisoformat(value) if value else None


def _iso(value: dt.datetime | None) -> str | None:
    return value.isoformat() if value else None


# =========================================================================
# Orders
# =========================================================================


def order_to_item(order: Order) -> dict[str, Any]:
    return {
        "order_id": order.order_id,
        "customer_ref": order.customer_ref,
        "seller_ref": order.seller_ref,
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        "total_amount": order.total_amount,
        "currency": order.currency,
        "items": [
            {
                "product_ref": item.product_ref,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
            }
            for item in order.items
        ],
        "payment_intent_ref": order.payment_intent_ref,
        "courier_ref": order.courier_ref,
        "captured_amount": order.captured_amount,
        "refundable_amount": order.refundable_amount,
        "refunded_amount": order.refunded_amount,
        "stock_commitments": commitments_to_item(order.stock_commitments),
        "cancellation_reason": order.cancellation_reason,
        "failure_reason": order.failure_reason,
        "created_at": order.created_at.isoformat(),
        "updated_at": order.updated_at.isoformat(),
        "paid_at": _iso(order.paid_at),
    }


def commitments_to_item(commitments: list[StockCommitment]) -> list[dict[str, Any]]:
    return [
        {
            "product_ref": c.product_ref,
            "warehouse_ref": c.warehouse_ref,
            "quantity": c.quantity,
        }
        for c in commitments
    ]


def item_to_order(item: dict[str, Any]) -> Order:
    return Order(
        order_id=item["order_id"],
        customer_ref=item["customer_ref"],
        seller_ref=item["seller_ref"],
        status=OrderStatus(item["status"]),
        payment_status=PaymentStatus(item["payment_status"]),
        total_amount=money(item["total_amount"]),
        currency=item.get("currency", "EUR"),
        items=[
            OrderItem(
                product_ref=line["product_ref"],
                quantity=int(line["quantity"]),
                unit_price=money(line["unit_price"]),
            )
            for line in item["items"]
        ],
        payment_intent_ref=item.get("payment_intent_ref"),
        courier_ref=item.get("courier_ref"),
        captured_amount=money(item.get("captured_amount", 0)),
        refundable_amount=money(item.get("refundable_amount", 0)),
        refunded_amount=money(item.get("refunded_amount", 0)),
        stock_commitments=[
            StockCommitment(
                product_ref=c["product_ref"],
                warehouse_ref=c["warehouse_ref"],
                quantity=int(c["quantity"]),
            )
            for c in item.get("stock_commitments", [])
        ],
        cancellation_reason=item.get("cancellation_reason"),
        failure_reason=item.get("failure_reason"),
        created_at=dt.datetime.fromisoformat(item["created_at"]),
        updated_at=dt.datetime.fromisoformat(item["updated_at"]),
        paid_at=_ts(item.get("paid_at")),
    )


class OrderRepository:
    """Reads and creates orders. Status changes go through the state machine."""

    def __init__(self, db: DynamoDBService | None = None) -> None:
        self.db = db or get_dynamodb_service()

    def get(self, order_id: str) -> Order | None:
        item = self.db.get_item(ORDERS_TABLE, {"order_id": order_id}, consistent_read=True)
        return item_to_order(item) if item else None

    def find_by_payment_intent(self, payment_intent_ref: str) -> Order | None:
        items = self.db.query_by_gsi(
            ORDERS_TABLE, PAYMENT_INTENT_INDEX, "payment_intent_ref", payment_intent_ref
        )
        if not items:
            return None
        # The index is eventually consistent; re-read the base item
        return self.get(items[0]["order_id"])

    def create(self, order: Order) -> bool:
        return self.db.put_item(
            ORDERS_TABLE,
            order_to_item(order),
            condition_expression="attribute_not_exists(order_id)",
        )


# =========================================================================
# Stock transfers
# =========================================================================


def transfer_to_item(transfer: StockTransfer) -> dict[str, Any]:
    return {
        "transfer_id": transfer.transfer_id,
        "from_warehouse_ref": transfer.from_warehouse_ref,
        "to_warehouse_ref": transfer.to_warehouse_ref,
        "product_ref": transfer.product_ref,
        "quantity": transfer.quantity,
        "status": transfer.status.value,
        "notes": transfer.notes,
        "requested_by": transfer.requested_by,
        "approved_by": transfer.approved_by,
        "created_at": transfer.created_at.isoformat(),
        "approved_at": _iso(transfer.approved_at),
        "completed_at": _iso(transfer.completed_at),
        "cancelled_at": _iso(transfer.cancelled_at),
    }


def item_to_transfer(item: dict[str, Any]) -> StockTransfer:
    return StockTransfer(
        transfer_id=item["transfer_id"],
        from_warehouse_ref=item["from_warehouse_ref"],
        to_warehouse_ref=item["to_warehouse_ref"],
        product_ref=item["product_ref"],
        quantity=int(item["quantity"]),
        status=TransferStatus(item["status"]),
        notes=item.get("notes"),
        requested_by=item.get("requested_by"),
        approved_by=item.get("approved_by"),
        created_at=dt.datetime.fromisoformat(item["created_at"]),
        approved_at=_ts(item.get("approved_at")),
        completed_at=_ts(item.get("completed_at")),
        cancelled_at=_ts(item.get("cancelled_at")),
    )


class TransferRepository:
    def __init__(self, db: DynamoDBService | None = None) -> None:
        self.db = db or get_dynamodb_service()

    def get(self, transfer_id: str) -> StockTransfer | None:
        item = self.db.get_item(
            STOCK_TRANSFERS_TABLE, {"transfer_id": transfer_id}, consistent_read=True
        )
        return item_to_transfer(item) if item else None

    def list(
        self,
        from_warehouse_ref: str | None = None,
        to_warehouse_ref: str | None = None,
        product_ref: str | None = None,
        status: TransferStatus | None = None,
    ) -> list[StockTransfer]:
        """Transfers matching every given filter, newest first."""
        conditions = []
        if from_warehouse_ref:
            conditions.append(Attr("from_warehouse_ref").eq(from_warehouse_ref))
        if to_warehouse_ref:
            conditions.append(Attr("to_warehouse_ref").eq(to_warehouse_ref))
        if product_ref:
            conditions.append(Attr("product_ref").eq(product_ref))
        if status:
            conditions.append(Attr("status").eq(status.value))

        filter_expression = None
        for condition in conditions:
            filter_expression = (
                condition if filter_expression is None else filter_expression & condition
            )

        items = self.db.scan(STOCK_TRANSFERS_TABLE, filter_expression=filter_expression)
        transfers = [item_to_transfer(item) for item in items]
        return sorted(transfers, key=lambda t: t.created_at, reverse=True)


# =========================================================================
# Refunds
# =========================================================================


def refund_to_item(refund: Refund) -> dict[str, Any]:
    return {
        "refund_id": refund.refund_id,
        "order_id": refund.order_id,
        "amount": refund.amount,
        "refund_method": refund.refund_method.value,
        "status": refund.status.value,
        "provider_refund_ref": refund.provider_refund_ref,
        "reason": refund.reason,
        "requested_by": refund.requested_by,
        "return_request_id": refund.return_request_id,
        "failure_reason": refund.failure_reason,
        "error_code": refund.error_code,
        "created_at": refund.created_at.isoformat(),
        "processed_at": _iso(refund.processed_at),
    }


def item_to_refund(item: dict[str, Any]) -> Refund:
    return Refund(
        refund_id=item["refund_id"],
        order_id=item["order_id"],
        amount=money(item["amount"]),
        refund_method=RefundMethod(item["refund_method"]),
        status=RefundStatus(item["status"]),
        provider_refund_ref=item.get("provider_refund_ref"),
        reason=item.get("reason"),
        requested_by=item.get("requested_by"),
        return_request_id=item.get("return_request_id"),
        failure_reason=item.get("failure_reason"),
        error_code=item.get("error_code"),
        created_at=dt.datetime.fromisoformat(item["created_at"]),
        processed_at=_ts(item.get("processed_at")),
    )


class RefundRepository:
    def __init__(self, db: DynamoDBService | None = None) -> None:
        self.db = db or get_dynamodb_service()

    def get(self, refund_id: str) -> Refund | None:
        item = self.db.get_item(REFUNDS_TABLE, {"refund_id": refund_id}, consistent_read=True)
        return item_to_refund(item) if item else None

    def list_for_order(self, order_id: str) -> list[Refund]:
        items = self.db.query_by_gsi(REFUNDS_TABLE, ORDER_ID_INDEX, "order_id", order_id)
        refunds = [item_to_refund(item) for item in items]
        return sorted(refunds, key=lambda r: r.created_at)

    def find_by_provider_ref(self, order_id: str, provider_refund_ref: str) -> Refund | None:
        for refund in self.list_for_order(order_id):
            if refund.provider_refund_ref == provider_refund_ref:
                return refund
        return None


# =========================================================================
# Return requests
# =========================================================================


def return_request_to_item(request: ReturnRequest) -> dict[str, Any]:
    return {
        "return_request_id": request.return_request_id,
        "order_id": request.order_id,
        "customer_ref": request.customer_ref,
        "product_ref": request.product_ref,
        "quantity": request.quantity,
        "reason": request.reason,
        "refund_method": request.refund_method.value,
        "status": request.status.value,
        "refund_amount": request.refund_amount,
        "refund_id": request.refund_id,
        "approved_by": request.approved_by,
        "approved_at": _iso(request.approved_at),
        "rejected_reason": request.rejected_reason,
        "received_at": _iso(request.received_at),
        "refunded_at": _iso(request.refunded_at),
        "created_at": request.created_at.isoformat(),
    }


def item_to_return_request(item: dict[str, Any]) -> ReturnRequest:
    refund_amount = item.get("refund_amount")
    return ReturnRequest(
        return_request_id=item["return_request_id"],
        order_id=item["order_id"],
        customer_ref=item["customer_ref"],
        product_ref=item.get("product_ref"),
        quantity=int(item.get("quantity", 1)),
        reason=item["reason"],
        refund_method=RefundMethod(item["refund_method"]),
        status=ReturnRequestStatus(item["status"]),
        refund_amount=money(refund_amount) if refund_amount is not None else None,
        refund_id=item.get("refund_id"),
        approved_by=item.get("approved_by"),
        approved_at=_ts(item.get("approved_at")),
        rejected_reason=item.get("rejected_reason"),
        received_at=_ts(item.get("received_at")),
        refunded_at=_ts(item.get("refunded_at")),
        created_at=dt.datetime.fromisoformat(item["created_at"]),
    )


class ReturnRequestRepository:
    def __init__(self, db: DynamoDBService | None = None) -> None:
        self.db = db or get_dynamodb_service()

    def get(self, return_request_id: str) -> ReturnRequest | None:
        item = self.db.get_item(
            RETURN_REQUESTS_TABLE,
            {"return_request_id": return_request_id},
            consistent_read=True,
        )
        return item_to_return_request(item) if item else None

    def list_for_order(self, order_id: str) -> list[ReturnRequest]:
        items = self.db.query_by_gsi(
            RETURN_REQUESTS_TABLE, ORDER_ID_INDEX, "order_id", order_id
        )
        requests = [item_to_return_request(item) for item in items]
        return sorted(requests, key=lambda r: r.created_at)


# =========================================================================
# Webhook events
# =========================================================================


class WebhookEventRepository:
    """Processed webhook events, keyed by the provider event ID."""

    def __init__(self, db: DynamoDBService | None = None) -> None:
        self.db = db or get_dynamodb_service()

    def get(self, external_event_id: str) -> dict[str, Any] | None:
        return self.db.get_item(
            WEBHOOK_EVENTS_TABLE,
            {"external_event_id": external_event_id},
            consistent_read=True,
        )

    def exists(self, external_event_id: str) -> bool:
        return self.get(external_event_id) is not None

    def _item(
        self,
        event: PaymentWebhookEvent,
        result: WebhookProcessingResult,
        order_id: str | None,
        message: str | None,
    ) -> dict[str, Any]:
        kind: WebhookEventKind | None = event.kind
        return {
            "external_event_id": event.external_event_id,
            "event_type": event.event_type,
            "kind": kind.value if kind else None,
            "payment_intent_ref": event.payment_intent_ref,
            "amount": event.amount,
            "currency": event.currency,
            "payload_hash": event.payload_hash,
            "received_at": event.received_at.isoformat(),
            "processed_at": dt.datetime.now(dt.UTC).isoformat(),
            "processed": True,
            "processing_result": result.value,
            "order_id": order_id,
            "message": message,
        }

    def record_op(
        self,
        event: PaymentWebhookEvent,
        result: WebhookProcessingResult,
        order_id: str | None = None,
        message: str | None = None,
    ) -> dict[str, Any]:
        """Transaction entry recording the event; cancels if already recorded."""
        return self.db.put_op(
            WEBHOOK_EVENTS_TABLE,
            self._item(event, result, order_id, message),
            condition_expression="attribute_not_exists(external_event_id)",
        )

    def record(
        self,
        event: PaymentWebhookEvent,
        result: WebhookProcessingResult,
        order_id: str | None = None,
        message: str | None = None,
    ) -> bool:
        """Record the event on its own.

        Returns:
            False if the event was already recorded
        """
        return self.db.put_item(
            WEBHOOK_EVENTS_TABLE,
            self._item(event, result, order_id, message),
            condition_expression="attribute_not_exists(external_event_id)",
        )
