"""API models for order, refund and return request endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from commerce_core.models.enums import (
    OrderStatus,
    PaymentStatus,
    RefundMethod,
    RefundStatus,
    ReturnRequestStatus,
)


class OrderItemRequest(BaseModel):
    product_ref: str = Field(..., min_length=1, examples=["SKU-RED-SHIRT"])
    quantity: int = Field(..., gt=0, examples=[2])
    unit_price: Decimal = Field(..., ge=0, examples=["19.90"])


class CreateOrderRequest(BaseModel):
    """Checkout request creating a PENDING order."""

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "customer_ref": "CUS-001",
                    "seller_ref": "SEL-001",
                    "currency": "EUR",
                    "items": [{"product_ref": "SKU-1", "quantity": 2, "unit_price": "19.90"}],
                    "payment_intent_ref": "pi_3ABC123DEF456",
                }
            ]
        }
    )

    customer_ref: str = Field(..., min_length=1)
    seller_ref: str = Field(..., min_length=1)
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    items: list[OrderItemRequest] = Field(..., min_length=1)
    payment_intent_ref: str | None = None


class OrderItemResponse(BaseModel):
    product_ref: str
    quantity: int
    unit_price: Decimal


class StockCommitmentResponse(BaseModel):
    product_ref: str
    warehouse_ref: str
    quantity: int


class OrderResponse(BaseModel):
    order_id: str
    customer_ref: str
    seller_ref: str
    status: OrderStatus
    payment_status: PaymentStatus
    total_amount: Decimal
    currency: str
    items: list[OrderItemResponse]
    payment_intent_ref: str | None = None
    courier_ref: str | None = None
    captured_amount: Decimal
    refundable_amount: Decimal
    refunded_amount: Decimal
    stock_commitments: list[StockCommitmentResponse] = Field(default_factory=list)
    cancellation_reason: str | None = None
    failure_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    paid_at: datetime | None = None


class TransitionRequest(BaseModel):
    """An order event fired by an actor.

    Only the fields that belong to the event are used: reason for
    PaymentFailed and Cancel, courier_ref for Ship, amount for
    PaymentCaptured.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"event": "Cancel", "reason": "customer changed their mind"},
                {"event": "Ship", "courier_ref": "COU-7"},
            ]
        }
    )

    event: Literal[
        "PaymentCaptured", "PaymentFailed", "Cancel", "StartProcessing", "Ship", "Deliver"
    ]
    reason: str | None = None
    courier_ref: str | None = None
    amount: Decimal | None = Field(default=None, gt=0)


class AssignCourierRequest(BaseModel):
    courier_ref: str = Field(..., min_length=1, examples=["COU-7"])


class RefundRequest(BaseModel):
    """Request to refund part or all of an order."""

    model_config = ConfigDict(
        json_schema_extra={"examples": [{"amount": "25.00", "method": "original_payment"}]}
    )

    amount: Decimal = Field(..., description="Amount in the order currency")
    method: RefundMethod = Field(default=RefundMethod.ORIGINAL_PAYMENT)
    reason: str | None = Field(default=None, max_length=500)


class RefundResponse(BaseModel):
    refund_id: str
    order_id: str
    amount: Decimal
    refund_method: RefundMethod
    status: RefundStatus
    provider_refund_ref: str | None = None
    reason: str | None = None
    requested_by: str | None = None
    return_request_id: str | None = None
    failure_reason: str | None = None
    error_code: str | None = None
    created_at: datetime
    processed_at: datetime | None = None


class RefundListResponse(BaseModel):
    order_id: str
    refunds: list[RefundResponse]
    refunded_total: Decimal


class CreateReturnRequest(BaseModel):
    """Customer request to return an item, or the whole order."""

    reason: str = Field(..., min_length=1, max_length=500)
    product_ref: str | None = Field(
        default=None, description="Returned product; omit to return the whole order"
    )
    quantity: int = Field(default=1, gt=0)
    refund_method: RefundMethod = Field(default=RefundMethod.ORIGINAL_PAYMENT)


class RejectReturnRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class ReturnRequestResponse(BaseModel):
    return_request_id: str
    order_id: str
    customer_ref: str
    product_ref: str | None = None
    quantity: int
    reason: str
    refund_method: RefundMethod
    status: ReturnRequestStatus
    refund_amount: Decimal | None = None
    refund_id: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejected_reason: str | None = None
    received_at: datetime | None = None
    refunded_at: datetime | None = None
    created_at: datetime
