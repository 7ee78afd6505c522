"""Refund model."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from .enums import RefundMethod, RefundStatus


class Refund(BaseModel):
    """A refund against an order's captured payment.

    FAILED refunds are never mutated afterwards; retrying means creating a
    new refund.
    """

    model_config = ConfigDict(strict=True)

    refund_id: str = Field(..., description="Unique refund ID, also the provider idempotency key")
    order_id: str
    amount: Decimal = Field(..., gt=0)
    refund_method: RefundMethod
    status: RefundStatus = Field(default=RefundStatus.PENDING)
    provider_refund_ref: str | None = Field(
        default=None,
        description="Provider refund ID (re_xxx)",
        examples=["re_3ABC123DEF456"],
    )
    reason: str | None = None
    requested_by: str | None = None
    return_request_id: str | None = None
    failure_reason: str | None = None
    error_code: str | None = None
    created_at: datetime
    processed_at: datetime | None = None
