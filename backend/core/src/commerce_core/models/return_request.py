"""Return request model."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from .enums import RefundMethod, ReturnRequestStatus


class ReturnRequest(BaseModel):
    """A customer's request to return goods from a captured order."""

    model_config = ConfigDict(strict=True)

    return_request_id: str
    order_id: str
    customer_ref: str
    product_ref: str | None = Field(
        default=None, description="Returned product; None returns the whole order"
    )
    quantity: int = Field(default=1, gt=0)
    reason: str
    refund_method: RefundMethod = Field(default=RefundMethod.ORIGINAL_PAYMENT)
    status: ReturnRequestStatus = Field(default=ReturnRequestStatus.PENDING)
    refund_amount: Decimal | None = None
    refund_id: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejected_reason: str | None = None
    received_at: datetime | None = None
    refunded_at: datetime | None = None
    created_at: datetime
