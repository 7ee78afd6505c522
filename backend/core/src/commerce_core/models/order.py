"""Order models.

Amounts are Decimal in the order's currency, quantized to 2 decimal places.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from .enums import CAPTURED_PAYMENT_STATUSES, OrderStatus, PaymentStatus


class OrderItem(BaseModel):
    """A line of an order with its price snapshot taken at creation."""

    model_config = ConfigDict(strict=True, frozen=True)

    product_ref: str = Field(..., description="Product identifier")
    quantity: int = Field(..., gt=0, description="Units ordered")
    unit_price: Decimal = Field(..., ge=0, description="Unit price snapshot")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class StockCommitment(BaseModel):
    """Units taken from one ledger row when the order's payment was captured."""

    model_config = ConfigDict(strict=True, frozen=True)

    product_ref: str
    warehouse_ref: str
    quantity: int = Field(..., gt=0)


class Order(BaseModel):
    """A customer order.

    The status and payment_status fields move together: CONFIRMED always
    implies PAID. refundable_amount is the capacity left for refunds and is
    decremented atomically whenever a refund is requested.
    """

    model_config = ConfigDict(strict=True)

    order_id: str = Field(..., description="Unique order ID")
    customer_ref: str = Field(..., description="Customer who placed the order")
    seller_ref: str = Field(..., description="Seller fulfilling the order")
    status: OrderStatus = Field(default=OrderStatus.PENDING)
    payment_status: PaymentStatus = Field(default=PaymentStatus.UNPAID)
    total_amount: Decimal = Field(..., ge=0, description="Sum of line totals")
    currency: str = Field(default="EUR", description="ISO currency code")
    items: list[OrderItem] = Field(..., min_length=1)
    payment_intent_ref: str | None = Field(
        default=None,
        description="Provider payment intent (pi_xxx)",
        examples=["pi_3ABC123DEF456"],
    )
    courier_ref: str | None = Field(default=None, description="Assigned courier")
    captured_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    refundable_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    refunded_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    stock_commitments: list[StockCommitment] = Field(default_factory=list)
    cancellation_reason: str | None = None
    failure_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    paid_at: datetime | None = None

    @property
    def is_captured(self) -> bool:
        """True once funds were captured at the provider."""
        return self.payment_status in CAPTURED_PAYMENT_STATUSES
