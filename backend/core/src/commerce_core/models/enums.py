"""Enumeration types for commerce core data models."""

from enum import Enum


class OrderStatus(str, Enum):
    """Commercial status of an order."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    PAYMENT_FAILED = "payment_failed"
    CANCELLED = "cancelled"
    STOCK_CONFLICT = "stock_conflict"  # Captured but stock could not be committed


class PaymentStatus(str, Enum):
    """Payment status of an order."""

    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


# Payment statuses in which funds have been captured at the provider
CAPTURED_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}
)


class TransferStatus(str, Enum):
    """Status of a warehouse-to-warehouse stock transfer."""

    REQUESTED = "requested"
    APPROVED = "approved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RefundStatus(str, Enum):
    """Status of a refund."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class RefundMethod(str, Enum):
    """Where refunded money goes."""

    ORIGINAL_PAYMENT = "original_payment"
    STORE_CREDIT = "store_credit"


class WebhookEventKind(str, Enum):
    """Normalized payment provider event kinds."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    REFUNDED = "refunded"


class WebhookProcessingResult(str, Enum):
    """Outcome recorded for a processed webhook event."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"
    NO_OP = "no_op"
    STOCK_CONFLICT = "stock_conflict"
    RECONCILED = "reconciled"
    EXTERNAL_REFUND = "external_refund"


class ReturnRequestStatus(str, Enum):
    """Status of a customer return request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RECEIVED = "received"
    REFUNDED = "refunded"


class ActorRole(str, Enum):
    """Role of whoever drives an operation."""

    SYSTEM = "system"
    ADMIN = "admin"
    SELLER = "seller"
    COURIER = "courier"
    CUSTOMER = "customer"
