"""Pydantic models for the commerce core data entities."""

from .actor import SYSTEM, Actor
from .enums import (
    CAPTURED_PAYMENT_STATUSES,
    ActorRole,
    OrderStatus,
    PaymentStatus,
    RefundMethod,
    RefundStatus,
    ReturnRequestStatus,
    TransferStatus,
    WebhookEventKind,
    WebhookProcessingResult,
)
from .errors import (
    AlreadyFinalized,
    CommerceError,
    DuplicateEvent,
    ErrorCode,
    ErrorResponse,
    FulfillmentWarehouseNotFound,
    GatewayError,
    GatewayTimeout,
    InsufficientStock,
    InvalidAmount,
    InvalidQuantity,
    InvalidTransfer,
    InvalidTransition,
    InvalidWebhookSignature,
    OrderNotFound,
    OverRefund,
    PaymentNotCaptured,
    RefundNotFound,
    ReturnRequestNotFound,
    StockConflict,
    TransferNotFound,
    Unauthorized,
)
from .events import (
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
from .order import Order, OrderItem, StockCommitment
from .refund import Refund
from .return_request import ReturnRequest
from .stock import StockLedgerEntry
from .transfer import StockTransfer
from .webhook import PaymentWebhookEvent, WebhookAck

__all__ = [
    # Actor
    "SYSTEM",
    "Actor",
    # Enums
    "ActorRole",
    "CAPTURED_PAYMENT_STATUSES",
    "OrderStatus",
    "PaymentStatus",
    "RefundMethod",
    "RefundStatus",
    "ReturnRequestStatus",
    "TransferStatus",
    "WebhookEventKind",
    "WebhookProcessingResult",
    # Errors
    "AlreadyFinalized",
    "CommerceError",
    "DuplicateEvent",
    "ErrorCode",
    "ErrorResponse",
    "FulfillmentWarehouseNotFound",
    "GatewayError",
    "GatewayTimeout",
    "InsufficientStock",
    "InvalidAmount",
    "InvalidQuantity",
    "InvalidTransfer",
    "InvalidTransition",
    "InvalidWebhookSignature",
    "OrderNotFound",
    "OverRefund",
    "PaymentNotCaptured",
    "RefundNotFound",
    "ReturnRequestNotFound",
    "StockConflict",
    "TransferNotFound",
    "Unauthorized",
    # Events
    "Cancel",
    "Deliver",
    "DomainEvent",
    "DomainEventType",
    "OrderEvent",
    "PaymentCaptured",
    "PaymentFailed",
    "Ship",
    "StartProcessing",
    # Entities
    "Order",
    "OrderItem",
    "StockCommitment",
    "Refund",
    "ReturnRequest",
    "StockLedgerEntry",
    "StockTransfer",
    "PaymentWebhookEvent",
    "WebhookAck",
]
