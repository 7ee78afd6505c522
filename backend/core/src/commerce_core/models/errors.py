"""Standard error codes for the commerce core.

Every domain failure carries one of these codes so the transport layer can
map it to a status code and callers can branch on a stable value.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Machine readable error codes."""

    # Order state machine (ERR_ORDER_001-ERR_ORDER_004)
    INVALID_TRANSITION = "ERR_ORDER_001"
    ORDER_NOT_FOUND = "ERR_ORDER_002"
    STOCK_CONFLICT = "ERR_ORDER_003"
    UNAUTHORIZED = "ERR_ORDER_004"

    # Stock ledger and transfers (ERR_STOCK_001-ERR_STOCK_006)
    INSUFFICIENT_STOCK = "ERR_STOCK_001"
    INVALID_QUANTITY = "ERR_STOCK_002"
    TRANSFER_NOT_FOUND = "ERR_STOCK_003"
    ALREADY_FINALIZED = "ERR_STOCK_004"
    FULFILLMENT_WAREHOUSE_NOT_FOUND = "ERR_STOCK_005"
    INVALID_TRANSFER = "ERR_STOCK_006"

    # Refunds and returns (ERR_REFUND_001-ERR_REFUND_005)
    OVER_REFUND = "ERR_REFUND_001"
    INVALID_AMOUNT = "ERR_REFUND_002"
    PAYMENT_NOT_CAPTURED = "ERR_REFUND_003"
    REFUND_NOT_FOUND = "ERR_REFUND_004"
    RETURN_REQUEST_NOT_FOUND = "ERR_REFUND_005"

    # Payment provider (ERR_GATEWAY_001-ERR_GATEWAY_004)
    GATEWAY_TIMEOUT = "ERR_GATEWAY_001"
    GATEWAY_ERROR = "ERR_GATEWAY_002"
    INVALID_WEBHOOK_SIGNATURE = "ERR_GATEWAY_003"
    DUPLICATE_EVENT = "ERR_GATEWAY_004"


# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_TRANSITION: "The requested transition is not allowed from the current state",
    ErrorCode.ORDER_NOT_FOUND: "Order not found",
    ErrorCode.STOCK_CONFLICT: "Payment was captured but stock could not be committed",
    ErrorCode.UNAUTHORIZED: "Actor is not authorized for this action",
    ErrorCode.INSUFFICIENT_STOCK: "Not enough stock available",
    ErrorCode.INVALID_QUANTITY: "Quantity must be a positive integer",
    ErrorCode.TRANSFER_NOT_FOUND: "Stock transfer not found",
    ErrorCode.ALREADY_FINALIZED: "The record has already reached a final state",
    ErrorCode.FULFILLMENT_WAREHOUSE_NOT_FOUND: "No fulfillment warehouse configured for this product",
    ErrorCode.INVALID_TRANSFER: "Source and destination warehouse must differ",
    ErrorCode.OVER_REFUND: "Refund would exceed the captured amount",
    ErrorCode.INVALID_AMOUNT: "Amount must be greater than zero",
    ErrorCode.PAYMENT_NOT_CAPTURED: "Order has no captured payment",
    ErrorCode.REFUND_NOT_FOUND: "Refund not found",
    ErrorCode.RETURN_REQUEST_NOT_FOUND: "Return request not found",
    ErrorCode.GATEWAY_TIMEOUT: "Payment provider did not respond in time",
    ErrorCode.GATEWAY_ERROR: "Payment provider rejected the request",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Invalid webhook signature",
    ErrorCode.DUPLICATE_EVENT: "Webhook event was already processed",
}

# Recovery suggestions for operators and UIs
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.INVALID_TRANSITION: "Re-read the order and retry with an event valid for its status",
    ErrorCode.ORDER_NOT_FOUND: "Verify the order ID",
    ErrorCode.STOCK_CONFLICT: "The captured payment is refunded; restock before reselling",
    ErrorCode.UNAUTHORIZED: "Perform the action with an actor that owns the order",
    ErrorCode.INSUFFICIENT_STOCK: "Reduce the quantity or restock the warehouse",
    ErrorCode.INVALID_QUANTITY: "Provide a quantity greater than zero",
    ErrorCode.TRANSFER_NOT_FOUND: "Verify the transfer ID",
    ErrorCode.ALREADY_FINALIZED: "No action needed; read the record for its final state",
    ErrorCode.FULFILLMENT_WAREHOUSE_NOT_FOUND: "Configure a fulfillment warehouse for the seller",
    ErrorCode.INVALID_TRANSFER: "Choose a different destination warehouse",
    ErrorCode.OVER_REFUND: "Request at most the remaining refundable amount",
    ErrorCode.INVALID_AMOUNT: "Provide an amount greater than zero",
    ErrorCode.PAYMENT_NOT_CAPTURED: "Wait for the payment to be captured",
    ErrorCode.REFUND_NOT_FOUND: "Verify the refund ID",
    ErrorCode.RETURN_REQUEST_NOT_FOUND: "Verify the return request ID",
    ErrorCode.GATEWAY_TIMEOUT: "Create a new refund to retry",
    ErrorCode.GATEWAY_ERROR: "Check the provider error code and create a new refund to retry",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Verify webhook secret configuration",
    ErrorCode.DUPLICATE_EVENT: "No action needed",
}


class ErrorResponse(BaseModel):
    """Wire format for every domain error."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    details: Optional[dict[str, str]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code.

        Args:
            code: The error code
            details: Optional additional context about the error

        Returns:
            An ErrorResponse with the message and recovery hint for the code.
        """
        return cls(
            error_code=code,
            message=ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            details=details,
        )


class CommerceError(Exception):
    """Base exception for commerce core operations.

    Can be caught and converted to an ErrorResponse for API responses.
    """

    code: ErrorCode = ErrorCode.INVALID_TRANSITION

    def __init__(
        self,
        code: Optional[ErrorCode] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.code = code or type(self).code
        self.message = ERROR_MESSAGES[self.code]
        self.recovery = ERROR_RECOVERY[self.code]
        self.details = {k: str(v) for k, v in (details or {}).items()} or None
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            context = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({context})"
        return self.message

    def to_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse."""
        return ErrorResponse.from_code(self.code, self.details)


class InvalidTransition(CommerceError):
    code = ErrorCode.INVALID_TRANSITION

    def __init__(self, current: str, event: str, **details: Any):
        self.current = current
        self.event = event
        super().__init__(details={"current": current, "event": event, **details})


class OrderNotFound(CommerceError):
    code = ErrorCode.ORDER_NOT_FOUND

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(details={"order_id": order_id})


class StockConflict(CommerceError):
    """Raised after a captured payment could not commit stock.

    The order is left in STOCK_CONFLICT and the capture has been refunded
    to the original payment, unless that refund failed and was logged.
    """

    code = ErrorCode.STOCK_CONFLICT

    def __init__(self, order_id: str, **details: Any):
        self.order_id = order_id
        super().__init__(details={"order_id": order_id, **details})


class Unauthorized(CommerceError):
    code = ErrorCode.UNAUTHORIZED

    def __init__(self, actor: str, action: str, **details: Any):
        super().__init__(details={"actor": actor, "action": action, **details})


class InsufficientStock(CommerceError):
    code = ErrorCode.INSUFFICIENT_STOCK

    def __init__(
        self,
        product_ref: str,
        warehouse_ref: str,
        requested: int,
        available: int | None = None,
    ):
        self.product_ref = product_ref
        self.warehouse_ref = warehouse_ref
        self.requested = requested
        self.available = available
        details: dict[str, Any] = {
            "product_ref": product_ref,
            "warehouse_ref": warehouse_ref,
            "requested": requested,
        }
        if available is not None:
            details["available"] = available
        super().__init__(details=details)


class InvalidQuantity(CommerceError):
    code = ErrorCode.INVALID_QUANTITY

    def __init__(self, quantity: Any):
        super().__init__(details={"quantity": quantity})


class TransferNotFound(CommerceError):
    code = ErrorCode.TRANSFER_NOT_FOUND

    def __init__(self, transfer_id: str):
        self.transfer_id = transfer_id
        super().__init__(details={"transfer_id": transfer_id})


class AlreadyFinalized(CommerceError):
    """The record reached a final state before this request could apply."""

    code = ErrorCode.ALREADY_FINALIZED

    def __init__(self, record_id: str, final_status: str):
        self.record_id = record_id
        self.final_status = final_status
        super().__init__(details={"id": record_id, "final_status": final_status})


class InvalidTransfer(CommerceError):
    code = ErrorCode.INVALID_TRANSFER

    def __init__(self, from_warehouse_ref: str, to_warehouse_ref: str):
        super().__init__(
            details={"from_warehouse_ref": from_warehouse_ref, "to_warehouse_ref": to_warehouse_ref}
        )


class FulfillmentWarehouseNotFound(CommerceError):
    code = ErrorCode.FULFILLMENT_WAREHOUSE_NOT_FOUND

    def __init__(self, product_ref: str, seller_ref: str):
        super().__init__(details={"product_ref": product_ref, "seller_ref": seller_ref})


class OverRefund(CommerceError):
    code = ErrorCode.OVER_REFUND

    def __init__(self, order_id: str, requested: Any, refundable: Any):
        self.requested = requested
        self.refundable = refundable
        super().__init__(
            details={"order_id": order_id, "requested": requested, "refundable": refundable}
        )


class InvalidAmount(CommerceError):
    code = ErrorCode.INVALID_AMOUNT

    def __init__(self, amount: Any):
        super().__init__(details={"amount": amount})


class PaymentNotCaptured(CommerceError):
    code = ErrorCode.PAYMENT_NOT_CAPTURED

    def __init__(self, order_id: str, payment_status: str):
        super().__init__(details={"order_id": order_id, "payment_status": payment_status})


class RefundNotFound(CommerceError):
    code = ErrorCode.REFUND_NOT_FOUND

    def __init__(self, refund_id: str):
        super().__init__(details={"refund_id": refund_id})


class ReturnRequestNotFound(CommerceError):
    code = ErrorCode.RETURN_REQUEST_NOT_FOUND

    def __init__(self, return_request_id: str):
        super().__init__(details={"return_request_id": return_request_id})


class GatewayTimeout(CommerceError):
    code = ErrorCode.GATEWAY_TIMEOUT


class GatewayError(CommerceError):
    """Provider rejected a request.

    Attributes:
        provider_code: Stripe error code (e.g., 'charge_already_refunded')
    """

    code = ErrorCode.GATEWAY_ERROR

    def __init__(self, message: str, provider_code: Optional[str] = None):
        self.provider_code = provider_code
        details: dict[str, Any] = {"error": message}
        if provider_code:
            details["provider_code"] = provider_code
        super().__init__(details=details)


class InvalidWebhookSignature(CommerceError):
    code = ErrorCode.INVALID_WEBHOOK_SIGNATURE


class DuplicateEvent(CommerceError):
    """An external event ID that was already processed.

    Not raised by the webhook reconciler, which acknowledges a redelivery
    with WebhookProcessingResult.DUPLICATE so the provider stops retrying.
    Kept so the error taxonomy and its 409 mapping cover callers that
    must reject a replay outright.
    """

    code = ErrorCode.DUPLICATE_EVENT

    def __init__(self, external_event_id: str):
        self.external_event_id = external_event_id
        super().__init__(details={"external_event_id": external_event_id})


# Stripe error code to user-friendly message mapping
STRIPE_ERROR_MESSAGES: dict[str, str] = {
    "charge_already_refunded": "This charge has already been refunded.",
    "charge_disputed": "This charge is disputed and cannot be refunded.",
    "amount_too_large": "The refund amount exceeds the charge amount.",
    "amount_too_small": "The refund amount is below the provider minimum.",
    "payment_intent_unexpected_state": "The payment is not in a refundable state.",
    "balance_insufficient": "The account balance cannot cover this refund.",
    "processing_error": "A processing error occurred. Please try again.",
    "rate_limit": "Too many requests. Please wait a moment and try again.",
}

# Stripe error codes that indicate the caller should retry
STRIPE_RETRYABLE_ERRORS: set[str] = {
    "processing_error",
    "rate_limit",
    "lock_timeout",
    "api_connection_error",
}


def get_user_friendly_stripe_message(
    stripe_error_code: Optional[str],
    default_message: str = "Refund could not be processed. Please try again.",
) -> str:
    """Get a user-friendly message for a Stripe error code.

    Args:
        stripe_error_code: The Stripe error code (e.g., 'charge_already_refunded').
        default_message: Message to use if error code is unknown.

    Returns:
        User-friendly error message.
    """
    if stripe_error_code and stripe_error_code in STRIPE_ERROR_MESSAGES:
        return STRIPE_ERROR_MESSAGES[stripe_error_code]
    return default_message


def is_stripe_error_retryable(stripe_error_code: Optional[str]) -> bool:
    """Check if a Stripe error is likely transient and retryable."""
    return stripe_error_code in STRIPE_RETRYABLE_ERRORS if stripe_error_code else False
