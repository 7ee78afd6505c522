"""Structured logging utilities with correlation ID support.

Provides:
- Correlation ID context management for request tracing
- Structured logging formatter for consistent log output
- Helper functions for ledger, refund, transition and webhook logging

Usage:
    from commerce_core.utils.logging import get_logger, set_correlation_id

    # In middleware/request handler:
    set_correlation_id(request.headers.get("X-Correlation-ID"))

    # In service code:
    logger = get_logger(__name__)
    logger.info("Decrementing stock", extra={"product_ref": "SKU-1"})
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Any

# Context variable for correlation ID - thread-safe and async-safe
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the correlation ID for the current request context.

    Args:
        correlation_id: Optional existing correlation ID. If None, generates new one.

    Returns:
        The correlation ID that was set
    """
    cid = correlation_id or generate_correlation_id()
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    """Get the current correlation ID, or None if not set."""
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID context."""
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds correlation_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "no-correlation-id"
        return True


class StructuredFormatter(logging.Formatter):
    """Formatter for structured log output with correlation ID."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = get_correlation_id() or "no-correlation-id"

        base = super().format(record)

        # Correlation ID prefix for grep/filtering
        return f"[{record.correlation_id}] {base}"


def configure_logging(level: str = "INFO") -> None:
    """Install a root handler that prefixes every line with its correlation ID.

    Called once by the API entry points; safe to call again.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())
    if any(isinstance(h.formatter, StructuredFormatter) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(
        StructuredFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with correlation ID support.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())

    return logger


def _format_context(prefix: str, context: dict[str, Any], skip: set[str]) -> str:
    msg_parts = [prefix]
    for key, value in context.items():
        if key not in skip:
            msg_parts.append(f"{key}={value}")
    return " | ".join(msg_parts)


def log_ledger_operation(
    logger: logging.Logger,
    operation: str,
    *,
    product_ref: str,
    warehouse_ref: str | None = None,
    quantity: int | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a stock ledger mutation with structured context.

    Args:
        logger: Logger instance
        operation: Operation name (e.g., "decrement", "transfer_complete")
        product_ref: Product whose stock moved
        warehouse_ref: Warehouse row affected
        quantity: Units moved
        error: Error message if the mutation was rejected
        **extra: Additional context fields
    """
    context: dict[str, Any] = {"operation": operation, "product_ref": product_ref}

    if warehouse_ref:
        context["warehouse_ref"] = warehouse_ref
    if quantity is not None:
        context["quantity"] = quantity
    if error:
        context["error"] = error

    context.update(extra)

    message = _format_context(f"Ledger operation: {operation}", context, {"operation"})

    if error:
        logger.error(message, extra=context)
    else:
        logger.info(message, extra=context)


def log_refund_operation(
    logger: logging.Logger,
    operation: str,
    *,
    refund_id: str | None = None,
    order_id: str | None = None,
    amount: Any = None,
    status: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a refund operation with structured context.

    Args:
        logger: Logger instance
        operation: Operation name (e.g., "create_refund", "complete_refund")
        refund_id: Refund ID if available
        order_id: Order ID if available
        amount: Refund amount in major units
        status: Refund status
        error: Error message if operation failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {"operation": operation}

    if refund_id:
        context["refund_id"] = refund_id
    if order_id:
        context["order_id"] = order_id
    if amount is not None:
        context["amount"] = str(amount)
    if status:
        context["status"] = status
    if error:
        context["error"] = error

    context.update(extra)

    message = _format_context(f"Refund operation: {operation}", context, {"operation"})

    if error:
        logger.error(message, extra=context)
    else:
        logger.info(message, extra=context)


def log_transition(
    logger: logging.Logger,
    order_id: str,
    event: str,
    *,
    from_status: str | None = None,
    to_status: str | None = None,
    actor: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log an order state transition attempt.

    Args:
        logger: Logger instance
        order_id: Order being transitioned
        event: Event name (e.g., "PaymentCaptured")
        from_status: Status before the transition
        to_status: Status after the transition
        actor: Actor role and reference
        error: Rejection reason if the transition did not apply
        **extra: Additional context fields
    """
    context: dict[str, Any] = {"order_id": order_id, "event": event}

    if from_status:
        context["from_status"] = from_status
    if to_status:
        context["to_status"] = to_status
    if actor:
        context["actor"] = actor
    if error:
        context["error"] = error

    context.update(extra)

    message = _format_context(
        f"Order transition: {event} ({order_id})", context, {"order_id", "event"}
    )

    if error:
        logger.warning(message, extra=context)
    else:
        logger.info(message, extra=context)


def log_webhook_event(
    logger: logging.Logger,
    event_type: str,
    event_id: str,
    *,
    order_id: str | None = None,
    payment_intent_ref: str | None = None,
    result: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a webhook event with structured context.

    Args:
        logger: Logger instance
        event_type: Provider event type (e.g., "payment_intent.succeeded")
        event_id: Provider event ID
        order_id: Associated order ID if resolved
        payment_intent_ref: Payment intent the event refers to
        result: Processing result (applied, duplicate, skipped, no_op, error, ...)
        error: Error message if processing failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {
        "event_type": event_type,
        "event_id": event_id,
    }

    if order_id:
        context["order_id"] = order_id
    if payment_intent_ref:
        context["payment_intent_ref"] = payment_intent_ref
    if result:
        context["result"] = result
    if error:
        context["error"] = error

    context.update(extra)

    msg_parts = [f"Webhook event: {event_type} ({event_id})"]
    if result:
        msg_parts.append(f"result={result}")
    if order_id:
        msg_parts.append(f"order={order_id}")
    if error:
        msg_parts.append(f"error={error}")

    message = " | ".join(msg_parts)

    if result in ("error", "stock_conflict"):
        logger.error(message, extra=context)
    elif result in ("duplicate", "skipped", "no_op", "external_refund"):
        logger.warning(message, extra=context)
    else:
        logger.info(message, extra=context)
