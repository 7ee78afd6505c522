"""Webhook endpoints for the payment provider.

These endpoints do NOT take an actor header: the payload is authenticated
by its provider signature instead.
"""

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from starlette.status import HTTP_200_OK, HTTP_500_INTERNAL_SERVER_ERROR

from commerce_api.dependencies import get_gateway, get_webhook_reconciler
from commerce_api.models.webhooks import WebhookResponse
from commerce_core.models.errors import CommerceError, InvalidWebhookSignature
from commerce_core.models.webhook import PaymentWebhookEvent
from commerce_core.services.gateway import PaymentGateway, StripeGateway
from commerce_core.services.webhook_reconciler import PaymentWebhookReconciler
from commerce_core.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post(
    "/webhooks/payments",
    summary="Payment provider webhook",
    description="""
Receive payment events from Stripe.

**Handled events:**
- payment_intent.succeeded: confirms the order and commits stock
- payment_intent.payment_failed: marks the order payment as failed
- payment_intent.canceled: cancels the order
- charge.refunded: reconciles provider refunds with local refunds

Every event ID is processed at most once. A redelivered event is
acknowledged with result "duplicate". Events for unknown orders or of
unhandled types are acknowledged with result "skipped" so the provider
stops retrying them.

A 5xx response means the event was not recorded; the provider retries.
""",
    response_model=WebhookResponse,
    status_code=HTTP_200_OK,
    responses={
        200: {"description": "Event durably handled (including duplicates)"},
        400: {"description": "Missing or invalid Stripe-Signature header"},
        500: {"description": "Event not recorded; retry"},
    },
)
async def payment_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    gateway: PaymentGateway = Depends(get_gateway),
    reconciler: PaymentWebhookReconciler = Depends(get_webhook_reconciler),
) -> WebhookResponse | JSONResponse:
    if not stripe_signature:
        logger.warning("Webhook received without Stripe-Signature header")
        raise InvalidWebhookSignature(details={"reason": "missing signature header"})

    payload = await request.body()
    event = gateway.verify_webhook_signature(payload, stripe_signature)

    webhook_event = PaymentWebhookEvent.from_stripe(
        event, payload_hash=StripeGateway.compute_payload_hash(payload)
    )
    try:
        ack = reconciler.handle(webhook_event)
    except CommerceError as e:
        # Nothing was recorded for the event; a 5xx makes the provider redeliver
        logger.error(
            "Webhook %s (%s) not processed: %s",
            webhook_event.external_event_id,
            webhook_event.event_type,
            e,
        )
        return JSONResponse(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR,
            content=e.to_response().model_dump(mode="json"),
        )

    return WebhookResponse(
        event_id=ack.external_event_id,
        event_type=ack.event_type,
        result=ack.result,
        order_id=ack.order_id,
        message=ack.message,
    )
