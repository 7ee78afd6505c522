"""Payment webhook event models for idempotency and auditing."""

from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import WebhookEventKind, WebhookProcessingResult

# Provider event types and the kind they normalize to
STRIPE_EVENT_KINDS: dict[str, WebhookEventKind] = {
    "payment_intent.succeeded": WebhookEventKind.SUCCEEDED,
    "payment_intent.payment_failed": WebhookEventKind.FAILED,
    "payment_intent.canceled": WebhookEventKind.CANCELED,
    "charge.refunded": WebhookEventKind.REFUNDED,
}

# Currencies Stripe represents without a minor unit
ZERO_DECIMAL_CURRENCIES = frozenset(
    {"bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
     "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf"}
)


def from_minor_units(amount: int, currency: str | None) -> Decimal:
    """Convert a provider amount in minor units to a Decimal in major units."""
    if currency and currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(amount)
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


def to_minor_units(amount: Decimal, currency: str | None) -> int:
    """Convert a Decimal amount in major units to provider minor units."""
    if currency and currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return int(amount)
    return int((amount * 100).to_integral_value())


class PaymentWebhookEvent(BaseModel):
    """A payment provider notification.

    Used for:
    - Idempotency: external_event_id is recorded once, in the same
      transaction as the effect it caused
    - Auditing: every delivery outcome is kept with a payload hash
    """

    model_config = ConfigDict(strict=True)

    external_event_id: str = Field(
        ...,
        description="Provider event ID (evt_xxx)",
        examples=["evt_1ABC123DEF456"],
    )
    event_type: str = Field(
        ...,
        description="Raw provider event type",
        examples=["payment_intent.succeeded", "charge.refunded"],
    )
    kind: WebhookEventKind | None = Field(
        default=None, description="Normalized kind; None for unhandled types"
    )
    payment_intent_ref: str | None = None
    amount: Decimal | None = Field(default=None, description="Amount in major units")
    currency: str | None = None
    provider_refund_refs: list[str] = Field(default_factory=list)
    payload_hash: str | None = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_stripe(
        cls, event: Mapping[str, Any], payload_hash: str | None = None
    ) -> "PaymentWebhookEvent":
        """Normalize a verified Stripe event.

        Args:
            event: Parsed Stripe event (as returned by signature verification)
            payload_hash: SHA-256 of the raw payload

        Returns:
            PaymentWebhookEvent with kind set for handled event types.
        """
        event_type = event.get("type", "")
        obj = event.get("data", {}).get("object", {}) or {}
        kind = STRIPE_EVENT_KINDS.get(event_type)
        currency = obj.get("currency")

        payment_intent_ref: str | None = None
        amount_minor: int | None = None
        refund_refs: list[str] = []

        if kind == WebhookEventKind.REFUNDED:
            payment_intent_ref = obj.get("payment_intent")
            amount_minor = obj.get("amount_refunded")
            refunds = obj.get("refunds") or {}
            refund_refs = [r.get("id") for r in refunds.get("data", []) if r.get("id")]
        elif kind is not None:
            payment_intent_ref = obj.get("id")
            amount_minor = obj.get("amount_received") or obj.get("amount")

        return cls(
            external_event_id=event.get("id", ""),
            event_type=event_type,
            kind=kind,
            payment_intent_ref=payment_intent_ref,
            amount=from_minor_units(amount_minor, currency) if amount_minor else None,
            currency=currency.upper() if currency else None,
            provider_refund_refs=refund_refs,
            payload_hash=payload_hash,
        )


class WebhookAck(BaseModel):
    """Acknowledgement returned to the provider once the event is durable."""

    model_config = ConfigDict(strict=True)

    external_event_id: str
    event_type: str
    result: WebhookProcessingResult
    order_id: str | None = None
    message: str | None = None
