"""Payment gateway port and its Stripe adapter.

Uses the v8+ StripeClient pattern with the API key and webhook signing
secret read through the SecretStore.
Every provider call has a bounded timeout; connection failures surface as
GatewayTimeout and provider rejections as GatewayError.
"""

import hashlib
import os
from decimal import Decimal
from functools import lru_cache
from typing import Any, Protocol

import stripe
from pydantic import BaseModel, ConfigDict
from stripe import StripeClient

from commerce_core.models.errors import (
    GatewayError,
    GatewayTimeout,
    InvalidWebhookSignature,
    get_user_friendly_stripe_message,
)
from commerce_core.models.webhook import to_minor_units
from commerce_core.utils.logging import get_logger

from .secrets import SecretNotAvailable, SecretStore, get_secret_store

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10
DEFAULT_MAX_RETRIES = 0


class GatewayRefundResult(BaseModel):
    """Outcome of a refund call the provider answered."""

    model_config = ConfigDict(strict=True)

    success: bool
    provider_refund_ref: str | None = None
    error: str | None = None
    error_code: str | None = None


class GatewayCaptureResult(BaseModel):
    """Outcome of a capture call the provider answered."""

    model_config = ConfigDict(strict=True)

    success: bool
    provider_ref: str | None = None
    error: str | None = None


class PaymentGateway(Protocol):
    """Operations the core needs from a payment provider."""

    def refund_payment(
        self,
        payment_ref: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
    ) -> GatewayRefundResult: ...

    def capture_payment(
        self, payment_ref: str, amount: Decimal, currency: str
    ) -> GatewayCaptureResult: ...

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict: ...


class StripeGateway:
    """PaymentGateway backed by Stripe.

    Usage:
        gateway = get_payment_gateway()
        result = gateway.refund_payment("pi_123", Decimal("10.00"), "EUR", "REF-ABC")
    """

    def __init__(
        self,
        secrets: SecretStore | None = None,
        timeout_seconds: float | None = None,
        max_retries: int | None = None,
    ) -> None:
        """Initialize the gateway. Credentials are loaded lazily.

        Args:
            secrets: Store holding the stripe secret_key and webhook_secret
            timeout_seconds: Per-request timeout. Defaults to PAYMENT_GATEWAY_TIMEOUT_SECONDS.
            max_retries: Network retries. Defaults to PAYMENT_GATEWAY_MAX_RETRIES.
        """
        self._secrets = secrets or get_secret_store()
        self._timeout = timeout_seconds or float(
            os.environ.get("PAYMENT_GATEWAY_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)
        )
        self._max_retries = (
            max_retries
            if max_retries is not None
            else int(os.environ.get("PAYMENT_GATEWAY_MAX_RETRIES", DEFAULT_MAX_RETRIES))
        )
        self._client: StripeClient | None = None
        self._webhook_secret: str | None = None

    def _get_client(self) -> StripeClient:
        """Get or create the Stripe client (lazy initialization).

        Raises:
            GatewayError: If credentials cannot be retrieved.
        """
        if self._client is None:
            try:
                secret_key = self._secrets.get("stripe", "secret_key")
            except SecretNotAvailable as e:
                raise GatewayError(f"Failed to initialize Stripe client: {e}") from e
            self._client = StripeClient(
                secret_key,
                http_client=stripe.RequestsClient(timeout=self._timeout),
                max_network_retries=self._max_retries,
            )
            logger.info(
                "Stripe client initialized for environment: %s (timeout %ss)",
                self._secrets.environment,
                self._timeout,
            )
        return self._client

    def _get_webhook_secret(self) -> str:
        if self._webhook_secret is None:
            try:
                self._webhook_secret = self._secrets.get("stripe", "webhook_secret")
            except SecretNotAvailable as e:
                raise GatewayError(f"Failed to get webhook secret: {e}") from e
        return self._webhook_secret

    def refund_payment(
        self,
        payment_ref: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
    ) -> GatewayRefundResult:
        """Refund part or all of a captured payment intent.

        Args:
            payment_ref: Stripe PaymentIntent ID (pi_xxx)
            amount: Refund amount in major units
            currency: ISO currency code
            idempotency_key: Refund ID; a retried call returns the same refund

        Returns:
            GatewayRefundResult; success is False if Stripe reports the
            refund as failed or canceled.

        Raises:
            GatewayTimeout: Stripe could not be reached in time
            GatewayError: Stripe rejected the request
        """
        client = self._get_client()
        params: dict[str, Any] = {
            "payment_intent": payment_ref,
            "amount": to_minor_units(amount, currency),
            "metadata": {"refund_id": idempotency_key},
        }

        try:
            logger.info(
                "Creating refund %s for PaymentIntent %s, amount %s %s",
                idempotency_key,
                payment_ref,
                amount,
                currency,
            )
            refund = client.refunds.create(
                params=params, options={"idempotency_key": idempotency_key}
            )
        except stripe.APIConnectionError as e:
            logger.error("Stripe refund %s timed out: %s", idempotency_key, e)
            raise GatewayTimeout(details={"refund_id": idempotency_key}) from e
        except stripe.StripeError as e:
            error_code = getattr(e, "code", None)
            logger.error(
                "Stripe refund creation failed: %s (code: %s)",
                str(e),
                error_code,
            )
            raise GatewayError(
                get_user_friendly_stripe_message(error_code, str(e)),
                provider_code=error_code,
            ) from e

        if refund.status in ("failed", "canceled"):
            logger.warning("Stripe refund %s ended as %s", refund.id, refund.status)
            return GatewayRefundResult(
                success=False,
                provider_refund_ref=refund.id,
                error=f"Refund {refund.status}",
                error_code=getattr(refund, "failure_reason", None),
            )

        logger.info("Refund created: %s for PaymentIntent %s", refund.id, payment_ref)
        return GatewayRefundResult(success=True, provider_refund_ref=refund.id)

    def capture_payment(
        self, payment_ref: str, amount: Decimal, currency: str
    ) -> GatewayCaptureResult:
        """Capture an authorized payment intent.

        Raises:
            GatewayTimeout: Stripe could not be reached in time
            GatewayError: Stripe rejected the request
        """
        client = self._get_client()
        try:
            intent = client.payment_intents.capture(
                payment_ref,
                params={"amount_to_capture": to_minor_units(amount, currency)},
            )
        except stripe.APIConnectionError as e:
            raise GatewayTimeout(details={"payment_ref": payment_ref}) from e
        except stripe.StripeError as e:
            error_code = getattr(e, "code", None)
            logger.error("Stripe capture failed: %s (code: %s)", str(e), error_code)
            raise GatewayError(str(e), provider_code=error_code) from e

        return GatewayCaptureResult(
            success=intent.status == "succeeded",
            provider_ref=intent.id,
            error=None if intent.status == "succeeded" else f"PaymentIntent {intent.status}",
        )

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict:
        """Verify a webhook signature and parse the event.

        Raises:
            InvalidWebhookSignature: If the signature or payload is invalid.
        """
        webhook_secret = self._get_webhook_secret()

        try:
            event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise InvalidWebhookSignature(details={"reason": "signature mismatch"}) from e
        except ValueError as e:
            logger.warning("Invalid webhook payload: %s", str(e))
            raise InvalidWebhookSignature(details={"reason": "invalid payload"}) from e

        logger.info("Webhook signature verified for event: %s", event["id"])
        return dict(event)

    @staticmethod
    def compute_payload_hash(payload: bytes) -> str:
        """Compute SHA-256 hash of a webhook payload for auditing."""
        return hashlib.sha256(payload).hexdigest()


@lru_cache(maxsize=1)
def get_payment_gateway() -> StripeGateway:
    """Get the shared StripeGateway instance."""
    return StripeGateway()
