"""Unit tests for StripeGateway.

Tests verify the adapter logic without making actual Stripe API calls.
All Stripe interactions are mocked.

Test categories:
- Initialization and credential retrieval
- refund_payment(): amounts, idempotency, provider outcomes
- capture_payment()
- verify_webhook_signature()
"""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import stripe

from commerce_core.models.errors import (
    GatewayError,
    GatewayTimeout,
    InvalidWebhookSignature,
)
from commerce_core.services.gateway import StripeGateway
from commerce_core.services.secrets import SecretNotAvailable, SecretStore

# === Test Configuration ===

TEST_SECRET_KEY = "sk_test_abc123xyz"
TEST_WEBHOOK_SECRET = "whsec_test_secret123"
TEST_REFUND_ID = "REF-ABC123DEF456"


# === Test Fixtures ===


@pytest.fixture
def secret_store() -> MagicMock:
    """SecretStore double holding the Stripe credentials."""
    store = MagicMock(spec=SecretStore)
    store.environment = "dev"
    store.get.side_effect = lambda provider, name: {
        ("stripe", "secret_key"): TEST_SECRET_KEY,
        ("stripe", "webhook_secret"): TEST_WEBHOOK_SECRET,
    }[(provider, name)]
    return store


@pytest.fixture
def gateway(secret_store: MagicMock) -> StripeGateway:
    """StripeGateway reading the test credentials."""
    return StripeGateway(secrets=secret_store)


@pytest.fixture
def mock_stripe_client():
    """Mock Stripe client for API calls."""
    with patch("commerce_core.services.gateway.StripeClient") as mock_client_class:
        mock_client = MagicMock()
        mock_client_class.return_value = mock_client
        yield mock_client


def stripe_refund(status: str = "succeeded", failure_reason: str | None = None) -> MagicMock:
    refund = MagicMock()
    refund.id = "re_test_789"
    refund.status = status
    refund.failure_reason = failure_reason
    return refund


# === Initialization ===


class TestInitialization:
    def test_uses_shared_secret_store(self):
        with patch("commerce_core.services.gateway.get_secret_store") as get_store:
            gateway = StripeGateway()

        assert gateway._secrets is get_store.return_value

    def test_client_lazy_initialized(self, gateway: StripeGateway):
        assert gateway._client is None

    def test_timeout_from_environment(self, secret_store: MagicMock):
        with patch.dict("os.environ", {"PAYMENT_GATEWAY_TIMEOUT_SECONDS": "3"}):
            assert StripeGateway(secrets=secret_store)._timeout == 3.0

    def test_client_uses_secret_key(self, gateway: StripeGateway):
        with patch("commerce_core.services.gateway.StripeClient") as client_class:
            gateway._get_client()

        assert client_class.call_args.args[0] == TEST_SECRET_KEY

    def test_raises_gateway_error_when_secret_missing(
        self, secret_store: MagicMock, mock_stripe_client
    ):
        secret_store.get.side_effect = SecretNotAvailable(
            "/commerce/dev/stripe/secret_key", "parameter not found"
        )
        gateway = StripeGateway(secrets=secret_store)

        with pytest.raises(GatewayError) as exc_info:
            gateway._get_client()

        assert "Failed to initialize Stripe client" in str(exc_info.value)


# === refund_payment() ===


class TestRefundPayment:
    def test_refund_in_minor_units_with_idempotency_key(
        self, gateway: StripeGateway, mock_stripe_client
    ):
        mock_stripe_client.refunds.create.return_value = stripe_refund()

        result = gateway.refund_payment("pi_test_123", Decimal("12.34"), "EUR", TEST_REFUND_ID)

        assert result.success is True
        assert result.provider_refund_ref == "re_test_789"
        call = mock_stripe_client.refunds.create.call_args
        assert call.kwargs["params"]["payment_intent"] == "pi_test_123"
        assert call.kwargs["params"]["amount"] == 1234
        assert call.kwargs["params"]["metadata"] == {"refund_id": TEST_REFUND_ID}
        assert call.kwargs["options"] == {"idempotency_key": TEST_REFUND_ID}

    def test_zero_decimal_currency(self, gateway: StripeGateway, mock_stripe_client):
        mock_stripe_client.refunds.create.return_value = stripe_refund()

        gateway.refund_payment("pi_test_123", Decimal("500"), "JPY", TEST_REFUND_ID)

        assert mock_stripe_client.refunds.create.call_args.kwargs["params"]["amount"] == 500

    @pytest.mark.parametrize("status", ["failed", "canceled"])
    def test_failed_refund_is_unsuccessful(
        self, gateway: StripeGateway, mock_stripe_client, status: str
    ):
        mock_stripe_client.refunds.create.return_value = stripe_refund(
            status, failure_reason="expired_or_canceled_card"
        )

        result = gateway.refund_payment("pi_test_123", Decimal("5.00"), "EUR", TEST_REFUND_ID)

        assert result.success is False
        assert result.provider_refund_ref == "re_test_789"
        assert result.error_code == "expired_or_canceled_card"

    def test_connection_error_is_a_timeout(self, gateway: StripeGateway, mock_stripe_client):
        mock_stripe_client.refunds.create.side_effect = stripe.APIConnectionError(
            "Request timed out"
        )

        with pytest.raises(GatewayTimeout) as exc_info:
            gateway.refund_payment("pi_test_123", Decimal("5.00"), "EUR", TEST_REFUND_ID)

        assert exc_info.value.details == {"refund_id": TEST_REFUND_ID}

    def test_provider_rejection_is_a_gateway_error(
        self, gateway: StripeGateway, mock_stripe_client
    ):
        mock_stripe_client.refunds.create.side_effect = stripe.InvalidRequestError(
            "Charge ch_123 has already been refunded.",
            param="payment_intent",
            code="charge_already_refunded",
        )

        with pytest.raises(GatewayError) as exc_info:
            gateway.refund_payment("pi_test_123", Decimal("5.00"), "EUR", TEST_REFUND_ID)

        assert exc_info.value.provider_code == "charge_already_refunded"
        assert "already been refunded" in str(exc_info.value)


# === capture_payment() ===


class TestCapturePayment:
    def test_capture_succeeded(self, gateway: StripeGateway, mock_stripe_client):
        intent = MagicMock()
        intent.id = "pi_test_123"
        intent.status = "succeeded"
        mock_stripe_client.payment_intents.capture.return_value = intent

        result = gateway.capture_payment("pi_test_123", Decimal("20.00"), "EUR")

        assert result.success is True
        assert result.provider_ref == "pi_test_123"
        call = mock_stripe_client.payment_intents.capture.call_args
        assert call.kwargs["params"] == {"amount_to_capture": 2000}

    def test_capture_not_succeeded(self, gateway: StripeGateway, mock_stripe_client):
        intent = MagicMock()
        intent.id = "pi_test_123"
        intent.status = "requires_action"
        mock_stripe_client.payment_intents.capture.return_value = intent

        result = gateway.capture_payment("pi_test_123", Decimal("20.00"), "EUR")

        assert result.success is False
        assert result.error == "PaymentIntent requires_action"

    def test_capture_connection_error(self, gateway: StripeGateway, mock_stripe_client):
        mock_stripe_client.payment_intents.capture.side_effect = stripe.APIConnectionError(
            "Network down"
        )

        with pytest.raises(GatewayTimeout):
            gateway.capture_payment("pi_test_123", Decimal("20.00"), "EUR")


# === verify_webhook_signature() ===


class TestVerifyWebhookSignature:
    def test_valid_signature_returns_event(self, gateway: StripeGateway):
        event = {"id": "evt_test_1", "type": "payment_intent.succeeded"}
        with patch("stripe.Webhook.construct_event", return_value=event) as construct:
            result = gateway.verify_webhook_signature(b"{}", "t=1,v1=abc")

        assert result == event
        construct.assert_called_once_with(b"{}", "t=1,v1=abc", TEST_WEBHOOK_SECRET)

    def test_signature_mismatch(self, gateway: StripeGateway):
        error = stripe.SignatureVerificationError("No signatures found", "t=1,v1=bad")
        with patch("stripe.Webhook.construct_event", side_effect=error):
            with pytest.raises(InvalidWebhookSignature) as exc_info:
                gateway.verify_webhook_signature(b"{}", "t=1,v1=bad")

        assert exc_info.value.details == {"reason": "signature mismatch"}

    def test_invalid_payload(self, gateway: StripeGateway):
        with patch("stripe.Webhook.construct_event", side_effect=ValueError("bad json")):
            with pytest.raises(InvalidWebhookSignature) as exc_info:
                gateway.verify_webhook_signature(b"not json", "t=1,v1=abc")

        assert exc_info.value.details == {"reason": "invalid payload"}

    def test_webhook_secret_is_cached(self, gateway: StripeGateway, secret_store: MagicMock):
        with patch("stripe.Webhook.construct_event", return_value={"id": "evt_1"}):
            gateway.verify_webhook_signature(b"{}", "sig")
            gateway.verify_webhook_signature(b"{}", "sig")

        calls = [c.args for c in secret_store.get.call_args_list]
        assert calls.count(("stripe", "webhook_secret")) == 1

    def test_payload_hash_is_sha256(self):
        digest = StripeGateway.compute_payload_hash(b"payload")
        assert len(digest) == 64
        assert digest == StripeGateway.compute_payload_hash(b"payload")
        assert digest != StripeGateway.compute_payload_hash(b"other")
