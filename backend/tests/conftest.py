"""Pytest configuration and fixtures for the commerce core tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto (every table from TABLE_DEFINITIONS)
- Wired core services sharing one DynamoDBService
- A fake payment gateway recording refund calls
- Stripe-shaped webhook event builders
- A TestClient over the FastAPI app
"""

import json
import os
from collections.abc import Callable
from decimal import Decimal
from typing import Any, Generator

import boto3
import pytest
from fastapi.testclient import TestClient
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-commerce")
os.environ.setdefault("ENVIRONMENT", "test")

if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from commerce_core.models.errors import GatewayError, InvalidWebhookSignature  # noqa: E402
from commerce_core.models.events import DomainEvent, PaymentCaptured  # noqa: E402
from commerce_core.models.order import Order, OrderItem  # noqa: E402
from commerce_core.models.webhook import PaymentWebhookEvent  # noqa: E402
from commerce_core.services.dynamodb import (  # noqa: E402
    DynamoDBService,
    reset_dynamodb_service,
)
from commerce_core.services.events import DomainEventOutbox, EventBus  # noqa: E402
from commerce_core.services.fulfillment import DynamoDBWarehouseLocator  # noqa: E402
from commerce_core.services.gateway import (  # noqa: E402
    GatewayCaptureResult,
    GatewayRefundResult,
)
from commerce_core.services.order_state_machine import OrderStateMachine  # noqa: E402
from commerce_core.services.refund_service import RefundOrchestrator  # noqa: E402
from commerce_core.services.return_requests import ReturnRequestService  # noqa: E402
from commerce_core.services.stock_ledger import StockLedger  # noqa: E402
from commerce_core.services.store_credit import StoreCreditLedger  # noqa: E402
from commerce_core.services.tables import create_tables  # noqa: E402
from commerce_core.services.transfer_service import StockTransferManager  # noqa: E402
from commerce_core.services.webhook_reconciler import PaymentWebhookReconciler  # noqa: E402

# === Test Constants ===

SELLER = "SEL-001"
CUSTOMER = "CUS-001"
OTHER_CUSTOMER = "CUS-002"
COURIER = "COU-001"
WAREHOUSE = "WH-NORTH"
OTHER_WAREHOUSE = "WH-SOUTH"
PRODUCT = "SKU-RED-SHIRT"
PAYMENT_INTENT = "pi_test_123"


# === Fake Collaborators ===


class FakeGateway:
    """PaymentGateway double that records refund calls.

    Set decline to have the provider answer with a failed refund, or
    error to raise it from refund_payment.
    """

    def __init__(self) -> None:
        self.refund_calls: list[dict[str, Any]] = []
        self.decline = False
        self.error: Exception | None = None

    def refund_payment(
        self,
        payment_ref: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
    ) -> GatewayRefundResult:
        self.refund_calls.append(
            {
                "payment_ref": payment_ref,
                "amount": amount,
                "currency": currency,
                "idempotency_key": idempotency_key,
            }
        )
        if self.error is not None:
            raise self.error
        if self.decline:
            return GatewayRefundResult(
                success=False,
                provider_refund_ref=f"re_{idempotency_key}",
                error="Refund failed",
                error_code="card_declined",
            )
        return GatewayRefundResult(success=True, provider_refund_ref=f"re_{idempotency_key}")

    def capture_payment(
        self, payment_ref: str, amount: Decimal, currency: str
    ) -> GatewayCaptureResult:
        return GatewayCaptureResult(success=True, provider_ref=payment_ref)

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict:
        if signature != "valid-signature":
            raise InvalidWebhookSignature(details={"reason": "signature mismatch"})
        try:
            return json.loads(payload)
        except ValueError as e:
            raise InvalidWebhookSignature(details={"reason": "invalid payload"}) from e


class RecordingPublisher:
    """EventPublisher that keeps every published event."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [e.event_type for e in self.events]


# === DynamoDB Fixtures ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset cached singletons before and after each test.

    Services created inside a mock_aws context must not leak into the next
    test.
    """
    from commerce_core.services.gateway import get_payment_gateway
    from commerce_core.services.secrets import get_secret_store

    reset_dynamodb_service()
    get_payment_gateway.cache_clear()
    get_secret_store.cache_clear()
    yield
    reset_dynamodb_service()
    get_payment_gateway.cache_clear()
    get_secret_store.cache_clear()


@pytest.fixture
def aws_tables() -> Generator[Any, None, None]:
    """Mocked AWS with every commerce table created."""
    with mock_aws():
        client = boto3.client("dynamodb")
        create_tables(client, os.environ["DYNAMODB_TABLE_PREFIX"])
        yield client


@pytest.fixture
def db(aws_tables: Any) -> DynamoDBService:
    return DynamoDBService()


# === Service Fixtures ===


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def outbox(db: DynamoDBService, publisher: RecordingPublisher) -> DomainEventOutbox:
    return DomainEventOutbox(db, publisher)


@pytest.fixture
def ledger(db: DynamoDBService) -> StockLedger:
    return StockLedger(db)


@pytest.fixture
def locator(db: DynamoDBService) -> DynamoDBWarehouseLocator:
    locator = DynamoDBWarehouseLocator(db)
    locator.assign(SELLER, WAREHOUSE)
    return locator


@pytest.fixture
def store_credit(db: DynamoDBService) -> StoreCreditLedger:
    return StoreCreditLedger(db)


@pytest.fixture
def refunds(
    db: DynamoDBService,
    gateway: FakeGateway,
    store_credit: StoreCreditLedger,
    outbox: DomainEventOutbox,
) -> RefundOrchestrator:
    return RefundOrchestrator(db, gateway, store_credit, outbox)


@pytest.fixture
def orders(
    db: DynamoDBService,
    ledger: StockLedger,
    locator: DynamoDBWarehouseLocator,
    outbox: DomainEventOutbox,
    refunds: RefundOrchestrator,
) -> OrderStateMachine:
    return OrderStateMachine(db, ledger, locator, outbox, refunds)


@pytest.fixture
def transfers(
    db: DynamoDBService, ledger: StockLedger, outbox: DomainEventOutbox
) -> StockTransferManager:
    return StockTransferManager(db, ledger, outbox)


@pytest.fixture
def returns(db: DynamoDBService, refunds: RefundOrchestrator) -> ReturnRequestService:
    return ReturnRequestService(db, refunds)


@pytest.fixture
def reconciler(
    db: DynamoDBService, orders: OrderStateMachine, refunds: RefundOrchestrator
) -> PaymentWebhookReconciler:
    return PaymentWebhookReconciler(db, orders, refunds)


# === Sample Data Fixtures ===


@pytest.fixture
def stocked(ledger: StockLedger) -> StockLedger:
    """Ten units of PRODUCT in the seller's fulfillment warehouse."""
    ledger.set_quantity(PRODUCT, WAREHOUSE, 10)
    return ledger


@pytest.fixture
def pending_order(orders: OrderStateMachine, stocked: StockLedger) -> Order:
    """PENDING order for 2 x PRODUCT at 10.00 (total 20.00)."""
    return orders.create_order(
        CUSTOMER,
        SELLER,
        [OrderItem(product_ref=PRODUCT, quantity=2, unit_price=Decimal("10.00"))],
        currency="EUR",
        payment_intent_ref=PAYMENT_INTENT,
    )


@pytest.fixture
def paid_order(orders: OrderStateMachine, pending_order: Order) -> Order:
    """The pending order after its payment was captured (CONFIRMED, PAID)."""
    return orders.transition(pending_order.order_id, PaymentCaptured())


@pytest.fixture
def stripe_event() -> Callable[..., dict[str, Any]]:
    """Build a Stripe-shaped event payload."""

    def _build(
        event_type: str = "payment_intent.succeeded",
        event_id: str = "evt_test_1",
        payment_intent: str = PAYMENT_INTENT,
        amount: int = 2000,
        currency: str = "eur",
        refund_ids: list[str] | None = None,
    ) -> dict[str, Any]:
        if event_type == "charge.refunded":
            obj: dict[str, Any] = {
                "id": "ch_test_1",
                "object": "charge",
                "payment_intent": payment_intent,
                "amount_refunded": amount,
                "currency": currency,
                "refunds": {"data": [{"id": ref} for ref in (refund_ids or [])]},
            }
        else:
            obj = {
                "id": payment_intent,
                "object": "payment_intent",
                "amount": amount,
                "amount_received": amount if event_type.endswith("succeeded") else 0,
                "currency": currency,
            }
        return {"id": event_id, "type": event_type, "data": {"object": obj}}

    return _build


@pytest.fixture
def webhook_event(
    stripe_event: Callable[..., dict[str, Any]],
) -> Callable[..., PaymentWebhookEvent]:
    """Build a normalized PaymentWebhookEvent from Stripe-shaped arguments."""

    def _build(**kwargs: Any) -> PaymentWebhookEvent:
        return PaymentWebhookEvent.from_stripe(stripe_event(**kwargs), payload_hash="0" * 64)

    return _build


@pytest.fixture
def gateway_error() -> GatewayError:
    return GatewayError("Your card was declined.", provider_code="card_declined")


# === HTTP Fixtures ===


@pytest.fixture
def api_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def client(
    aws_tables: Any, api_gateway: FakeGateway, monkeypatch: pytest.MonkeyPatch
) -> Generator[TestClient, None, None]:
    """TestClient over mocked DynamoDB with a seeded warehouse.

    The app resolves its services through the cached providers in
    commerce_api.dependencies; they are reset for every test and the
    payment gateway provider is pointed at the FakeGateway.
    """
    from commerce_api import dependencies
    from commerce_api.main import app

    dependencies.reset_services()
    monkeypatch.setattr(dependencies, "get_payment_gateway", lambda: api_gateway)

    db = DynamoDBService()
    DynamoDBWarehouseLocator(db).assign(SELLER, WAREHOUSE)
    StockLedger(db).set_quantity(PRODUCT, WAREHOUSE, 10)

    yield TestClient(app)
    dependencies.reset_services()
