"""FastAPI dependency injection providers for core services.

Services are lazily instantiated and cached with @lru_cache so every request
shares the same instances.

Usage in routes:
    from commerce_api.dependencies import get_order_state_machine

    @router.get("/orders/{order_id}")
    async def get_order(
        order_id: str,
        orders: OrderStateMachine = Depends(get_order_state_machine),
    ):
        ...

Service Dependency Graph:
    DynamoDBService (singleton via get_dynamodb_service)
        ├── StockLedger
        │       ├── StockTransferManager
        │       └── OrderStateMachine
        ├── DomainEventOutbox ── EventBus
        ├── RefundOrchestrator ── StripeGateway
        │       ├── OrderStateMachine
        │       ├── ReturnRequestService
        │       └── PaymentWebhookReconciler
        └── DynamoDBWarehouseLocator

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from fastapi import Header

from commerce_core.models.actor import Actor
from commerce_core.models.enums import ActorRole
from commerce_core.models.events import DomainEvent
from commerce_core.services.dynamodb import get_dynamodb_service
from commerce_core.services.events import DomainEventOutbox, EventBus
from commerce_core.services.fulfillment import DynamoDBWarehouseLocator
from commerce_core.services.gateway import PaymentGateway, get_payment_gateway
from commerce_core.services.order_state_machine import OrderStateMachine
from commerce_core.services.refund_service import RefundOrchestrator
from commerce_core.services.return_requests import ReturnRequestService
from commerce_core.services.stock_ledger import StockLedger
from commerce_core.services.store_credit import StoreCreditLedger
from commerce_core.services.transfer_service import StockTransferManager
from commerce_core.services.webhook_reconciler import PaymentWebhookReconciler
from commerce_core.utils.logging import get_logger

logger = get_logger(__name__)


def _log_domain_event(event: DomainEvent) -> None:
    logger.info("Domain event %s for %s", event.event_type, event.aggregate_id)


@lru_cache
def get_event_bus() -> EventBus:
    """Get the in-process EventBus with the audit log subscriber attached."""
    bus = EventBus()
    bus.subscribe("*", _log_domain_event)
    return bus


@lru_cache
def get_outbox() -> DomainEventOutbox:
    return DomainEventOutbox(db=get_dynamodb_service(), publisher=get_event_bus())


@lru_cache
def get_stock_ledger() -> StockLedger:
    return StockLedger(db=get_dynamodb_service())


@lru_cache
def get_warehouse_locator() -> DynamoDBWarehouseLocator:
    return DynamoDBWarehouseLocator(db=get_dynamodb_service())


@lru_cache
def get_gateway() -> PaymentGateway:
    """Get the shared payment gateway."""
    return get_payment_gateway()


@lru_cache
def get_transfer_manager() -> StockTransferManager:
    return StockTransferManager(
        db=get_dynamodb_service(),
        ledger=get_stock_ledger(),
        outbox=get_outbox(),
    )


@lru_cache
def get_refund_orchestrator() -> RefundOrchestrator:
    """Get cached RefundOrchestrator instance.

    Returns:
        RefundOrchestrator configured with the gateway and store credit ledger.
    """
    db = get_dynamodb_service()
    return RefundOrchestrator(
        db=db,
        gateway=get_gateway(),
        store_credit=StoreCreditLedger(db),
        outbox=get_outbox(),
    )


@lru_cache
def get_order_state_machine() -> OrderStateMachine:
    """Get cached OrderStateMachine instance.

    Returns:
        OrderStateMachine wired to the ledger, locator and refund orchestrator
        so that cancellations restock and refund.
    """
    return OrderStateMachine(
        db=get_dynamodb_service(),
        ledger=get_stock_ledger(),
        locator=get_warehouse_locator(),
        outbox=get_outbox(),
        refunds=get_refund_orchestrator(),
    )


@lru_cache
def get_return_request_service() -> ReturnRequestService:
    return ReturnRequestService(db=get_dynamodb_service(), refunds=get_refund_orchestrator())


@lru_cache
def get_webhook_reconciler() -> PaymentWebhookReconciler:
    return PaymentWebhookReconciler(
        db=get_dynamodb_service(),
        orders=get_order_state_machine(),
        refunds=get_refund_orchestrator(),
    )


def get_actor(
    x_actor_role: ActorRole = Header(..., description="Role of the caller"),
    x_actor_id: str | None = Header(default=None, description="Caller reference"),
) -> Actor:
    """Actor for the request, as asserted by the upstream authorizer."""
    return Actor(role=x_actor_role, ref=x_actor_id)


def reset_services() -> None:
    """Clear all cached service instances.

    Call between tests to ensure fresh service instances.
    """
    get_event_bus.cache_clear()
    get_outbox.cache_clear()
    get_stock_ledger.cache_clear()
    get_warehouse_locator.cache_clear()
    get_gateway.cache_clear()
    get_transfer_manager.cache_clear()
    get_refund_orchestrator.cache_clear()
    get_order_state_machine.cache_clear()
    get_return_request_service.cache_clear()
    get_webhook_reconciler.cache_clear()
