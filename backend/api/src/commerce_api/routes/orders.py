"""Order endpoints.

Provides REST endpoints for:
- Creating orders at checkout
- Reading an order
- Firing order events (processing, shipping, delivery, cancellation)
- Assigning a courier
- Refunds and return requests on an order

Every endpoint requires the X-Actor-Role header (and X-Actor-Id for
non-system roles). Authority is checked per operation.
"""

from fastapi import APIRouter, Depends
from starlette.status import HTTP_200_OK, HTTP_201_CREATED

from commerce_api.dependencies import (
    get_actor,
    get_order_state_machine,
    get_refund_orchestrator,
    get_return_request_service,
)
from commerce_api.models.orders import (
    AssignCourierRequest,
    CreateOrderRequest,
    CreateReturnRequest,
    OrderResponse,
    RefundListResponse,
    RefundRequest,
    RefundResponse,
    ReturnRequestResponse,
    TransitionRequest,
)
from commerce_core.models.actor import Actor
from commerce_core.models.enums import ActorRole
from commerce_core.models.errors import Unauthorized
from commerce_core.models.events import ORDER_EVENT_TYPES, OrderEvent
from commerce_core.models.order import Order, OrderItem
from commerce_core.models.refund import Refund
from commerce_core.models.return_request import ReturnRequest
from commerce_core.services.order_state_machine import OrderStateMachine
from commerce_core.services.refund_service import RefundOrchestrator
from commerce_core.services.repositories import money
from commerce_core.services.return_requests import ReturnRequestService

router = APIRouter(tags=["orders"])

_PRIVILEGED = (ActorRole.SYSTEM, ActorRole.ADMIN)


def order_response(order: Order) -> OrderResponse:
    return OrderResponse.model_validate(order.model_dump())


def refund_response(refund: Refund) -> RefundResponse:
    return RefundResponse.model_validate(refund.model_dump())


def return_request_response(request: ReturnRequest) -> ReturnRequestResponse:
    return ReturnRequestResponse.model_validate(request.model_dump())


def check_order_visible(order: Order, actor: Actor) -> None:
    """Raise Unauthorized unless actor is a party to the order.

    Raises:
        Unauthorized: The actor is not the order's customer, seller or courier.
    """
    if actor.role in _PRIVILEGED:
        return
    owner = {
        ActorRole.CUSTOMER: order.customer_ref,
        ActorRole.SELLER: order.seller_ref,
        ActorRole.COURIER: order.courier_ref,
    }.get(actor.role)
    if owner is None or actor.ref != owner:
        raise Unauthorized(str(actor), "read_order", order_id=order.order_id)


def build_order_event(body: TransitionRequest) -> OrderEvent:
    """Instantiate the order event named in the request with its own fields."""
    event_cls = ORDER_EVENT_TYPES[body.event]
    fields = {
        name: getattr(body, name)
        for name in event_cls.model_fields
        if getattr(body, name, None) is not None
    }
    return event_cls(**fields)  # type: ignore[return-value]


@router.post(
    "/orders",
    summary="Create order",
    description="""
Create a PENDING order at checkout.

**Customers may only create orders for themselves.**

Unit prices are snapshotted on the order; the total is their sum.
Stock is not touched until the payment is captured.
""",
    response_model=OrderResponse,
    status_code=HTTP_201_CREATED,
    responses={
        201: {"description": "Order created"},
        400: {"description": "No items or an invalid quantity"},
        403: {"description": "Customer does not match the caller"},
    },
)
async def create_order(
    body: CreateOrderRequest,
    actor: Actor = Depends(get_actor),
    orders: OrderStateMachine = Depends(get_order_state_machine),
) -> OrderResponse:
    if actor.role not in _PRIVILEGED and not (
        actor.role == ActorRole.CUSTOMER and actor.ref == body.customer_ref
    ):
        raise Unauthorized(str(actor), "create_order")

    items = [
        OrderItem(
            product_ref=item.product_ref,
            quantity=item.quantity,
            unit_price=money(item.unit_price),
        )
        for item in body.items
    ]
    order = orders.create_order(
        body.customer_ref,
        body.seller_ref,
        items,
        currency=body.currency.upper(),
        payment_intent_ref=body.payment_intent_ref,
    )
    return order_response(order)


@router.get(
    "/orders/{order_id}",
    summary="Get order",
    response_model=OrderResponse,
    status_code=HTTP_200_OK,
    responses={
        200: {"description": "Order found"},
        403: {"description": "Caller is not a party to the order"},
        404: {"description": "Order not found"},
    },
)
async def get_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    orders: OrderStateMachine = Depends(get_order_state_machine),
) -> OrderResponse:
    order = orders.get(order_id)
    check_order_visible(order, actor)
    return order_response(order)


@router.post(
    "/orders/{order_id}/transitions",
    summary="Fire order event",
    description="""
Apply an event to the order's state machine.

**Who may fire what:**
- seller (own orders): StartProcessing, Ship, Cancel
- courier (assigned orders): Ship, Deliver
- customer (own PENDING orders): Cancel
- admin, system: any event

Cancelling a paid order returns its committed stock to the ledger and
refunds the captured payment.
""",
    response_model=OrderResponse,
    status_code=HTTP_200_OK,
    responses={
        200: {"description": "Transition applied"},
        403: {"description": "Caller may not fire this event"},
        404: {"description": "Order not found"},
        409: {"description": "Event not valid in the current status"},
    },
)
async def transition_order(
    order_id: str,
    body: TransitionRequest,
    actor: Actor = Depends(get_actor),
    orders: OrderStateMachine = Depends(get_order_state_machine),
) -> OrderResponse:
    order = orders.transition(order_id, build_order_event(body), actor)
    return order_response(order)


@router.put(
    "/orders/{order_id}/courier",
    summary="Assign courier",
    description="Assign the courier who ships and delivers the order. **Admin only.**",
    response_model=OrderResponse,
    status_code=HTTP_200_OK,
    responses={
        403: {"description": "Caller is not an admin"},
        404: {"description": "Order not found"},
        409: {"description": "Order is not open for courier assignment"},
    },
)
async def assign_courier(
    order_id: str,
    body: AssignCourierRequest,
    actor: Actor = Depends(get_actor),
    orders: OrderStateMachine = Depends(get_order_state_machine),
) -> OrderResponse:
    return order_response(orders.assign_courier(order_id, body.courier_ref, actor))


@router.post(
    "/orders/{order_id}/refunds",
    summary="Refund order",
    description="""
Refund part or all of the order's captured payment.

**Admins may refund any order; sellers their own orders.**

The sum of refunds never exceeds the captured amount. A refund the
payment provider declines is returned with status "failed" and frees its
amount for another attempt.
""",
    response_model=RefundResponse,
    status_code=HTTP_201_CREATED,
    responses={
        201: {"description": "Refund processed (completed or failed)"},
        400: {"description": "Amount is not positive"},
        403: {"description": "Caller may not refund this order"},
        404: {"description": "Order not found"},
        409: {"description": "Payment not captured or amount exceeds refundable"},
    },
)
async def create_refund(
    order_id: str,
    body: RefundRequest,
    actor: Actor = Depends(get_actor),
    refunds: RefundOrchestrator = Depends(get_refund_orchestrator),
) -> RefundResponse:
    refund = refunds.create_refund(
        order_id, body.amount, body.method, actor, reason=body.reason
    )
    return refund_response(refund)


@router.get(
    "/orders/{order_id}/refunds",
    summary="List order refunds",
    response_model=RefundListResponse,
    status_code=HTTP_200_OK,
    responses={
        403: {"description": "Caller is not a party to the order"},
        404: {"description": "Order not found"},
    },
)
async def list_refunds(
    order_id: str,
    actor: Actor = Depends(get_actor),
    orders: OrderStateMachine = Depends(get_order_state_machine),
    refunds: RefundOrchestrator = Depends(get_refund_orchestrator),
) -> RefundListResponse:
    check_order_visible(orders.get(order_id), actor)
    records = refunds.list_for_order(order_id)
    return RefundListResponse(
        order_id=order_id,
        refunds=[refund_response(r) for r in records],
        refunded_total=refunds.refunded_total(order_id),
    )


@router.post(
    "/orders/{order_id}/returns",
    summary="Request a return",
    description="""
Open a return request on a paid order.

**Customers only, for their own orders.** Omit product_ref to return the
whole order. The refund is issued once the request is approved.
""",
    response_model=ReturnRequestResponse,
    status_code=HTTP_201_CREATED,
    responses={
        400: {"description": "Product not on the order or quantity too large"},
        403: {"description": "Caller does not own the order"},
        404: {"description": "Order not found"},
        409: {"description": "Order not paid or not returnable"},
    },
)
async def create_return_request(
    order_id: str,
    body: CreateReturnRequest,
    actor: Actor = Depends(get_actor),
    returns: ReturnRequestService = Depends(get_return_request_service),
) -> ReturnRequestResponse:
    if actor.role != ActorRole.CUSTOMER or not actor.ref:
        raise Unauthorized(str(actor), "create_return", order_id=order_id)

    request = returns.create(
        order_id,
        actor.ref,
        body.reason,
        product_ref=body.product_ref,
        quantity=body.quantity,
        refund_method=body.refund_method,
    )
    return return_request_response(request)


@router.get(
    "/orders/{order_id}/returns",
    summary="List order return requests",
    response_model=list[ReturnRequestResponse],
    status_code=HTTP_200_OK,
)
async def list_return_requests(
    order_id: str,
    actor: Actor = Depends(get_actor),
    orders: OrderStateMachine = Depends(get_order_state_machine),
    returns: ReturnRequestService = Depends(get_return_request_service),
) -> list[ReturnRequestResponse]:
    check_order_visible(orders.get(order_id), actor)
    return [return_request_response(r) for r in returns.list_for_order(order_id)]
