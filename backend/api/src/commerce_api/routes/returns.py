"""Return request endpoints.

Approving, rejecting and receiving returns is done by an admin or by the
seller of the order. Refunding an approved return goes through the refund
orchestrator, which closes the request in the same transaction.
"""

from fastapi import APIRouter, Depends
from starlette.status import HTTP_200_OK, HTTP_201_CREATED

from commerce_api.dependencies import (
    get_actor,
    get_order_state_machine,
    get_return_request_service,
)
from commerce_api.models.orders import (
    RefundResponse,
    RejectReturnRequest,
    ReturnRequestResponse,
)
from commerce_api.routes.orders import (
    check_order_visible,
    refund_response,
    return_request_response,
)
from commerce_core.models.actor import Actor
from commerce_core.models.enums import ActorRole
from commerce_core.models.errors import Unauthorized
from commerce_core.models.return_request import ReturnRequest
from commerce_core.services.order_state_machine import OrderStateMachine
from commerce_core.services.return_requests import ReturnRequestService

router = APIRouter(tags=["returns"])


def _check_can_review(
    request: ReturnRequest, actor: Actor, orders: OrderStateMachine, action: str
) -> None:
    if actor.role in (ActorRole.SYSTEM, ActorRole.ADMIN):
        return
    if actor.role == ActorRole.SELLER:
        order = orders.get(request.order_id)
        if actor.ref == order.seller_ref:
            return
    raise Unauthorized(str(actor), action, return_request_id=request.return_request_id)


@router.get(
    "/returns/{return_request_id}",
    summary="Get return request",
    response_model=ReturnRequestResponse,
    status_code=HTTP_200_OK,
    responses={404: {"description": "Return request not found"}},
)
async def get_return_request(
    return_request_id: str,
    actor: Actor = Depends(get_actor),
    orders: OrderStateMachine = Depends(get_order_state_machine),
    returns: ReturnRequestService = Depends(get_return_request_service),
) -> ReturnRequestResponse:
    request = returns.get(return_request_id)
    check_order_visible(orders.get(request.order_id), actor)
    return return_request_response(request)


@router.post(
    "/returns/{return_request_id}/approve",
    summary="Approve return request",
    description="PENDING -> APPROVED. Fixes the amount that will be refunded.",
    response_model=ReturnRequestResponse,
    status_code=HTTP_200_OK,
    responses={
        403: {"description": "Caller may not review this return"},
        404: {"description": "Return request not found"},
        409: {"description": "Return request is not PENDING"},
    },
)
async def approve_return_request(
    return_request_id: str,
    actor: Actor = Depends(get_actor),
    orders: OrderStateMachine = Depends(get_order_state_machine),
    returns: ReturnRequestService = Depends(get_return_request_service),
) -> ReturnRequestResponse:
    request = returns.get(return_request_id)
    _check_can_review(request, actor, orders, "approve_return")
    return return_request_response(returns.approve(return_request_id, str(actor)))


@router.post(
    "/returns/{return_request_id}/reject",
    summary="Reject return request",
    response_model=ReturnRequestResponse,
    status_code=HTTP_200_OK,
    responses={
        403: {"description": "Caller may not review this return"},
        409: {"description": "Return request is not PENDING"},
    },
)
async def reject_return_request(
    return_request_id: str,
    body: RejectReturnRequest,
    actor: Actor = Depends(get_actor),
    orders: OrderStateMachine = Depends(get_order_state_machine),
    returns: ReturnRequestService = Depends(get_return_request_service),
) -> ReturnRequestResponse:
    request = returns.get(return_request_id)
    _check_can_review(request, actor, orders, "reject_return")
    return return_request_response(
        returns.reject(return_request_id, body.reason, str(actor))
    )


@router.post(
    "/returns/{return_request_id}/receive",
    summary="Mark returned goods received",
    response_model=ReturnRequestResponse,
    status_code=HTTP_200_OK,
    responses={
        403: {"description": "Caller may not review this return"},
        409: {"description": "Return request is not APPROVED"},
    },
)
async def receive_return_request(
    return_request_id: str,
    actor: Actor = Depends(get_actor),
    orders: OrderStateMachine = Depends(get_order_state_machine),
    returns: ReturnRequestService = Depends(get_return_request_service),
) -> ReturnRequestResponse:
    request = returns.get(return_request_id)
    _check_can_review(request, actor, orders, "receive_return")
    return return_request_response(returns.mark_received(return_request_id))


@router.post(
    "/returns/{return_request_id}/refund",
    summary="Refund return request",
    description="""
Issue the refund for an APPROVED or RECEIVED return request.

On success the request moves to REFUNDED together with the refund.
A refund the provider declines is returned with status "failed" and the
request stays open for another attempt.
""",
    response_model=RefundResponse,
    status_code=HTTP_201_CREATED,
    responses={
        403: {"description": "Caller may not refund this order"},
        409: {"description": "Return request not approved or amount exceeds refundable"},
    },
)
async def refund_return_request(
    return_request_id: str,
    actor: Actor = Depends(get_actor),
    returns: ReturnRequestService = Depends(get_return_request_service),
) -> RefundResponse:
    return refund_response(returns.refund(return_request_id, actor))
