"""Inventory endpoints: stock levels and warehouse transfers.

Transfers are operated by warehouse staff through admin tooling, so every
write here requires the admin (or system) role. Replaying the call that
finalized a transfer returns the transfer with already_finalized set
instead of an error.
"""

from fastapi import APIRouter, Depends, Query
from starlette.status import HTTP_200_OK, HTTP_201_CREATED

from commerce_api.dependencies import get_actor, get_stock_ledger, get_transfer_manager
from commerce_api.models.inventory import (
    CreateTransferRequest,
    ProductStockResponse,
    SetStockRequest,
    StockLevelResponse,
    TransferListResponse,
    TransferResponse,
)
from commerce_core.models.actor import Actor
from commerce_core.models.enums import ActorRole, TransferStatus
from commerce_core.models.errors import AlreadyFinalized, Unauthorized
from commerce_core.models.transfer import StockTransfer
from commerce_core.services.stock_ledger import StockLedger
from commerce_core.services.transfer_service import StockTransferManager

router = APIRouter(prefix="/inventory", tags=["inventory"])


def _require_operator(actor: Actor, action: str) -> None:
    if actor.role not in (ActorRole.SYSTEM, ActorRole.ADMIN):
        raise Unauthorized(str(actor), action)


def transfer_response(transfer: StockTransfer, already_finalized: bool = False) -> TransferResponse:
    return TransferResponse.model_validate(
        {**transfer.model_dump(), "already_finalized": already_finalized}
    )


@router.get(
    "/stock/{product_ref}",
    summary="Get product stock",
    description="On-hand quantity of a product in every warehouse that holds it.",
    response_model=ProductStockResponse,
    status_code=HTTP_200_OK,
)
async def get_product_stock(
    product_ref: str,
    ledger: StockLedger = Depends(get_stock_ledger),
) -> ProductStockResponse:
    entries = ledger.list_for_product(product_ref)
    return ProductStockResponse(
        product_ref=product_ref,
        total_quantity=sum(e.quantity for e in entries),
        warehouses=[StockLevelResponse.model_validate(e.model_dump()) for e in entries],
    )


@router.put(
    "/stock/{product_ref}/{warehouse_ref}",
    summary="Set stock level",
    description="Record a stock count or receiving. **Admin only.**",
    response_model=StockLevelResponse,
    status_code=HTTP_200_OK,
    responses={403: {"description": "Caller is not an admin"}},
)
async def set_stock_level(
    product_ref: str,
    warehouse_ref: str,
    body: SetStockRequest,
    actor: Actor = Depends(get_actor),
    ledger: StockLedger = Depends(get_stock_ledger),
) -> StockLevelResponse:
    _require_operator(actor, "set_stock")
    ledger.set_quantity(product_ref, warehouse_ref, body.quantity)
    return StockLevelResponse(
        product_ref=product_ref,
        warehouse_ref=warehouse_ref,
        quantity=ledger.get_quantity(product_ref, warehouse_ref),
    )


@router.post(
    "/transfers",
    summary="Request stock transfer",
    description="""
Request a transfer of units between two warehouses.

The units leave the source warehouse immediately and reach the destination
when the transfer completes. Cancelling returns them to the source.
""",
    response_model=TransferResponse,
    status_code=HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid quantity or same source and destination"},
        403: {"description": "Caller is not an admin"},
        409: {"description": "Not enough stock at the source warehouse"},
    },
)
async def create_transfer(
    body: CreateTransferRequest,
    actor: Actor = Depends(get_actor),
    transfers: StockTransferManager = Depends(get_transfer_manager),
) -> TransferResponse:
    _require_operator(actor, "create_transfer")
    transfer = transfers.create(
        body.from_warehouse_ref,
        body.to_warehouse_ref,
        body.product_ref,
        body.quantity,
        notes=body.notes,
        requested_by=str(actor),
    )
    return transfer_response(transfer)


@router.get(
    "/transfers",
    summary="List stock transfers",
    response_model=TransferListResponse,
    status_code=HTTP_200_OK,
)
async def list_transfers(
    from_warehouse_ref: str | None = Query(default=None),
    to_warehouse_ref: str | None = Query(default=None),
    product_ref: str | None = Query(default=None),
    status: TransferStatus | None = Query(default=None),
    transfers: StockTransferManager = Depends(get_transfer_manager),
) -> TransferListResponse:
    records = transfers.list(
        from_warehouse_ref=from_warehouse_ref,
        to_warehouse_ref=to_warehouse_ref,
        product_ref=product_ref,
        status=status,
    )
    return TransferListResponse(
        transfers=[transfer_response(t) for t in records], count=len(records)
    )


@router.get(
    "/transfers/{transfer_id}",
    summary="Get stock transfer",
    response_model=TransferResponse,
    status_code=HTTP_200_OK,
    responses={404: {"description": "Transfer not found"}},
)
async def get_transfer(
    transfer_id: str,
    transfers: StockTransferManager = Depends(get_transfer_manager),
) -> TransferResponse:
    return transfer_response(transfers.get(transfer_id))


@router.post(
    "/transfers/{transfer_id}/approve",
    summary="Approve stock transfer",
    response_model=TransferResponse,
    status_code=HTTP_200_OK,
    responses={
        403: {"description": "Caller is not an admin"},
        404: {"description": "Transfer not found"},
        409: {"description": "Transfer is no longer REQUESTED"},
    },
)
async def approve_transfer(
    transfer_id: str,
    actor: Actor = Depends(get_actor),
    transfers: StockTransferManager = Depends(get_transfer_manager),
) -> TransferResponse:
    _require_operator(actor, "approve_transfer")
    return transfer_response(transfers.approve(transfer_id, approved_by=str(actor)))


@router.post(
    "/transfers/{transfer_id}/complete",
    summary="Complete stock transfer",
    description="""
Credit the destination warehouse and close the transfer.

Completing a transfer that is already COMPLETED returns 200 with
already_finalized set. Completing a CANCELLED transfer is a 409.
""",
    response_model=TransferResponse,
    status_code=HTTP_200_OK,
    responses={
        403: {"description": "Caller is not an admin"},
        404: {"description": "Transfer not found"},
        409: {"description": "Transfer not APPROVED, or already cancelled"},
    },
)
async def complete_transfer(
    transfer_id: str,
    actor: Actor = Depends(get_actor),
    transfers: StockTransferManager = Depends(get_transfer_manager),
) -> TransferResponse:
    _require_operator(actor, "complete_transfer")
    try:
        transfer = transfers.complete(transfer_id)
    except AlreadyFinalized as e:
        if e.final_status != TransferStatus.COMPLETED.value:
            raise
        return transfer_response(transfers.get(transfer_id), already_finalized=True)
    return transfer_response(transfer)


@router.post(
    "/transfers/{transfer_id}/cancel",
    summary="Cancel stock transfer",
    description="""
Return the reserved units to the source warehouse and close the transfer.

Cancelling a transfer that is already CANCELLED returns 200 with
already_finalized set. Cancelling a COMPLETED transfer is a 409.
""",
    response_model=TransferResponse,
    status_code=HTTP_200_OK,
    responses={
        403: {"description": "Caller is not an admin"},
        404: {"description": "Transfer not found"},
        409: {"description": "Transfer already completed"},
    },
)
async def cancel_transfer(
    transfer_id: str,
    actor: Actor = Depends(get_actor),
    transfers: StockTransferManager = Depends(get_transfer_manager),
) -> TransferResponse:
    _require_operator(actor, "cancel_transfer")
    try:
        transfer = transfers.cancel(transfer_id)
    except AlreadyFinalized as e:
        if e.final_status != TransferStatus.CANCELLED.value:
            raise
        return transfer_response(transfers.get(transfer_id), already_finalized=True)
    return transfer_response(transfer)
