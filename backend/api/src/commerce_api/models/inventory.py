"""API models for stock and transfer endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from commerce_core.models.enums import TransferStatus


class StockLevelResponse(BaseModel):
    product_ref: str
    warehouse_ref: str
    quantity: int


class ProductStockResponse(BaseModel):
    """Stock of one product across every warehouse holding it."""

    product_ref: str
    total_quantity: int
    warehouses: list[StockLevelResponse]


class SetStockRequest(BaseModel):
    quantity: int = Field(..., ge=0, description="Absolute on-hand quantity")


class CreateTransferRequest(BaseModel):
    """Request to move stock between two warehouses."""

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "from_warehouse_ref": "WH-NORTH",
                    "to_warehouse_ref": "WH-SOUTH",
                    "product_ref": "SKU-1",
                    "quantity": 10,
                }
            ]
        }
    )

    from_warehouse_ref: str = Field(..., min_length=1)
    to_warehouse_ref: str = Field(..., min_length=1)
    product_ref: str = Field(..., min_length=1)
    quantity: int = Field(..., description="Units to move; must be positive")
    notes: str | None = Field(default=None, max_length=500)


class TransferResponse(BaseModel):
    transfer_id: str
    from_warehouse_ref: str
    to_warehouse_ref: str
    product_ref: str
    quantity: int
    status: TransferStatus
    notes: str | None = None
    requested_by: str | None = None
    approved_by: str | None = None
    created_at: datetime
    approved_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    already_finalized: bool = Field(
        default=False,
        description="True when the transfer had already reached this final status",
    )


class TransferListResponse(BaseModel):
    transfers: list[TransferResponse]
    count: int
