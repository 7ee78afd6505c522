"""Stock transfer model."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import TransferStatus


class StockTransfer(BaseModel):
    """Movement of units of one product between two warehouses.

    Units leave the source ledger row when the transfer is requested and
    reach the destination only when it completes.
    """

    model_config = ConfigDict(strict=True)

    transfer_id: str = Field(..., description="Unique transfer ID")
    from_warehouse_ref: str
    to_warehouse_ref: str
    product_ref: str
    quantity: int = Field(..., gt=0)
    status: TransferStatus = Field(default=TransferStatus.REQUESTED)
    notes: str | None = None
    requested_by: str | None = None
    approved_by: str | None = None
    created_at: datetime
    approved_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    @property
    def is_final(self) -> bool:
        return self.status in (TransferStatus.COMPLETED, TransferStatus.CANCELLED)
