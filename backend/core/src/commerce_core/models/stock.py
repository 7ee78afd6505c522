"""Stock ledger models."""

from pydantic import BaseModel, ConfigDict, Field


class StockLedgerEntry(BaseModel):
    """On-hand quantity of a product in one warehouse."""

    model_config = ConfigDict(strict=True)

    product_ref: str
    warehouse_ref: str
    quantity: int = Field(..., ge=0)
