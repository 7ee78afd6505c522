"""Fulfillment warehouse lookup.

Rows of the fulfillment-warehouses table map (seller_ref, product_ref) to
the warehouse that ships that product. A row with product_ref "*" is the
seller's default warehouse.
"""

import datetime as dt
from typing import Protocol

from commerce_core.models.errors import FulfillmentWarehouseNotFound

from .dynamodb import DynamoDBService, get_dynamodb_service
from .tables import FULFILLMENT_WAREHOUSES_TABLE

DEFAULT_PRODUCT = "*"


class WarehouseLocator(Protocol):
    """Resolves the warehouse an order line is fulfilled from."""

    def fulfillment_warehouse(self, product_ref: str, seller_ref: str) -> str: ...


class DynamoDBWarehouseLocator:
    """WarehouseLocator backed by the fulfillment-warehouses table."""

    def __init__(self, db: DynamoDBService | None = None) -> None:
        self.db = db or get_dynamodb_service()

    def fulfillment_warehouse(self, product_ref: str, seller_ref: str) -> str:
        """Warehouse for a product, falling back to the seller default.

        Raises:
            FulfillmentWarehouseNotFound: Neither row exists.
        """
        for candidate in (product_ref, DEFAULT_PRODUCT):
            item = self.db.get_item(
                FULFILLMENT_WAREHOUSES_TABLE,
                {"seller_ref": seller_ref, "product_ref": candidate},
            )
            if item:
                return str(item["warehouse_ref"])
        raise FulfillmentWarehouseNotFound(product_ref, seller_ref)

    def assign(
        self, seller_ref: str, warehouse_ref: str, product_ref: str = DEFAULT_PRODUCT
    ) -> None:
        """Set the warehouse for a product, or the seller default."""
        self.db.put_item(
            FULFILLMENT_WAREHOUSES_TABLE,
            {
                "seller_ref": seller_ref,
                "product_ref": product_ref,
                "warehouse_ref": warehouse_ref,
                "updated_at": dt.datetime.now(dt.UTC).isoformat(),
            },
        )
