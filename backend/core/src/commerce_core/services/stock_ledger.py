"""Stock ledger: on-hand quantity per (product, warehouse).

The only way stock leaves a ledger row is a conditional update that refuses
to take the quantity below zero, so concurrent decrements serialize at the
database and never oversell. The *_op methods return the same primitives as
transaction entries, letting other components commit ledger moves together
with their own writes.
"""

import datetime as dt
from typing import Any

from boto3.dynamodb.conditions import Key

from commerce_core.models.errors import InsufficientStock, InvalidQuantity
from commerce_core.models.stock import StockLedgerEntry
from commerce_core.utils.logging import get_logger, log_ledger_operation

from .dynamodb import DynamoDBService, get_dynamodb_service
from .tables import STOCK_LEDGER_TABLE

logger = get_logger(__name__)

_NAMES = {"#quantity": "quantity"}


def validate_quantity(quantity: Any) -> int:
    """Return quantity if it is a positive integer, else raise InvalidQuantity."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantity(quantity)
    return quantity


def _key(product_ref: str, warehouse_ref: str) -> dict[str, str]:
    return {"product_ref": product_ref, "warehouse_ref": warehouse_ref}


def _item_to_entry(item: dict[str, Any]) -> StockLedgerEntry:
    return StockLedgerEntry(
        product_ref=item["product_ref"],
        warehouse_ref=item["warehouse_ref"],
        quantity=int(item.get("quantity", 0)),
    )


class StockLedger:
    """Atomic stock ledger backed by the stock-ledger table."""

    def __init__(self, db: DynamoDBService | None = None) -> None:
        self.db = db or get_dynamodb_service()

    # Reads

    def get_quantity(self, product_ref: str, warehouse_ref: str) -> int:
        """Current on-hand quantity, 0 when the row does not exist."""
        item = self.db.get_item(
            STOCK_LEDGER_TABLE, _key(product_ref, warehouse_ref), consistent_read=True
        )
        return int(item.get("quantity", 0)) if item else 0

    def list_for_product(self, product_ref: str) -> list[StockLedgerEntry]:
        """All ledger rows of a product, one per warehouse."""
        items = self.db.query(STOCK_LEDGER_TABLE, Key("product_ref").eq(product_ref))
        return [_item_to_entry(item) for item in items]

    def total_quantity(self, product_ref: str) -> int:
        """Units of a product on hand across all warehouses."""
        return sum(entry.quantity for entry in self.list_for_product(product_ref))

    # Single-row mutations

    def increment(self, product_ref: str, warehouse_ref: str, quantity: int) -> int:
        """Add units to a ledger row, creating it if needed.

        Returns:
            The new quantity
        """
        validate_quantity(quantity)
        attrs = self.db.update_item(
            STOCK_LEDGER_TABLE,
            _key(product_ref, warehouse_ref),
            "SET updated_at = :now ADD #quantity :qty",
            {":qty": quantity, ":now": dt.datetime.now(dt.UTC).isoformat()},
            _NAMES,
        )
        new_quantity = int(attrs["quantity"]) if attrs else quantity
        log_ledger_operation(
            logger,
            "increment",
            product_ref=product_ref,
            warehouse_ref=warehouse_ref,
            quantity=quantity,
            balance=new_quantity,
        )
        return new_quantity

    def decrement(self, product_ref: str, warehouse_ref: str, quantity: int) -> int:
        """Take units from a ledger row.

        Returns:
            The new quantity

        Raises:
            InsufficientStock: The row holds fewer than quantity units.
                Nothing is written.
        """
        validate_quantity(quantity)
        attrs = self.db.update_item(
            STOCK_LEDGER_TABLE,
            _key(product_ref, warehouse_ref),
            "SET #quantity = #quantity - :qty, updated_at = :now",
            {":qty": quantity, ":now": dt.datetime.now(dt.UTC).isoformat()},
            _NAMES,
            condition_expression="#quantity >= :qty",
        )
        if attrs is None:
            available = self.get_quantity(product_ref, warehouse_ref)
            log_ledger_operation(
                logger,
                "decrement",
                product_ref=product_ref,
                warehouse_ref=warehouse_ref,
                quantity=quantity,
                error="insufficient stock",
                available=available,
            )
            raise InsufficientStock(product_ref, warehouse_ref, quantity, available)

        new_quantity = int(attrs["quantity"])
        log_ledger_operation(
            logger,
            "decrement",
            product_ref=product_ref,
            warehouse_ref=warehouse_ref,
            quantity=quantity,
            balance=new_quantity,
        )
        return new_quantity

    def set_quantity(self, product_ref: str, warehouse_ref: str, quantity: int) -> None:
        """Overwrite a row after a physical stock count or receiving."""
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise InvalidQuantity(quantity)
        self.db.put_item(
            STOCK_LEDGER_TABLE,
            {
                **_key(product_ref, warehouse_ref),
                "quantity": quantity,
                "updated_at": dt.datetime.now(dt.UTC).isoformat(),
            },
        )
        log_ledger_operation(
            logger,
            "set_quantity",
            product_ref=product_ref,
            warehouse_ref=warehouse_ref,
            quantity=quantity,
        )

    # Transaction entries

    def increment_op(
        self, product_ref: str, warehouse_ref: str, quantity: int
    ) -> dict[str, Any]:
        """Transaction entry adding units to a row (creating it if needed)."""
        validate_quantity(quantity)
        return self.db.update_op(
            STOCK_LEDGER_TABLE,
            _key(product_ref, warehouse_ref),
            "SET updated_at = :now ADD #quantity :qty",
            {":qty": quantity, ":now": dt.datetime.now(dt.UTC).isoformat()},
            _NAMES,
        )

    def decrement_op(
        self, product_ref: str, warehouse_ref: str, quantity: int
    ) -> dict[str, Any]:
        """Transaction entry taking units from a row.

        The entry's condition cancels the whole transaction if the row holds
        fewer than quantity units (or does not exist).
        """
        validate_quantity(quantity)
        return self.db.update_op(
            STOCK_LEDGER_TABLE,
            _key(product_ref, warehouse_ref),
            "SET #quantity = #quantity - :qty, updated_at = :now",
            {":qty": quantity, ":now": dt.datetime.now(dt.UTC).isoformat()},
            _NAMES,
            condition_expression="#quantity >= :qty",
        )
