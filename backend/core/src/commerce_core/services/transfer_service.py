"""Warehouse-to-warehouse stock transfers.

Lifecycle:

    REQUESTED --approve--> APPROVED --complete--> COMPLETED
        |                      |
        +-------cancel---------+---------------> CANCELLED

Units leave the source row in the same transaction that creates the
transfer, so stock in transit is never counted twice. Completion credits the
destination and cancellation returns the units to the source; each commits
together with a conditional status flip, which makes the flip the arbiter
when complete and cancel race. Total units across warehouses plus units in
transit never change.
"""

import datetime as dt
import uuid
from typing import Any

from commerce_core.models.enums import TransferStatus
from commerce_core.models.errors import (
    AlreadyFinalized,
    InsufficientStock,
    InvalidTransfer,
    InvalidTransition,
    TransferNotFound,
)
from commerce_core.models.events import DomainEvent, DomainEventType
from commerce_core.models.transfer import StockTransfer
from commerce_core.utils.logging import get_logger, log_ledger_operation

from .dynamodb import DynamoDBService, get_dynamodb_service
from .events import DomainEventOutbox
from .repositories import TransferRepository, transfer_to_item
from .stock_ledger import StockLedger, validate_quantity
from .tables import STOCK_TRANSFERS_TABLE

logger = get_logger(__name__)

# A cancelled transaction with the transfer still open means another
# transaction touched the same rows; try again a bounded number of times.
MAX_FINALIZE_ATTEMPTS = 3

_FINAL_STATUSES = (TransferStatus.COMPLETED, TransferStatus.CANCELLED)


def _generate_transfer_id() -> str:
    year = dt.datetime.now(dt.UTC).year
    return f"TRF-{year}-{uuid.uuid4().hex[:8].upper()}"


class StockTransferManager:
    """Creates and drives stock transfers against the stock ledger."""

    def __init__(
        self,
        db: DynamoDBService | None = None,
        ledger: StockLedger | None = None,
        outbox: DomainEventOutbox | None = None,
    ) -> None:
        self.db = db or get_dynamodb_service()
        self.ledger = ledger or StockLedger(self.db)
        self.outbox = outbox or DomainEventOutbox(self.db)
        self.transfers = TransferRepository(self.db)

    # Reads

    def get(self, transfer_id: str) -> StockTransfer:
        transfer = self.transfers.get(transfer_id)
        if transfer is None:
            raise TransferNotFound(transfer_id)
        return transfer

    def list(
        self,
        from_warehouse_ref: str | None = None,
        to_warehouse_ref: str | None = None,
        product_ref: str | None = None,
        status: TransferStatus | None = None,
    ) -> list[StockTransfer]:
        """Transfers matching the given filters, newest first."""
        return self.transfers.list(
            from_warehouse_ref=from_warehouse_ref,
            to_warehouse_ref=to_warehouse_ref,
            product_ref=product_ref,
            status=status,
        )

    # Lifecycle

    def create(
        self,
        from_warehouse_ref: str,
        to_warehouse_ref: str,
        product_ref: str,
        quantity: int,
        notes: str | None = None,
        requested_by: str | None = None,
    ) -> StockTransfer:
        """Request a transfer and reserve its units at the source.

        Raises:
            InvalidQuantity: quantity is not a positive integer
            InvalidTransfer: source and destination are the same warehouse
            InsufficientStock: the source holds fewer than quantity units;
                no transfer is created
        """
        validate_quantity(quantity)
        if from_warehouse_ref == to_warehouse_ref:
            raise InvalidTransfer(from_warehouse_ref, to_warehouse_ref)

        transfer = StockTransfer(
            transfer_id=_generate_transfer_id(),
            from_warehouse_ref=from_warehouse_ref,
            to_warehouse_ref=to_warehouse_ref,
            product_ref=product_ref,
            quantity=quantity,
            status=TransferStatus.REQUESTED,
            notes=notes,
            requested_by=requested_by,
            created_at=dt.datetime.now(dt.UTC),
        )
        event = self._event(transfer, DomainEventType.TRANSFER_REQUESTED)

        success = self.db.transact_write(
            [
                self.ledger.decrement_op(product_ref, from_warehouse_ref, quantity),
                self.db.put_op(
                    STOCK_TRANSFERS_TABLE,
                    transfer_to_item(transfer),
                    condition_expression="attribute_not_exists(transfer_id)",
                ),
                self.outbox.put_op(event),
            ]
        )
        if not success:
            available = self.ledger.get_quantity(product_ref, from_warehouse_ref)
            log_ledger_operation(
                logger,
                "transfer_create",
                product_ref=product_ref,
                warehouse_ref=from_warehouse_ref,
                quantity=quantity,
                error="insufficient stock",
                available=available,
            )
            raise InsufficientStock(product_ref, from_warehouse_ref, quantity, available)

        log_ledger_operation(
            logger,
            "transfer_create",
            product_ref=product_ref,
            warehouse_ref=from_warehouse_ref,
            quantity=quantity,
            transfer_id=transfer.transfer_id,
            to_warehouse_ref=to_warehouse_ref,
        )
        self.outbox.dispatch([event])
        return transfer

    def approve(self, transfer_id: str, approved_by: str | None = None) -> StockTransfer:
        """REQUESTED -> APPROVED. No ledger effect.

        Raises:
            TransferNotFound: unknown transfer_id
            AlreadyFinalized: the transfer is COMPLETED or CANCELLED
            InvalidTransition: the transfer is already APPROVED
        """
        transfer = self.get(transfer_id)
        now = dt.datetime.now(dt.UTC)

        values: dict[str, Any] = {
            ":approved": TransferStatus.APPROVED.value,
            ":requested": TransferStatus.REQUESTED.value,
            ":now": now.isoformat(),
        }
        update_expression = "SET #status = :approved, approved_at = :now"
        if approved_by:
            update_expression += ", approved_by = :approved_by"
            values[":approved_by"] = approved_by

        attrs = self.db.update_item(
            STOCK_TRANSFERS_TABLE,
            {"transfer_id": transfer_id},
            update_expression,
            values,
            {"#status": "status"},
            condition_expression="#status = :requested",
        )
        if attrs is None:
            current = self.get(transfer_id)
            if current.status in _FINAL_STATUSES:
                raise AlreadyFinalized(transfer_id, current.status.value)
            raise InvalidTransition(current.status.value, "approve")

        logger.info("Transfer %s approved by %s", transfer_id, approved_by or "unknown")
        return transfer.model_copy(
            update={
                "status": TransferStatus.APPROVED,
                "approved_at": now,
                "approved_by": approved_by,
            }
        )

    def complete(self, transfer_id: str) -> StockTransfer:
        """APPROVED -> COMPLETED, crediting the destination warehouse.

        Raises:
            TransferNotFound: unknown transfer_id
            AlreadyFinalized: the transfer already completed or was cancelled
            InvalidTransition: the transfer has not been approved
        """
        return self._finalize(
            transfer_id,
            TransferStatus.COMPLETED,
            allowed_from=(TransferStatus.APPROVED,),
            event_type=DomainEventType.TRANSFER_COMPLETED,
            timestamp_field="completed_at",
        )

    def cancel(self, transfer_id: str) -> StockTransfer:
        """REQUESTED/APPROVED -> CANCELLED, returning units to the source.

        Raises:
            TransferNotFound: unknown transfer_id
            AlreadyFinalized: the transfer already completed or was cancelled
        """
        return self._finalize(
            transfer_id,
            TransferStatus.CANCELLED,
            allowed_from=(TransferStatus.REQUESTED, TransferStatus.APPROVED),
            event_type=DomainEventType.TRANSFER_CANCELLED,
            timestamp_field="cancelled_at",
        )

    # Internals

    def _event(self, transfer: StockTransfer, event_type: str) -> DomainEvent:
        return self.outbox.build(
            transfer.transfer_id,
            event_type,
            product_ref=transfer.product_ref,
            from_warehouse_ref=transfer.from_warehouse_ref,
            to_warehouse_ref=transfer.to_warehouse_ref,
            quantity=transfer.quantity,
        )

    def _finalize(
        self,
        transfer_id: str,
        target: TransferStatus,
        allowed_from: tuple[TransferStatus, ...],
        event_type: str,
        timestamp_field: str,
    ) -> StockTransfer:
        for _ in range(MAX_FINALIZE_ATTEMPTS):
            transfer = self.get(transfer_id)
            if transfer.status in _FINAL_STATUSES:
                logger.warning(
                    "Transfer %s already %s; %s not applied",
                    transfer_id,
                    transfer.status.value,
                    target.value,
                )
                raise AlreadyFinalized(transfer_id, transfer.status.value)
            if transfer.status not in allowed_from:
                raise InvalidTransition(transfer.status.value, target.value)

            now = dt.datetime.now(dt.UTC)
            if target == TransferStatus.COMPLETED:
                ledger_op = self.ledger.increment_op(
                    transfer.product_ref, transfer.to_warehouse_ref, transfer.quantity
                )
            else:
                ledger_op = self.ledger.increment_op(
                    transfer.product_ref, transfer.from_warehouse_ref, transfer.quantity
                )
            event = self._event(transfer, event_type)

            allowed_values = {
                f":from{i}": status.value for i, status in enumerate(allowed_from)
            }
            status_flip = self.db.update_op(
                STOCK_TRANSFERS_TABLE,
                {"transfer_id": transfer_id},
                f"SET #status = :target, {timestamp_field} = :now",
                {":target": target.value, ":now": now.isoformat(), **allowed_values},
                {"#status": "status"},
                condition_expression=f"#status IN ({', '.join(allowed_values)})",
            )

            if self.db.transact_write([status_flip, ledger_op, self.outbox.put_op(event)]):
                log_ledger_operation(
                    logger,
                    f"transfer_{target.value}",
                    product_ref=transfer.product_ref,
                    warehouse_ref=(
                        transfer.to_warehouse_ref
                        if target == TransferStatus.COMPLETED
                        else transfer.from_warehouse_ref
                    ),
                    quantity=transfer.quantity,
                    transfer_id=transfer_id,
                )
                self.outbox.dispatch([event])
                return transfer.model_copy(
                    update={"status": target, timestamp_field: now}
                )

        current = self.get(transfer_id)
        if current.status in _FINAL_STATUSES:
            raise AlreadyFinalized(transfer_id, current.status.value)
        raise InvalidTransition(current.status.value, target.value)
