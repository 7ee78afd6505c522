"""Customer store-credit balances."""

import datetime as dt
from decimal import Decimal
from typing import Any

from .dynamodb import DynamoDBService, get_dynamodb_service
from .tables import STORE_CREDIT_TABLE


class StoreCreditLedger:
    """Store credit per customer, credited by store_credit refunds."""

    def __init__(self, db: DynamoDBService | None = None) -> None:
        self.db = db or get_dynamodb_service()

    def balance(self, customer_ref: str) -> Decimal:
        item = self.db.get_item(
            STORE_CREDIT_TABLE, {"customer_ref": customer_ref}, consistent_read=True
        )
        return Decimal(item["balance"]) if item else Decimal("0.00")

    def credit_op(self, customer_ref: str, amount: Decimal, currency: str) -> dict[str, Any]:
        """Transaction entry adding amount to the customer's balance."""
        return self.db.update_op(
            STORE_CREDIT_TABLE,
            {"customer_ref": customer_ref},
            "SET #currency = :currency, updated_at = :now ADD #balance :amount",
            {
                ":amount": amount,
                ":currency": currency,
                ":now": dt.datetime.now(dt.UTC).isoformat(),
            },
            {"#balance": "balance", "#currency": "currency"},
        )
