"""Unit tests for the fulfillment warehouse lookup and store credit."""

from decimal import Decimal

import pytest

from commerce_core.models.errors import FulfillmentWarehouseNotFound
from commerce_core.services.dynamodb import DynamoDBService
from commerce_core.services.fulfillment import DynamoDBWarehouseLocator
from commerce_core.services.store_credit import StoreCreditLedger

from tests.conftest import CUSTOMER, OTHER_WAREHOUSE, PRODUCT, SELLER, WAREHOUSE


class TestWarehouseLocator:
    def test_seller_default(self, locator: DynamoDBWarehouseLocator) -> None:
        assert locator.fulfillment_warehouse(PRODUCT, SELLER) == WAREHOUSE

    def test_product_row_wins_over_default(self, locator: DynamoDBWarehouseLocator) -> None:
        locator.assign(SELLER, OTHER_WAREHOUSE, product_ref=PRODUCT)

        assert locator.fulfillment_warehouse(PRODUCT, SELLER) == OTHER_WAREHOUSE
        assert locator.fulfillment_warehouse("SKU-OTHER", SELLER) == WAREHOUSE

    def test_reassigning_replaces_row(self, locator: DynamoDBWarehouseLocator) -> None:
        locator.assign(SELLER, OTHER_WAREHOUSE)
        assert locator.fulfillment_warehouse(PRODUCT, SELLER) == OTHER_WAREHOUSE

    def test_unknown_seller(self, db: DynamoDBService) -> None:
        with pytest.raises(FulfillmentWarehouseNotFound) as exc_info:
            DynamoDBWarehouseLocator(db).fulfillment_warehouse(PRODUCT, "SEL-NONE")

        assert exc_info.value.details == {"product_ref": PRODUCT, "seller_ref": "SEL-NONE"}


class TestStoreCredit:
    def test_unknown_customer_has_zero_balance(self, store_credit: StoreCreditLedger) -> None:
        assert store_credit.balance(CUSTOMER) == Decimal("0.00")

    def test_credits_accumulate(self, db: DynamoDBService, store_credit: StoreCreditLedger) -> None:
        db.transact_write([store_credit.credit_op(CUSTOMER, Decimal("5.25"), "EUR")])
        db.transact_write([store_credit.credit_op(CUSTOMER, Decimal("4.75"), "EUR")])

        assert store_credit.balance(CUSTOMER) == Decimal("10.00")
