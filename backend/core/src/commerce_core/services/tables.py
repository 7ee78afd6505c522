"""DynamoDB table definitions.

Table names are given without the environment prefix; DynamoDBService and
create_tables() add it.
"""

from typing import Any

ORDERS_TABLE = "orders"
STOCK_LEDGER_TABLE = "stock-ledger"
STOCK_TRANSFERS_TABLE = "stock-transfers"
WEBHOOK_EVENTS_TABLE = "payment-webhook-events"
REFUNDS_TABLE = "refunds"
RETURN_REQUESTS_TABLE = "return-requests"
FULFILLMENT_WAREHOUSES_TABLE = "fulfillment-warehouses"
STORE_CREDIT_TABLE = "store-credit"
DOMAIN_EVENTS_TABLE = "domain-events"

PAYMENT_INTENT_INDEX = "payment_intent_ref-index"
ORDER_ID_INDEX = "order_id-index"


def _hash_key(name: str) -> list[dict[str, str]]:
    return [{"AttributeName": name, "KeyType": "HASH"}]


def _order_id_gsi() -> dict[str, Any]:
    return {
        "IndexName": ORDER_ID_INDEX,
        "KeySchema": _hash_key("order_id"),
        "Projection": {"ProjectionType": "ALL"},
    }


TABLE_DEFINITIONS: dict[str, dict[str, Any]] = {
    ORDERS_TABLE: {
        "KeySchema": _hash_key("order_id"),
        "AttributeDefinitions": [
            {"AttributeName": "order_id", "AttributeType": "S"},
            {"AttributeName": "payment_intent_ref", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": PAYMENT_INTENT_INDEX,
                "KeySchema": _hash_key("payment_intent_ref"),
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
    },
    STOCK_LEDGER_TABLE: {
        "KeySchema": [
            {"AttributeName": "product_ref", "KeyType": "HASH"},
            {"AttributeName": "warehouse_ref", "KeyType": "RANGE"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "product_ref", "AttributeType": "S"},
            {"AttributeName": "warehouse_ref", "AttributeType": "S"},
        ],
    },
    STOCK_TRANSFERS_TABLE: {
        "KeySchema": _hash_key("transfer_id"),
        "AttributeDefinitions": [
            {"AttributeName": "transfer_id", "AttributeType": "S"},
        ],
    },
    WEBHOOK_EVENTS_TABLE: {
        "KeySchema": _hash_key("external_event_id"),
        "AttributeDefinitions": [
            {"AttributeName": "external_event_id", "AttributeType": "S"},
        ],
    },
    REFUNDS_TABLE: {
        "KeySchema": _hash_key("refund_id"),
        "AttributeDefinitions": [
            {"AttributeName": "refund_id", "AttributeType": "S"},
            {"AttributeName": "order_id", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [_order_id_gsi()],
    },
    RETURN_REQUESTS_TABLE: {
        "KeySchema": _hash_key("return_request_id"),
        "AttributeDefinitions": [
            {"AttributeName": "return_request_id", "AttributeType": "S"},
            {"AttributeName": "order_id", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [_order_id_gsi()],
    },
    FULFILLMENT_WAREHOUSES_TABLE: {
        "KeySchema": [
            {"AttributeName": "seller_ref", "KeyType": "HASH"},
            {"AttributeName": "product_ref", "KeyType": "RANGE"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "seller_ref", "AttributeType": "S"},
            {"AttributeName": "product_ref", "AttributeType": "S"},
        ],
    },
    STORE_CREDIT_TABLE: {
        "KeySchema": _hash_key("customer_ref"),
        "AttributeDefinitions": [
            {"AttributeName": "customer_ref", "AttributeType": "S"},
        ],
    },
    DOMAIN_EVENTS_TABLE: {
        "KeySchema": _hash_key("event_id"),
        "AttributeDefinitions": [
            {"AttributeName": "event_id", "AttributeType": "S"},
        ],
    },
}


def create_tables(client: Any, name_prefix: str) -> list[str]:
    """Create every table with on-demand billing.

    Args:
        client: boto3 DynamoDB client
        name_prefix: Prefix such as "commerce-dev"

    Returns:
        Full names of the tables created
    """
    created = []
    for table, definition in TABLE_DEFINITIONS.items():
        name = f"{name_prefix}-{table}"
        client.create_table(
            TableName=name,
            BillingMode="PAY_PER_REQUEST",
            **definition,
        )
        created.append(name)
    return created
