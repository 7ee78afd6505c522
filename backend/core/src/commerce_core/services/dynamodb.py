"""DynamoDB access for the commerce tables.

Single-item reads and conditional writes go through the resource API.
Multi-record units of work are assembled from put_op/update_op entries and
committed by transact_write, which applies all of them or none.
"""

import os
from typing import Any

import boto3
from boto3.dynamodb.conditions import Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from commerce_core.utils.logging import get_logger

logger = get_logger(__name__)

# Module-level singleton for connection reuse
_dynamodb_service_instance: "DynamoDBService | None" = None

_serializer = TypeSerializer()

CONDITION_FAILED = "ConditionalCheckFailedException"
TRANSACTION_CANCELED = "TransactionCanceledException"


def get_dynamodb_service(environment: str | None = None) -> "DynamoDBService":
    """Get or create the shared DynamoDBService.

    Args:
        environment: Environment name. Only used on first call.
    """
    global _dynamodb_service_instance
    if _dynamodb_service_instance is None:
        _dynamodb_service_instance = DynamoDBService(environment)
    return _dynamodb_service_instance


def reset_dynamodb_service() -> None:
    """Drop the shared instance so the next call builds a fresh one (tests)."""
    global _dynamodb_service_instance
    _dynamodb_service_instance = None


def serialize(values: dict[str, Any]) -> dict[str, Any]:
    """Convert plain Python values to DynamoDB typed attribute values."""
    return {k: _serializer.serialize(v) for k, v in values.items()}


def compact(item: dict[str, Any]) -> dict[str, Any]:
    """Drop None attributes. Index key attributes must be absent, not NULL."""
    return {k: v for k, v in item.items() if v is not None}


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class DynamoDBService:
    """Table access with environment-aware names ({prefix}-{table})."""

    def __init__(self, environment: str | None = None) -> None:
        """Initialize DynamoDB service.

        Args:
            environment: Environment name (dev/prod). Defaults to ENVIRONMENT env var.
        """
        self.environment = environment or os.getenv("ENVIRONMENT", "dev")
        # DYNAMODB_TABLE_PREFIX overrides the environment-derived prefix
        self.name_prefix = os.getenv("DYNAMODB_TABLE_PREFIX", f"commerce-{self.environment}")
        self._dynamodb = boto3.resource("dynamodb")
        self._client = boto3.client("dynamodb")

    def table_name(self, table: str) -> str:
        return f"{self.name_prefix}-{table}"

    def _table(self, table: str) -> Any:
        return self._dynamodb.Table(self.table_name(table))

    # Single-item operations

    def get_item(
        self,
        table: str,
        key: dict[str, Any],
        consistent_read: bool = False,
    ) -> dict[str, Any] | None:
        """Item by primary key, or None.

        Ledger and state checks that decide a write pass consistent_read=True.
        """
        response = self._table(table).get_item(Key=key, ConsistentRead=consistent_read)
        item: dict[str, Any] | None = response.get("Item")
        return item

    def put_item(
        self,
        table: str,
        item: dict[str, Any],
        condition_expression: str | None = None,
    ) -> bool:
        """Write an item. Returns False when condition_expression failed."""
        kwargs: dict[str, Any] = {"Item": compact(item)}
        if condition_expression:
            kwargs["ConditionExpression"] = condition_expression
        try:
            self._table(table).put_item(**kwargs)
        except ClientError as e:
            if _error_code(e) == CONDITION_FAILED:
                return False
            raise
        return True

    def update_item(
        self,
        table: str,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_values: dict[str, Any],
        expression_attribute_names: dict[str, str] | None = None,
        condition_expression: str | None = None,
    ) -> dict[str, Any] | None:
        """Apply an update expression.

        Args:
            table: Table name without prefix
            key: Primary key dict
            update_expression: DynamoDB update expression
            expression_attribute_values: Values for expression
            expression_attribute_names: Names for expression (for reserved words)
            condition_expression: Guard evaluated atomically with the update

        Returns:
            The item after the update, or None if the condition failed
        """
        kwargs: dict[str, Any] = {
            "Key": key,
            "UpdateExpression": update_expression,
            "ExpressionAttributeValues": expression_attribute_values,
            "ReturnValues": "ALL_NEW",
        }
        if expression_attribute_names:
            kwargs["ExpressionAttributeNames"] = expression_attribute_names
        if condition_expression:
            kwargs["ConditionExpression"] = condition_expression
        try:
            response = self._table(table).update_item(**kwargs)
        except ClientError as e:
            if _error_code(e) == CONDITION_FAILED:
                return None
            raise
        attrs: dict[str, Any] | None = response.get("Attributes")
        return attrs

    # Multi-item reads

    def query(
        self,
        table: str,
        key_condition: Any,
        index_name: str | None = None,
        filter_expression: Any | None = None,
        limit: int | None = None,
        scan_index_forward: bool = True,
    ) -> list[dict[str, Any]]:
        """Query a table or GSI.

        Without a limit every page is read; with one, only the first page.
        """
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": key_condition,
            "ScanIndexForward": scan_index_forward,
        }
        if index_name:
            kwargs["IndexName"] = index_name
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression
        if limit:
            kwargs["Limit"] = limit
            return list(self._table(table).query(**kwargs).get("Items", []))

        return self._paginate(self._table(table).query, kwargs)

    def query_by_gsi(
        self,
        table: str,
        index_name: str,
        partition_key_name: str,
        partition_key_value: str,
        sort_key_condition: Any | None = None,
    ) -> list[dict[str, Any]]:
        """All items of a GSI partition, optionally narrowed by sort key."""
        key_condition = Key(partition_key_name).eq(partition_key_value)
        if sort_key_condition is not None:
            key_condition = key_condition & sort_key_condition
        return self.query(table, key_condition, index_name=index_name)

    def scan(
        self,
        table: str,
        filter_expression: Any | None = None,
    ) -> list[dict[str, Any]]:
        """Every item of a table, optionally filtered by a boto3 Attr condition."""
        kwargs: dict[str, Any] = {}
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression
        return self._paginate(self._table(table).scan, kwargs)

    @staticmethod
    def _paginate(operation: Any, kwargs: dict[str, Any]) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        while True:
            response = operation(**kwargs)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    # Transactions

    def transact_write(self, items: list[dict[str, Any]]) -> bool:
        """Commit put_op/update_op entries atomically.

        Returns:
            True if every entry applied, False if the transaction was
            cancelled (a condition failed or a conflicting transaction won)
        """
        try:
            self._client.transact_write_items(TransactItems=items)  # type: ignore[arg-type]
        except ClientError as e:
            if _error_code(e) != TRANSACTION_CANCELED:
                raise
            reasons = [
                reason.get("Code", "None")
                for reason in e.response.get("CancellationReasons", [])
            ]
            logger.debug("Transaction of %d items cancelled: %s", len(items), reasons)
            return False
        return True

    def put_op(
        self,
        table: str,
        item: dict[str, Any],
        condition_expression: str | None = None,
    ) -> dict[str, Any]:
        """Put entry for transact_write."""
        put: dict[str, Any] = {
            "TableName": self.table_name(table),
            "Item": serialize(compact(item)),
        }
        if condition_expression:
            put["ConditionExpression"] = condition_expression
        return {"Put": put}

    def update_op(
        self,
        table: str,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_values: dict[str, Any],
        expression_attribute_names: dict[str, str] | None = None,
        condition_expression: str | None = None,
    ) -> dict[str, Any]:
        """Update entry for transact_write."""
        update: dict[str, Any] = {
            "TableName": self.table_name(table),
            "Key": serialize(key),
            "UpdateExpression": update_expression,
            "ExpressionAttributeValues": serialize(expression_attribute_values),
        }
        if expression_attribute_names:
            update["ExpressionAttributeNames"] = expression_attribute_names
        if condition_expression:
            update["ConditionExpression"] = condition_expression
        return {"Update": update}
