#!/usr/bin/env python3
"""Provision the commerce DynamoDB tables.

Creates every table in TABLE_DEFINITIONS with on-demand billing, named
{prefix}-{table} where prefix defaults to commerce-{env}. Tables that
already exist are left untouched.

Usage:
    python scripts/create_tables.py --env dev
    python scripts/create_tables.py --env dev --prefix commerce-local \\
        --endpoint-url http://localhost:8000
"""

import argparse
import os
import sys

import boto3
from botocore.exceptions import ClientError

from commerce_core.services.tables import TABLE_DEFINITIONS


def create_missing_tables(client, prefix: str) -> int:
    """Create tables that do not exist yet. Returns how many were created."""
    existing = set(client.list_tables().get("TableNames", []))
    created = 0
    for table, definition in TABLE_DEFINITIONS.items():
        name = f"{prefix}-{table}"
        if name in existing:
            print(f"  = {name} (exists)")
            continue
        try:
            client.create_table(TableName=name, BillingMode="PAY_PER_REQUEST", **definition)
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceInUseException":
                raise
            print(f"  = {name} (created concurrently)")
            continue
        client.get_waiter("table_exists").wait(TableName=name)
        print(f"  + {name}")
        created += 1
    return created


def main() -> int:
    """Run the provisioning script."""
    parser = argparse.ArgumentParser(description="Create the commerce DynamoDB tables")
    parser.add_argument(
        "--env",
        choices=["dev", "staging", "prod"],
        default="dev",
        help="Target environment (default: dev)",
    )
    parser.add_argument(
        "--region",
        default=os.environ.get("AWS_DEFAULT_REGION", "eu-west-1"),
        help="AWS region (default: eu-west-1 or AWS_DEFAULT_REGION env var)",
    )
    parser.add_argument(
        "--prefix",
        default=None,
        help="Table name prefix (default: DYNAMODB_TABLE_PREFIX or commerce-{env})",
    )
    parser.add_argument(
        "--endpoint-url",
        default=None,
        help="DynamoDB endpoint, e.g. http://localhost:8000 for DynamoDB Local",
    )
    args = parser.parse_args()

    prefix = args.prefix or os.environ.get("DYNAMODB_TABLE_PREFIX") or f"commerce-{args.env}"
    client = boto3.client("dynamodb", region_name=args.region, endpoint_url=args.endpoint_url)

    print(f"Creating tables with prefix {prefix} (region: {args.region})")
    created = create_missing_tables(client, prefix)
    print(f"Done: {created} table(s) created")
    return 0


if __name__ == "__main__":
    sys.exit(main())
