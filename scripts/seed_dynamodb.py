"""Create the StepFlow DynamoDB tables and seed demo users.

Usage:
    python scripts/seed_dynamodb.py --endpoint-url http://localhost:4566
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any

import boto3

from stepflow.persistence.dynamodb_backend import (
    DOCUMENT_SETS_TABLE,
    DOCUMENTS_TABLE,
    JOB_STEPS_INDEX,
    JOBS_TABLE,
    REVIEWS_TABLE,
    SET_DOCUMENTS_INDEX,
    STEP_UPLOADS_INDEX,
    STEPS_TABLE,
    UPLOAD_REVIEWS_INDEX,
    UPLOADS_TABLE,
    USERS_TABLE,
    DynamoDBEntityStore,
)
from stepflow.workflow.users import UserDirectory, read_seed_users

DEFAULT_SEED_PATH = Path(__file__).resolve().parent.parent / "config" / "seed_users.json"

TABLE_DEFINITIONS: list[dict[str, Any]] = [
    {"name": USERS_TABLE},
    {"name": JOBS_TABLE},
    {"name": STEPS_TABLE, "index": (JOB_STEPS_INDEX, "job_id", "order", "N")},
    {"name": UPLOADS_TABLE, "index": (STEP_UPLOADS_INDEX, "step_id", "sequence", "N")},
    {"name": REVIEWS_TABLE, "index": (UPLOAD_REVIEWS_INDEX, "upload_id", "reviewed_at", "S")},
    {"name": DOCUMENT_SETS_TABLE},
    {"name": DOCUMENTS_TABLE, "index": (SET_DOCUMENTS_INDEX, "document_set_id", "order", "N")},
]


def create_tables(ddb: Any, suffix: str = "") -> None:
    """Create all StepFlow tables. Skips if table already exists."""
    client = ddb.meta.client
    existing = client.list_tables().get("TableNames", [])

    for defn in TABLE_DEFINITIONS:
        table_name = f"{defn['name']}{suffix}"
        if table_name in existing:
            print(f"  Table {table_name} already exists, skipping")
            continue
        attributes = [
            {"AttributeName": "PK", "AttributeType": "S"},
            {"AttributeName": "SK", "AttributeType": "S"},
        ]
        kwargs: dict[str, Any] = {}
        if "index" in defn:
            # (index name, hash attribute, range attribute, range type)
            index_name, hash_attr, range_attr, range_type = defn["index"]
            attributes += [
                {"AttributeName": hash_attr, "AttributeType": "S"},
                {"AttributeName": range_attr, "AttributeType": range_type},
            ]
            kwargs["GlobalSecondaryIndexes"] = [
                {
                    "IndexName": index_name,
                    "KeySchema": [
                        {"AttributeName": hash_attr, "KeyType": "HASH"},
                        {"AttributeName": range_attr, "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                }
            ]
        client.create_table(
            TableName=table_name,
            KeySchema=[
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": "SK", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=attributes,
            BillingMode="PAY_PER_REQUEST",
            **kwargs,
        )
        print(f"  Created table {table_name}")


def seed_users(store: DynamoDBEntityStore, seed_path: Path = DEFAULT_SEED_PATH) -> int:
    """Register the users listed in ``seed_path``."""
    count = UserDirectory(store).register_all(read_seed_users(seed_path))
    print(f"  Seeded {count} users")
    return count


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed DynamoDB tables for StepFlow")
    parser.add_argument("--endpoint-url", default=None, help="DynamoDB endpoint (e.g. http://localhost:4566)")
    parser.add_argument("--table-suffix", default="", help="Table name suffix (e.g. -dev)")
    parser.add_argument("--region", default="us-east-1", help="AWS region")
    parser.add_argument("--users", type=Path, default=DEFAULT_SEED_PATH, help="Seed users JSON file")
    args = parser.parse_args()

    kwargs: dict[str, Any] = {"region_name": args.region}
    if args.endpoint_url:
        kwargs["endpoint_url"] = args.endpoint_url

    ddb = boto3.resource("dynamodb", **kwargs)

    print("Creating tables...")
    create_tables(ddb, suffix=args.table_suffix)

    print("Seeding users...")
    store = DynamoDBEntityStore(
        table_suffix=args.table_suffix, region=args.region, endpoint_url=args.endpoint_url,
    )
    seed_users(store, args.users)

    print("Done!")


if __name__ == "__main__":
    main()
