"""Integration test fixtures: LocalStack DynamoDB and S3."""

from __future__ import annotations

import os

import boto3
import pytest
from botocore.exceptions import BotoCoreError, ClientError
from seed_dynamodb import create_tables, seed_users

from stepflow.persistence.dynamodb_backend import DynamoDBEntityStore

# Default LocalStack endpoint
LOCALSTACK_URL = os.environ.get("LOCALSTACK_URL", "http://localhost:4566")
TABLE_SUFFIX = "-inttest"
BUCKET = "stepflow-step-photos-inttest"


def _localstack_available() -> bool:
    """Check if LocalStack is reachable."""
    try:
        client = boto3.client("dynamodb", region_name="us-east-1", endpoint_url=LOCALSTACK_URL)
        client.list_tables()
        return True
    except (BotoCoreError, ClientError):
        return False


skip_no_localstack = pytest.mark.skipif(
    not _localstack_available(),
    reason="LocalStack not available",
)


@pytest.fixture(scope="session")
def localstack_ddb():
    """DynamoDB resource pointing at LocalStack."""
    return boto3.resource("dynamodb", region_name="us-east-1", endpoint_url=LOCALSTACK_URL)


@pytest.fixture(scope="session")
def localstack_s3():
    """S3 client pointing at LocalStack, with the photo bucket created."""
    client = boto3.client("s3", region_name="us-east-1", endpoint_url=LOCALSTACK_URL)
    if BUCKET not in {b["Name"] for b in client.list_buckets().get("Buckets", [])}:
        client.create_bucket(Bucket=BUCKET)
    return client


@pytest.fixture(scope="session")
def seeded_store(localstack_ddb):
    """Create the tables and demo users via the seed script."""
    create_tables(localstack_ddb, suffix=TABLE_SUFFIX)
    store = DynamoDBEntityStore(
        table_suffix=TABLE_SUFFIX, region="us-east-1", endpoint_url=LOCALSTACK_URL,
    )
    seed_users(store)
    return store
