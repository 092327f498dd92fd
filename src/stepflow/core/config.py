"""Application configuration using pydantic-settings with grouped env prefixes."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class DynamoDBConfig(BaseSettings):
    """DynamoDB entity store configuration."""

    model_config = {"env_prefix": "STEPFLOW_DYNAMO_"}

    table_suffix: str = ""  # "-dev", "-uat", or "" for prod
    region: str = "us-east-1"
    endpoint_url: str | None = None  # LocalStack override


class RedisConfig(BaseSettings):
    """Redis cache configuration (idempotency records)."""

    model_config = {"env_prefix": "STEPFLOW_REDIS_"}

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    key_prefix: str = "stepflow:"
    socket_timeout: float | None = 5.0


class S3Config(BaseSettings):
    """S3 photo storage configuration."""

    model_config = {"env_prefix": "STEPFLOW_S3_"}

    bucket: str = "stepflow-step-photos"
    region: str = "us-east-1"
    endpoint_url: str | None = None  # LocalStack override


class UploadConfig(BaseSettings):
    """Accepted photo and document submissions."""

    model_config = {"env_prefix": "STEPFLOW_UPLOAD_"}

    max_size_bytes: int = 10 * 1024 * 1024
    allowed_mime_types: list[str] = Field(
        default_factory=lambda: ["image/jpeg", "image/png", "image/jpg"]
    )
    max_documents_per_set: int = Field(default=10, ge=1, le=99)


class WorkflowConfig(BaseSettings):
    """Job workflow limits."""

    model_config = {"env_prefix": "STEPFLOW_WORKFLOW_"}

    # One DynamoDB transaction holds the job plus every step (limit 100 items).
    max_steps_per_job: int = Field(default=50, ge=1, le=99)
    idempotency_ttl_seconds: int = Field(default=24 * 60 * 60, ge=1)


class AppSettings(BaseSettings):
    """Root application settings aggregating all sub-configs."""

    model_config = {"env_prefix": "STEPFLOW_"}

    environment: Literal["dev", "uat", "prod"] = "dev"
    log_level: str = "INFO"
    backend: Literal["memory", "aws"] = "memory"
    seed_users_path: str | None = None  # JSON list of users registered at startup

    dynamodb: DynamoDBConfig = DynamoDBConfig()
    redis: RedisConfig = RedisConfig()
    s3: S3Config = S3Config()
    upload: UploadConfig = UploadConfig()
    workflow: WorkflowConfig = WorkflowConfig()
